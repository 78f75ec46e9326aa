"""作業ディレクトリのガード"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class WorkspaceGuard:
    """一時的な作業ディレクトリを所有し、破棄時に再帰的に削除する

    keep()を呼び出すと所有権を呼び出し元に移し、削除しない。
    削除処理はどの終了経路でも1回だけ実行される。

    使用例:
        >>> with WorkspaceGuard(Path("book")) as guard:
        ...     convert_all(guard.path)
        ...     guard.keep()
    """

    def __init__(self, path: Path) -> None:
        """ガードを作成する

        Args:
            path: 保護する作業ディレクトリ（作成前でもよい）
        """
        self._path: Path | None = path
        self._original = path

    def __enter__(self) -> WorkspaceGuard:
        return self

    def __exit__(self, *args: object) -> None:
        self.release()

    @property
    def path(self) -> Path:
        """保護しているディレクトリ"""
        return self._original

    @property
    def active(self) -> bool:
        """削除の責任をまだ持っているか"""
        return self._path is not None

    def keep(self) -> Path:
        """ディレクトリを削除せずに所有権を手放す

        Returns:
            保持されたディレクトリのパス
        """
        self._path = None
        return self._original

    def release(self) -> None:
        """ディレクトリを削除する（keep()済みの場合は何もしない）"""
        path, self._path = self._path, None
        if path is None:
            return
        logger.debug("drop temporary directory %s", path)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.error("error on deleting directory %s: %s", path, e)
