"""ディレクトリの変換モジュール

元のディレクトリをハードリンクで `<名前>-<形式>` に複製し、複製側の画像を変換する。
変換後のファイルは新しいinodeになるため、元のディレクトリは変更されない。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from cbzin.config import ConversionConfig
from cbzin.converter.job import ConversionJob, find_collisions
from cbzin.converter.plan import plan_conversion
from cbzin.converter.scheduler import ConversionScheduler, Notifier, ProgressCallback
from cbzin.converter.tools import ToolProvider
from cbzin.errors import ConversionError, NothingToDo, PreconditionError, ToolError
from cbzin.workspace.guard import WorkspaceGuard
from cbzin.workspace.search import DirImages

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Directory:
    """存在を確認済みのディレクトリ"""

    path: Path

    @classmethod
    def from_path(cls, path: Path) -> Directory:
        """パスを検証してDirectoryを作成する

        Raises:
            PreconditionError: ディレクトリでない、または親ディレクトリがない場合
        """
        if not path.is_dir():
            raise PreconditionError(f"ディレクトリではありません: {path}")
        path = path.absolute()
        if path.parent == path:
            raise PreconditionError(f"親ディレクトリがありません: {path}")
        return cls(path)

    @property
    def name(self) -> str:
        return self.path.name

    def converted_path(self, target_value: str) -> Path:
        """変換後のディレクトリのパス"""
        return self.path.parent / f"{self.name}-{target_value}"


def link_tree(source: Path, destination: Path) -> None:
    """ディレクトリ構造をハードリンクで複製する

    destinationは作成済みの空ディレクトリであること。
    マウントポイントを越えて複製はしない。シンボリックリンクはリンク自体を複製する。

    Raises:
        OSError: ハードリンクを作成できない場合（別のファイルシステム等）
    """
    for dirpath, dirnames, filenames in os.walk(source, onerror=_raise):
        current = Path(dirpath)
        target = destination / current.relative_to(source)

        subdirs = []
        for name in sorted(dirnames):
            path = current / name
            if path.is_symlink():
                os.link(path, target / name, follow_symlinks=False)
            elif not os.path.ismount(path):
                (target / name).mkdir()
                subdirs.append(name)
        dirnames[:] = subdirs

        for name in filenames:
            os.link(current / name, target / name, follow_symlinks=False)


def _raise(error: OSError) -> None:
    raise error


class DirectoryConversionJob:
    """ディレクトリ内のすべての画像を再帰的に変換するジョブ

    実行すると、ハードリンクで複製したディレクトリの画像を変換する。
    成功した場合のみ複製を残し、失敗した場合は削除する。
    """

    def __init__(
        self,
        root: Directory,
        jobs: list[ConversionJob],
        config: ConversionConfig,
        tools: ToolProvider,
    ) -> None:
        self._root = root
        self._jobs = jobs
        self._config = config
        self._tools = tools

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def path(self) -> Path:
        return self._root.path

    @property
    def workspace(self) -> Path:
        """ハードリンクで複製するディレクトリ"""
        return self._root.converted_path(self._config.target.value)

    @property
    def jobs(self) -> list[ConversionJob]:
        return list(self._jobs)

    @classmethod
    def new(
        cls,
        images: DirImages,
        config: ConversionConfig,
        tools: ToolProvider | None = None,
    ) -> DirectoryConversionJob:
        """ディレクトリ変換ジョブを作成する

        ジョブを実行するまでファイルは変更しない。

        Raises:
            NothingToDo: 変換済み、または変換対象の画像がない場合
            PreconditionError: 変換後のファイル名が他の画像と重なる場合
        """
        root = images.root
        target = config.target

        if cls.already_converted(root, target.value):
            raise NothingToDo(f"変換済みです: {root.path}")

        copy_root = root.converted_path(target.value)
        jobs = []
        for info in images:
            copy_path = copy_root / info.path
            plan = plan_conversion(info.format, target, config.force)
            if plan is None:
                logger.debug("skip conversion for %s", copy_path)
                continue
            logger.debug("create job for %s: %s", copy_path, plan)
            jobs.append(ConversionJob(copy_path, plan))

        if not jobs:
            raise NothingToDo(f"変換する画像がありません: {root.path}")

        collisions = find_collisions((copy_root / info.path for info in images), jobs)
        if collisions:
            raise PreconditionError(
                f"変換後のファイル名が他の画像と重なります: {', '.join(map(str, collisions))}"
            )

        return cls(root, jobs, config, tools or ToolProvider())

    @staticmethod
    def already_converted(root: Directory, target_value: str) -> bool:
        """ディレクトリが変換済みかを判定する

        名前が既に `-<形式>` で終わっているか、変換後のディレクトリが存在する場合は
        変換済みとみなす。
        """
        if root.name.endswith(f"-{target_value}"):
            return True
        return root.converted_path(target_value).exists()

    def run(
        self,
        progress_callback: ProgressCallback | None = None,
        notifier: Notifier | None = None,
    ) -> Path:
        """ジョブを実行する

        Returns:
            変換後のディレクトリのパス

        Raises:
            PreconditionError: 変換後のディレクトリが既に存在する場合
            ConversionError: 複製または変換に失敗した場合
            Interrupted: 中断が要求された場合
        """
        try:
            self.workspace.mkdir()
        except FileExistsError as e:
            raise PreconditionError(f"ディレクトリが既に存在します: {self.workspace}") from e

        with WorkspaceGuard(self.workspace) as guard:
            try:
                link_tree(self._root.path, self.workspace)
                scheduler = ConversionScheduler(
                    self._jobs, self._config.workers, self._tools, notifier
                )
                scheduler.run(progress_callback)
            except (ToolError, OSError) as e:
                raise ConversionError(
                    f"ディレクトリ内の画像を変換できません: {self.path}", [e]
                ) from e
            guard.keep()

        logger.info("created %s", self.workspace)
        return self.workspace
