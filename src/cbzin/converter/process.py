"""外部プロセス管理モジュール

外部ツールの子プロセスを1つ所有し、自然終了前に破棄された場合は
強制終了と回収を保証するManagedProcessを提供する。
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from cbzin.errors import ToolFailedError, ToolSpawnError

logger = logging.getLogger(__name__)

# エラーメッセージに含める標準エラー出力の最大文字数
STDERR_TAIL_CHARS = 500


class ManagedProcess:
    """所有権を持つ外部プロセス

    close()またはコンテキストマネージャの終了時に、実行中であれば
    プロセスを強制終了して回収する。close()は何度呼び出しても1回だけ処理される。

    on_exitを指定すると、プロセス終了時に監視スレッドからコールバックを呼び出す。
    起動直後に終了した場合でも通知は必ず行われる。

    使用例:
        >>> with ManagedProcess(["cjxl", "in.png", "out.jxl"]) as process:
        ...     process.wait()
    """

    def __init__(
        self,
        command: Sequence[str | Path],
        *,
        capture_output: bool = False,
        on_exit: Callable[[], None] | None = None,
    ) -> None:
        """プロセスを起動する

        Args:
            command: 実行するコマンドと引数
            capture_output: 標準出力を取得するか
            on_exit: プロセス終了時に呼び出すコールバック

        Raises:
            ToolSpawnError: プロセスを起動できない場合
        """
        self._command = [str(part) for part in command]
        # 出力の多いツールでパイプが詰まらないよう、標準エラー出力は一時ファイルに書き出す
        self._stderr = tempfile.TemporaryFile()
        try:
            self._popen = subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if capture_output else subprocess.DEVNULL,
                stderr=self._stderr,
            )
        except OSError as e:
            self._stderr.close()
            raise ToolSpawnError(self._command[0], str(e)) from e
        self._closed = False

        if on_exit is not None:
            watcher = threading.Thread(
                target=self._watch,
                args=(on_exit,),
                name=f"watch-{self._popen.pid}",
                daemon=True,
            )
            watcher.start()

    def __enter__(self) -> ManagedProcess:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ManagedProcess(pid={self.pid}, command={self._command!r})"

    @property
    def command(self) -> list[str]:
        """実行したコマンド"""
        return list(self._command)

    @property
    def name(self) -> str:
        """実行したツール名"""
        return self._command[0]

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def returncode(self) -> int | None:
        """終了コード（実行中はNone）"""
        return self._popen.returncode

    def _watch(self, on_exit: Callable[[], None]) -> None:
        self._popen.wait()
        on_exit()

    def poll(self) -> bool:
        """ブロックせずにプロセスの終了を確認する

        Returns:
            終了している場合True
        """
        return self._popen.poll() is not None

    def wait(self, timeout: float | None = None) -> None:
        """プロセスの終了を待ち、終了コードを検証する

        Raises:
            ToolFailedError: 終了コードが0以外の場合
            subprocess.TimeoutExpired: タイムアウトした場合
        """
        returncode = self._popen.wait(timeout)
        if returncode != 0:
            raise ToolFailedError(self._command, returncode, self._stderr_tail())

    def wait_with_output(self) -> str:
        """プロセスの終了を待ち、標準出力を返す

        Raises:
            ToolFailedError: 終了コードが0以外の場合
        """
        stdout, _ = self._popen.communicate()
        if self._popen.returncode != 0:
            raise ToolFailedError(self._command, self._popen.returncode, self._stderr_tail())
        if stdout is None:
            return ""
        return stdout.decode("utf-8", errors="replace")

    def close(self) -> None:
        """プロセスを終了させ、関連リソースを解放する"""
        if self._closed:
            return
        self._closed = True
        if self._popen.poll() is None:
            logger.debug("kill unfinished process %d: %s", self.pid, self.name)
            self._popen.kill()
            self._popen.wait()
        if self._popen.stdout is not None:
            self._popen.stdout.close()
        self._stderr.close()

    def _stderr_tail(self) -> str:
        if self._stderr.closed:
            return ""
        self._stderr.seek(0)
        text = self._stderr.read().decode("utf-8", errors="replace").strip()
        return text[-STDERR_TAIL_CHARS:]
