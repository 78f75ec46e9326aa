"""進捗表示およびログ出力のインターフェース定義

このモジュールは、cbzinの変換進捗表示とログ出力のためのインターフェースを定義する。
VerboseLevel (詳細ログレベル)に応じた出力制御を行い、
複数のアーカイブやディレクトリを変換する進捗をユーザーにわかりやすく表示するために使用される。

ライブラリ側のモジュールは標準のloggingモジュールでログを出力し、
RunLoggerがそれらをログファイルとコンソールに振り分ける。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Protocol

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

PACKAGE_LOGGER = "cbzin"
RUN_LOGGER = f"{PACKAGE_LOGGER}.run"

FILE_LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(name)s: %(message)s"
FILE_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class VerboseLevel(IntEnum):
    """詳細ログレベル

    ログ出力の詳細度を制御するための列挙型。
    QUIET: エラーのみ出力
    NORMAL: 進捗バーとサマリ出力
    VERBOSE: 変換したアーカイブやディレクトリの一覧も出力（-vオプション）
    DEBUG: 外部ツールの起動ログも出力（-vvオプション）
    """

    QUIET = -1
    NORMAL = 0
    VERBOSE = 1
    DEBUG = 2

    @property
    def logging_level(self) -> int:
        """対応する標準loggingのレベル"""
        match self:
            case VerboseLevel.DEBUG:
                return logging.DEBUG
            case VerboseLevel.VERBOSE:
                return logging.INFO
            case VerboseLevel.NORMAL:
                return logging.WARNING
            case _:
                return logging.ERROR


class ProgressDisplay(Protocol):
    """進捗表示のプロトコル

    変換対象のアーカイブ/ディレクトリの数と、画像の総数の2段階で進捗を表示する。
    """

    def start(self, collections: int, images: int) -> None:
        """進捗表示を開始する

        Args:
            collections: 変換するアーカイブ/ディレクトリの数
            images: 変換する画像の総数
        """
        ...

    def begin_collection(self, name: str) -> None:
        """アーカイブ/ディレクトリの変換開始を表示する"""
        ...

    def advance_images(self, count: int) -> None:
        """変換が完了した画像の数だけ進める"""
        ...

    def end_collection(self, name: str, success: bool) -> None:
        """アーカイブ/ディレクトリの変換終了を表示する"""
        ...

    def finish(self) -> None:
        """進捗表示を終了する"""
        ...


@dataclass
class LogConfig:
    """ログ設定

    Attributes:
        verbose_level: ログの詳細度レベル
        log_file: ログ出力先ファイルパス（Noneの場合はファイル出力なし）
        file_level: ログファイルに出力する標準loggingのレベル
        use_color: カラー出力を使用するか
    """

    verbose_level: VerboseLevel = VerboseLevel.NORMAL
    log_file: Path | None = None
    file_level: int = logging.INFO
    use_color: bool = True


class RunLogger:
    """実行ログ出力クラス

    VerboseLevelに応じてメッセージのフィルタリングを行い、
    ログファイルへの出力と進捗表示インスタンスの作成も担当する。
    コンテキストマネージャとして使用している間、パッケージ内の
    標準loggingの出力もログファイルとコンソールに送る。

    使用例:
        >>> config = LogConfig(verbose_level=VerboseLevel.VERBOSE)
        >>> with RunLogger(config) as logger:
        ...     logger.info("変換を開始します")
        ...     logger.verbose("book.cbz を処理中")
    """

    def __init__(self, config: LogConfig, console: Console | None = None) -> None:
        """ロガーを初期化する

        Args:
            config: ログ設定
            console: 出力先のコンソール（Noneの場合は標準出力）
        """
        self._config = config
        self._console = console or Console(no_color=not config.use_color, highlight=False)
        self._error_console = Console(stderr=True, no_color=not config.use_color, highlight=False)
        self._run_logger = logging.getLogger(RUN_LOGGER)
        self._handlers: list[logging.Handler] = []

    def __enter__(self) -> RunLogger:
        """コンテキストマネージャのエントリポイント"""
        self._handlers = configure_logging(self._config, self._console)
        return self

    def __exit__(self, *args: object) -> None:
        """コンテキストマネージャの終了処理"""
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        for handler in self._handlers:
            package_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

    @property
    def config(self) -> LogConfig:
        """ログ設定を取得する"""
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    def _log_to_file(self, level: int, message: str) -> None:
        self._run_logger.log(level, Text.from_markup(message).plain)

    def info(self, message: str) -> None:
        """情報メッセージを出力する（NORMAL以上）"""
        if self._config.verbose_level >= VerboseLevel.NORMAL:
            self._console.print(message)
        self._log_to_file(logging.INFO, message)

    def verbose(self, message: str) -> None:
        """詳細メッセージを出力する（VERBOSE以上）"""
        if self._config.verbose_level >= VerboseLevel.VERBOSE:
            self._console.print(message)
        self._log_to_file(logging.INFO, message)

    def debug(self, message: str) -> None:
        """デバッグメッセージを出力する（DEBUG以上）"""
        if self._config.verbose_level >= VerboseLevel.DEBUG:
            self._console.print(message)
        self._log_to_file(logging.DEBUG, message)

    def error(self, message: str) -> None:
        """エラーメッセージを出力する（常に出力）"""
        self._error_console.print(f"[red]エラー: {escape(message)}[/red]")
        self._log_to_file(logging.ERROR, escape(message))

    def warning(self, message: str) -> None:
        """警告メッセージを出力する（QUIET以上）"""
        if self._config.verbose_level > VerboseLevel.QUIET:
            self._console.print(f"[yellow]警告: {escape(message)}[/yellow]")
        self._log_to_file(logging.WARNING, escape(message))

    def create_progress(self) -> ProgressDisplay:
        """進捗表示インスタンスを作成する"""
        if self._config.verbose_level <= VerboseLevel.QUIET:
            return NullProgressDisplay()
        return RichProgressDisplay(self._console)


def configure_logging(config: LogConfig, console: Console | None = None) -> list[logging.Handler]:
    """パッケージのloggerにハンドラを追加する

    ログファイルにはfile_level以上を出力する。
    コンソールにはVerboseLevelに対応するレベル以上のみ出力する（実行ログを除く）。

    Returns:
        追加したハンドラのリスト
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG)
    handlers: list[logging.Handler] = []

    if config.log_file is not None:
        file_handler = logging.FileHandler(config.log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(config.file_level)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_LOG_DATEFMT))
        handlers.append(file_handler)

    console_handler = RichHandler(console=console, show_path=False, markup=False)
    console_handler.setLevel(config.verbose_level.logging_level)
    # 実行ログはRunLoggerが直接コンソールに出力する
    console_handler.addFilter(lambda record: not record.name.startswith(RUN_LOGGER))
    handlers.append(console_handler)

    for handler in handlers:
        package_logger.addHandler(handler)
    return handlers


class RichProgressDisplay:
    """richによる進捗表示

    アーカイブ/ディレクトリ単位と画像単位の2本の進捗バーを表示する。
    メッセージは進捗バーの上に出力する。
    """

    def __init__(self, console: Console) -> None:
        self._progress = Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self._collections: TaskID | None = None
        self._images: TaskID | None = None

    def start(self, collections: int, images: int) -> None:
        self._collections = self._progress.add_task("collections", total=collections)
        self._images = self._progress.add_task("images", total=images)
        self._progress.start()

    def begin_collection(self, name: str) -> None:
        if self._collections is not None:
            self._progress.update(self._collections, description=escape(name))

    def advance_images(self, count: int) -> None:
        if self._images is not None:
            self._progress.advance(self._images, count)

    def end_collection(self, name: str, success: bool) -> None:
        mark = "[green]✓[/green]" if success else "[red]✗[/red]"
        self._progress.console.print(f"{mark} {escape(name)}")
        if self._collections is not None:
            self._progress.advance(self._collections, 1)

    def finish(self) -> None:
        self._progress.stop()


class NullProgressDisplay:
    """何も表示しない進捗表示（QUIET用）"""

    def start(self, collections: int, images: int) -> None:
        pass

    def begin_collection(self, name: str) -> None:
        pass

    def advance_images(self, count: int) -> None:
        pass

    def end_collection(self, name: str, success: bool) -> None:
        pass

    def finish(self) -> None:
        pass
