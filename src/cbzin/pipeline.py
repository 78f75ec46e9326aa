"""変換パイプラインの統合インターフェース定義

このモジュールは、コマンドラインで指定された複数の入力パスを変換するパイプラインを定義する。
入力の収集 -> 外部ツールの確認 -> アーカイブ/ディレクトリごとの変換 の順に処理し、
1つの入力の失敗は他の入力の処理を妨げない。中断が要求された場合のみ全体を停止する。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from cbzin.config import ConversionConfig
from cbzin.converter.plan import required_tools
from cbzin.converter.scheduler import Notifier
from cbzin.converter.tools import Tool, ToolProvider
from cbzin.doctor import ensure_tools_available
from cbzin.errors import CbzinError, Interrupted, NothingToDo, PreconditionError
from cbzin.logger import NullProgressDisplay, ProgressDisplay
from cbzin.workspace.archive import (
    ArchiveConversionJob,
    ArchivePath,
    Archiver,
    SevenZipArchiver,
)
from cbzin.workspace.directory import Directory, DirectoryConversionJob
from cbzin.workspace.search import ArchiveImages, DirImages

logger = logging.getLogger(__name__)

CollectionJob = ArchiveConversionJob | DirectoryConversionJob


class InputMode(Enum):
    """入力パスの扱い

    ARCHIVES: アーカイブ、またはディレクトリ直下のアーカイブを変換する
    DIRECTORIES: ディレクトリ内の画像を再帰的に変換する
    """

    ARCHIVES = "archives"
    DIRECTORIES = "directories"


@dataclass(frozen=True)
class PipelineConfig:
    """パイプライン設定

    Attributes:
        paths: 入力パス
        conversion: 変換の実行時設定
        mode: 入力パスの扱い
        dry_run: 外部ツールの確認と件数の表示のみ行うか
    """

    paths: tuple[Path, ...]
    conversion: ConversionConfig
    mode: InputMode = InputMode.ARCHIVES
    dry_run: bool = False


@dataclass(frozen=True)
class CollectionFailure:
    """変換に失敗したアーカイブ/ディレクトリ"""

    path: Path
    error: Exception


@dataclass
class PipelineResult:
    """パイプライン実行結果

    Attributes:
        collections: 変換対象のアーカイブ/ディレクトリの数
        images: 変換対象の画像の総数
        converted: 作成したアーカイブ/ディレクトリのパス
        failures: 変換に失敗したアーカイブ/ディレクトリ
        dry_run: ドライランだったか
    """

    collections: int = 0
    images: int = 0
    converted: list[Path] = field(default_factory=list)
    failures: list[CollectionFailure] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.failures


def resolve_archives(paths: Iterable[Path]) -> list[ArchivePath]:
    """入力パスからアーカイブの一覧を作成する

    ディレクトリが指定された場合は直下のアーカイブのみを対象とする。

    Raises:
        PreconditionError: アーカイブでもディレクトリでもないパスが含まれる場合
    """
    archives: list[ArchivePath] = []
    for path in paths:
        if path.is_dir():
            logger.info("checking archives directory %s", path)
            for child in sorted(path.iterdir()):
                if ArchivePath.is_archive(child):
                    archives.append(ArchivePath.from_path(child))
                else:
                    logger.debug("skipping %s", child)
        elif path.is_file():
            archives.append(ArchivePath.from_path(path))
        else:
            raise PreconditionError(f"アーカイブでもディレクトリでもありません: {path}")
    return archives


def resolve_directories(paths: Iterable[Path]) -> list[Directory]:
    """入力パスからディレクトリの一覧を作成する

    Raises:
        PreconditionError: ディレクトリでないパスが含まれる場合
    """
    return [Directory.from_path(path) for path in paths]


def collection_tools(jobs: Iterable[CollectionJob]) -> set[Tool]:
    """変換ジョブの実行に必要な外部ツールを集める"""
    tools: set[Tool] = set()
    for job in jobs:
        if isinstance(job, ArchiveConversionJob):
            tools.add(Tool.SEVEN_ZIP)
        for conversion in job.jobs:
            tools.update(required_tools(conversion.plan))
    return tools


class ConversionPipeline:
    """変換パイプラインオーケストレーター

    使用例:
        >>> config = PipelineConfig(
        ...     paths=(Path("books"),),
        ...     conversion=ConversionConfig(ImageFormat.AVIF, workers=4),
        ... )
        >>> pipeline = ConversionPipeline(config)
        >>> jobs = pipeline.collect()
        >>> pipeline.check_tools(jobs)
        >>> result = pipeline.run(jobs)
    """

    def __init__(
        self,
        config: PipelineConfig,
        archiver: Archiver | None = None,
        tools: ToolProvider | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        """パイプラインを初期化する

        Args:
            config: パイプライン設定
            archiver: アーカイブの一覧取得と展開に使用する（Noneの場合は7z）
            tools: 外部ツールの提供元
            notifier: 中断要求と子プロセス終了の通知源（全入力で共有する）
        """
        self._config = config
        self._archiver = archiver or SevenZipArchiver()
        self._tools = tools or ToolProvider()
        self._notifier = notifier or Notifier()

    @property
    def config(self) -> PipelineConfig:
        """パイプライン設定を取得する"""
        return self._config

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def collect(self) -> list[CollectionJob]:
        """変換が必要なアーカイブ/ディレクトリを集める

        変換済みや変換対象の画像がない入力は読み飛ばす。

        Raises:
            PreconditionError: 無効な入力パス、または作業ディレクトリが既に存在する場合
            ToolError: アーカイブの一覧を取得できない場合
            Interrupted: 中断が要求された場合
        """
        try:
            match self._config.mode:
                case InputMode.ARCHIVES:
                    return self._collect_archives()
                case InputMode.DIRECTORIES:
                    return self._collect_directories()
        except KeyboardInterrupt as e:
            raise Interrupted() from e

    def _collect_archives(self) -> list[CollectionJob]:
        jobs: list[CollectionJob] = []
        for archive in resolve_archives(self._config.paths):
            logger.info("checking archive %s", archive.path)
            images = ArchiveImages.search(archive, self._archiver)
            if images is None:
                logger.info("no images in %s", archive.path)
                continue
            try:
                job = ArchiveConversionJob.new(
                    images, self._config.conversion, self._archiver, self._tools
                )
            except NothingToDo as e:
                logger.info("%s", e)
                continue
            jobs.append(job)
        return jobs

    def _collect_directories(self) -> list[CollectionJob]:
        jobs: list[CollectionJob] = []
        for root in resolve_directories(self._config.paths):
            logger.info("checking root directory recursively %s", root.path)
            images = DirImages.search(root)
            if images is None:
                logger.info("no images in %s", root.path)
                continue
            try:
                job = DirectoryConversionJob.new(images, self._config.conversion, self._tools)
            except NothingToDo as e:
                logger.info("%s", e)
                continue
            jobs.append(job)
        return jobs

    def check_tools(self, jobs: Sequence[CollectionJob]) -> None:
        """必要な外部ツールがすべて利用可能かを確認する

        Raises:
            MissingToolsError: 見つからないツールがある場合
        """
        ensure_tools_available(collection_tools(jobs))

    def summarize(self, jobs: Sequence[CollectionJob]) -> str:
        """変換対象の件数を表すメッセージを作成する"""
        kind = "archives" if self._config.mode is InputMode.ARCHIVES else "directories"
        images = sum(len(job) for job in jobs)
        return f"Found {len(jobs)} {kind}, with a total of {images} images to convert"

    def run(
        self,
        jobs: Sequence[CollectionJob] | None = None,
        progress: ProgressDisplay | None = None,
    ) -> PipelineResult:
        """パイプラインを実行する

        Args:
            jobs: collect()で集めた変換ジョブ（Noneの場合は収集とツールの確認から行う）
            progress: 進捗表示

        Returns:
            パイプライン実行結果

        Raises:
            Interrupted: 中断が要求された場合
            MissingToolsError: 必要な外部ツールが見つからない場合
        """
        if jobs is None:
            jobs = self.collect()
            self.check_tools(jobs)

        result = PipelineResult(
            collections=len(jobs),
            images=sum(len(job) for job in jobs),
            dry_run=self._config.dry_run,
        )
        if self._config.dry_run or not jobs:
            return result

        progress = progress or NullProgressDisplay()
        progress.start(result.collections, result.images)
        try:
            with self._notifier:
                for job in jobs:
                    self._notifier.raise_if_interrupted()
                    self._run_single(job, progress, result)
        finally:
            progress.finish()
        return result

    def _run_single(
        self,
        job: CollectionJob,
        progress: ProgressDisplay,
        result: PipelineResult,
    ) -> None:
        name = str(job.path)
        logger.info("converting %s", name)
        progress.begin_collection(name)
        try:
            output = job.run(progress.advance_images, self._notifier)
        except Interrupted:
            progress.end_collection(name, success=False)
            raise
        except (CbzinError, OSError) as e:
            progress.end_collection(name, success=False)
            if self._notifier.interrupted:
                raise Interrupted() from e
            logger.error("failed to convert %s: %s", name, e)
            result.failures.append(CollectionFailure(job.path, e))
            return
        progress.end_collection(name, success=True)
        result.converted.append(output)
