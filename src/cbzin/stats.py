"""画像の統計情報

アーカイブまたはディレクトリに含まれる画像を形式ごとに数える。
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from cbzin.converter.formats import ImageFormat
from cbzin.pipeline import InputMode, PipelineConfig, resolve_archives, resolve_directories
from cbzin.workspace.archive import Archiver, SevenZipArchiver
from cbzin.workspace.search import ArchiveImages, DirImages, ImageInfo

logger = logging.getLogger(__name__)

ImageCollection = ArchiveImages | DirImages


@dataclass
class ImageStats:
    """形式ごとの画像数"""

    counts: Counter[ImageFormat] = field(default_factory=Counter)

    @classmethod
    def compute(cls, images: Iterable[ImageInfo]) -> ImageStats:
        return cls(Counter(info.format for info in images))

    def combine(self, other: ImageStats) -> None:
        """別の統計情報を加算する"""
        self.counts.update(other.counts)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def per_format(self) -> list[tuple[ImageFormat, int]]:
        """形式名の順に並べた(形式, 画像数)のリスト"""
        return sorted(self.counts.items(), key=lambda item: item[0].value)


@dataclass(frozen=True)
class CollectionStats:
    """1つのアーカイブ/ディレクトリの統計情報"""

    name: str
    stats: ImageStats


@dataclass
class StatsReport:
    """統計情報の集計結果

    Attributes:
        mode: 入力パスの扱い
        searched: 検索したアーカイブ/ディレクトリの数
        collections: 画像が見つかったアーカイブ/ディレクトリごとの統計
        total: 全体の統計
    """

    mode: InputMode
    searched: int = 0
    collections: list[CollectionStats] = field(default_factory=list)
    total: ImageStats = field(default_factory=ImageStats)

    def add(self, name: str, images: Iterable[ImageInfo]) -> None:
        stats = ImageStats.compute(images)
        self.collections.append(CollectionStats(name, stats))
        self.total.combine(stats)


def collect_stats(
    config: PipelineConfig,
    image_filter: ImageFormat | None = None,
    archiver: Archiver | None = None,
) -> StatsReport:
    """入力パスに含まれる画像を数える

    Args:
        config: パイプライン設定（pathsとmodeのみ使用する）
        image_filter: 指定した場合はこの形式の画像のみ数える
        archiver: アーカイブの一覧取得に使用する（Noneの場合は7z）

    Raises:
        PreconditionError: 無効な入力パスが含まれる場合
        ToolError: アーカイブの一覧を取得できない場合
    """
    report = StatsReport(config.mode)

    found: list[ImageCollection | None] = []
    match config.mode:
        case InputMode.ARCHIVES:
            archiver = archiver or SevenZipArchiver()
            archives = resolve_archives(config.paths)
            report.searched = len(archives)
            for archive in archives:
                logger.info("checking archive %s", archive.path)
                found.append(ArchiveImages.search(archive, archiver))
        case InputMode.DIRECTORIES:
            roots = resolve_directories(config.paths)
            report.searched = len(roots)
            for root in roots:
                found.append(DirImages.search(root))

    for images in found:
        if images is not None and image_filter is not None:
            images = images.filter(image_filter)
        if images is None:
            continue
        name = str(images.archive.path if isinstance(images, ArchiveImages) else images.root.path)
        report.add(name, images)
    return report
