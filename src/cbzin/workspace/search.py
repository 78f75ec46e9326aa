"""画像探索モジュール

アーカイブまたはディレクトリから、拡張子で分類した画像の一覧を作成する。
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from cbzin.converter.formats import ImageFormat

if TYPE_CHECKING:
    from cbzin.workspace.archive import ArchiveEntry, ArchivePath, Archiver
    from cbzin.workspace.directory import Directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageInfo:
    """見つかった画像

    Attributes:
        path: アーカイブまたはディレクトリのルートからの相対パス
        format: 拡張子から判定した画像形式
    """

    path: PurePosixPath
    format: ImageFormat

    @classmethod
    def from_path(cls, path: PurePosixPath) -> ImageInfo | None:
        """拡張子から画像情報を作成する（画像でない場合はNone）"""
        image_format = ImageFormat.from_path(path)
        if image_format is None:
            return None
        return cls(path, image_format)


def classify(paths: Iterable[PurePosixPath]) -> list[ImageInfo]:
    """パスの一覧を画像のみに絞り込み、形式を判定する"""
    images = []
    for path in paths:
        info = ImageInfo.from_path(path)
        if info is not None:
            images.append(info)
    return images


@dataclass(frozen=True)
class ArchiveImages:
    """アーカイブ内で見つかった画像

    Attributes:
        archive: 探索したアーカイブ
        images: 見つかった画像
        entries: 一覧取得で得たすべてのエントリ（展開先の判定に使用する）
    """

    archive: ArchivePath
    images: tuple[ImageInfo, ...]
    entries: tuple[ArchiveEntry, ...] = ()

    def __iter__(self) -> Iterator[ImageInfo]:
        return iter(self.images)

    def __len__(self) -> int:
        return len(self.images)

    @classmethod
    def search(cls, archive: ArchivePath, archiver: Archiver) -> ArchiveImages | None:
        """アーカイブ内の画像を探す

        Returns:
            見つかった画像、画像が1つもない場合はNone
        """
        logger.debug("checking %s", archive.path)
        entries = archiver.list_entries(archive.path)
        images = classify(entry.path for entry in entries if not entry.is_dir)
        if not images:
            return None
        return cls(archive, tuple(images), tuple(entries))

    def filter(self, image_format: ImageFormat) -> ArchiveImages | None:
        """指定した形式の画像のみに絞り込む"""
        images = tuple(info for info in self.images if info.format == image_format)
        if not images:
            return None
        return ArchiveImages(self.archive, images, self.entries)


@dataclass(frozen=True)
class DirImages:
    """ディレクトリ内で（再帰的に）見つかった画像"""

    root: Directory
    images: tuple[ImageInfo, ...]

    def __iter__(self) -> Iterator[ImageInfo]:
        return iter(self.images)

    def __len__(self) -> int:
        return len(self.images)

    @classmethod
    def search(cls, root: Directory) -> DirImages | None:
        """ディレクトリ内の画像を再帰的に探す

        マウントポイントを越えて探索はしない。

        Returns:
            見つかった画像、画像が1つもない場合はNone
        """
        logger.debug("checking %s", root.path)
        images = classify(
            PurePosixPath(path.relative_to(root.path).as_posix())
            for path in walk_files(root.path)
        )
        if not images:
            return None
        return cls(root, tuple(images))

    def filter(self, image_format: ImageFormat) -> DirImages | None:
        """指定した形式の画像のみに絞り込む"""
        images = tuple(info for info in self.images if info.format == image_format)
        if not images:
            return None
        return DirImages(self.root, images)


def walk_files(root: Path) -> Iterator[Path]:
    """同一ファイルシステム内のファイルを再帰的に列挙する

    Raises:
        OSError: ディレクトリを読み取れない場合
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        current = Path(dirpath)
        dirnames[:] = sorted(name for name in dirnames if not os.path.ismount(current / name))
        for name in sorted(filenames):
            yield current / name


def _raise(error: OSError) -> None:
    raise error
