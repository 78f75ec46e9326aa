"""Workspace module for cbzin.

アーカイブの展開先やハードリンクで複製したディレクトリなど、
変換作業を行う一時的なファイルシステム領域を扱うモジュール。
"""

from cbzin.workspace.archive import (
    ArchiveConversionJob,
    ArchiveEntry,
    ArchivePath,
    Archiver,
    SevenZipArchiver,
    pack_directory,
    parse_slt_listing,
)
from cbzin.workspace.directory import Directory, DirectoryConversionJob, link_tree
from cbzin.workspace.guard import WorkspaceGuard
from cbzin.workspace.search import ArchiveImages, DirImages, ImageInfo

__all__ = [
    "ArchiveConversionJob",
    "ArchiveEntry",
    "ArchiveImages",
    "ArchivePath",
    "Archiver",
    "DirImages",
    "Directory",
    "DirectoryConversionJob",
    "ImageInfo",
    "SevenZipArchiver",
    "WorkspaceGuard",
    "link_tree",
    "pack_directory",
    "parse_slt_listing",
]
