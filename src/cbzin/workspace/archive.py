"""Zipアーカイブの変換モジュール

アーカイブを隣接する作業ディレクトリに展開し、中の画像をすべて変換してから
`<名前>.<形式>.<拡張子>` として新しいアーカイブに格納し直す。
元のアーカイブは変更しない。
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import time
import zipfile
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

from cbzin.config import ConversionConfig
from cbzin.converter.job import ConversionJob, find_collisions
from cbzin.converter.plan import plan_conversion
from cbzin.converter.process import ManagedProcess
from cbzin.converter.scheduler import ConversionScheduler, Notifier, ProgressCallback
from cbzin.converter.tools import Tool, ToolProvider
from cbzin.errors import ConversionError, NothingToDo, PreconditionError, ToolError
from cbzin.workspace.guard import WorkspaceGuard
from cbzin.workspace.search import ArchiveImages

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSIONS = ("cbz", "zip")

# 7z l -sltの出力で、アーカイブ自体の情報とエントリ一覧を区切る行
SLT_SEPARATOR = "----------"

FILE_PERMISSIONS = 0o644
DIR_PERMISSIONS = 0o755


@dataclass(frozen=True)
class ArchivePath:
    """存在を確認済みのZipアーカイブのパス

    Attributes:
        path: アーカイブのパス
        extension: アーカイブの拡張子（cbzまたはzip、ドットなし）
    """

    path: Path
    extension: str

    @classmethod
    def from_path(cls, path: Path) -> ArchivePath:
        """パスを検証してArchivePathを作成する

        Raises:
            PreconditionError: 対応する拡張子でない、またはファイルが存在しない場合
        """
        extension = path.suffix.lower().lstrip(".")
        if extension not in ARCHIVE_EXTENSIONS:
            raise PreconditionError(f"対応していないアーカイブ形式です: {path}")
        if not path.is_file():
            raise PreconditionError(f"アーカイブが存在しません: {path}")
        return cls(path.absolute(), extension)

    @staticmethod
    def is_archive(path: Path) -> bool:
        """アーカイブとして扱うファイルか"""
        return path.is_file() and path.suffix.lower().lstrip(".") in ARCHIVE_EXTENSIONS

    @property
    def parent(self) -> Path:
        return self.path.parent

    @property
    def name(self) -> str:
        """拡張子を除いたアーカイブ名"""
        return self.path.stem

    def converted_path(self, target_value: str) -> Path:
        """変換後のアーカイブのパス"""
        return self.parent / f"{self.name}.{target_value}.{self.extension}"


@dataclass(frozen=True)
class ArchiveEntry:
    """アーカイブ内のエントリ"""

    path: PurePosixPath
    is_dir: bool


class Archiver(Protocol):
    """アーカイブの一覧取得と展開のインターフェース"""

    def list_entries(self, archive: Path) -> list[ArchiveEntry]:
        """アーカイブ内のエントリ一覧を取得する"""
        ...

    def extract(self, archive: Path, destination: Path) -> None:
        """アーカイブをディレクトリに展開する"""
        ...


def parse_slt_listing(output: str) -> list[ArchiveEntry]:
    """`7z l -slt` の出力からエントリ一覧を取り出す

    区切り行より前はアーカイブ自体の情報のため読み飛ばす。
    """
    entries: list[ArchiveEntry] = []
    path: str | None = None
    is_dir = False
    in_entries = False

    for line in output.splitlines():
        line = line.strip()
        if not in_entries:
            in_entries = line == SLT_SEPARATOR
            continue
        if line.startswith("Path = "):
            if path is not None:
                entries.append(ArchiveEntry(PurePosixPath(path), is_dir))
            path = line.removeprefix("Path = ").replace("\\", "/")
            is_dir = False
        elif line.startswith("Folder = "):
            is_dir = line.removeprefix("Folder = ") == "+"
        elif line.startswith("Attributes = ") and line.removeprefix("Attributes = ").startswith("D"):
            is_dir = True

    if path is not None:
        entries.append(ArchiveEntry(PurePosixPath(path), is_dir))
    return entries


class SevenZipArchiver:
    """7zを使用してアーカイブの一覧取得と展開を行う"""

    def list_entries(self, archive: Path) -> list[ArchiveEntry]:
        """アーカイブ内のエントリ一覧を取得する

        Raises:
            ToolError: 7zの起動または実行に失敗した場合
        """
        command = [Tool.SEVEN_ZIP.command, "l", "-slt", str(archive)]
        with ManagedProcess(command, capture_output=True) as process:
            output = process.wait_with_output()
        return parse_slt_listing(output)

    def extract(self, archive: Path, destination: Path) -> None:
        """アーカイブをディレクトリに展開する

        Raises:
            ToolError: 7zの起動または実行に失敗した場合
        """
        command = [Tool.SEVEN_ZIP.command, "x", "-y", f"-o{destination}", str(archive)]
        logger.debug("extract %s into %s", archive, destination)
        with ManagedProcess(command) as process:
            process.wait()


def has_root_within(entries: Sequence[ArchiveEntry], name: str) -> bool:
    """アーカイブ名と同名の単一のディレクトリにすべてのエントリが含まれているか"""
    roots = {entry.path.parts[0] for entry in entries if entry.path.parts}
    if roots != {name}:
        return False
    return any(entry.is_dir or len(entry.path.parts) > 1 for entry in entries)


def pack_directory(root: Path, zip_path: Path) -> None:
    """ディレクトリを無圧縮のZipアーカイブに格納する

    エントリ名はrootの親ディレクトリからの相対パスとし、rootのディレクトリ名を含める。
    書き込み中のファイルは `.part` 付きの名前で作成し、完了後に置き換える。

    Raises:
        OSError: 読み込みまたは書き込みに失敗した場合
    """
    partial = zip_path.with_name(f"{zip_path.name}.part")
    try:
        with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_STORED) as archive:
            for path in _walk_tree(root):
                arcname = path.relative_to(root.parent).as_posix()
                if path.is_dir():
                    _write_directory(archive, path, arcname)
                else:
                    _write_file(archive, path, arcname)
        os.replace(partial, zip_path)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    logger.debug("packed %s into %s", root, zip_path)


def _walk_tree(root: Path) -> Iterator[Path]:
    yield root
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        dirnames.sort()
        for name in dirnames:
            yield current / name
        for name in sorted(filenames):
            yield current / name


def _date_time(path: Path) -> tuple[int, int, int, int, int, int]:
    date_time = time.localtime(path.stat().st_mtime)[:6]
    # Zipは1980年より前の日時を表せない
    return max(date_time, (1980, 1, 1, 0, 0, 0))


def _write_directory(archive: zipfile.ZipFile, path: Path, arcname: str) -> None:
    info = zipfile.ZipInfo(f"{arcname}/", date_time=_date_time(path))
    info.compress_type = zipfile.ZIP_STORED
    info.external_attr = ((stat.S_IFDIR | DIR_PERMISSIONS) << 16) | 0x10
    archive.writestr(info, b"")


def _write_file(archive: zipfile.ZipFile, path: Path, arcname: str) -> None:
    info = zipfile.ZipInfo(arcname, date_time=_date_time(path))
    info.compress_type = zipfile.ZIP_STORED
    info.external_attr = (stat.S_IFREG | FILE_PERMISSIONS) << 16
    info.file_size = path.stat().st_size
    with path.open("rb") as source, archive.open(
        info, "w", force_zip64=info.file_size > zipfile.ZIP64_LIMIT
    ) as dest:
        shutil.copyfileobj(source, dest)


class ArchiveConversionJob:
    """アーカイブ内のすべての画像を変換するジョブ

    実行すると、アーカイブの隣に作業ディレクトリを作成して展開し、
    中の画像を変換してから新しいアーカイブに格納する。
    作業ディレクトリは成否にかかわらず削除される。

    使用例:
        >>> images = ArchiveImages.search(archive, archiver)
        >>> job = ArchiveConversionJob.new(images, config, archiver)
        >>> job.run()
    """

    def __init__(
        self,
        archive: ArchivePath,
        extract_dir: Path,
        jobs: list[ConversionJob],
        config: ConversionConfig,
        archiver: Archiver,
        tools: ToolProvider,
    ) -> None:
        self._archive = archive
        self._extract_dir = extract_dir
        self._jobs = jobs
        self._config = config
        self._archiver = archiver
        self._tools = tools

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def path(self) -> Path:
        return self._archive.path

    @property
    def workspace(self) -> Path:
        """展開先の作業ディレクトリ（アーカイブ名から拡張子を除いたもの）"""
        return self._archive.parent / self._archive.name

    @property
    def extract_dir(self) -> Path:
        """7zに渡す展開先"""
        return self._extract_dir

    @property
    def output_path(self) -> Path:
        return self._archive.converted_path(self._config.target.value)

    @property
    def jobs(self) -> list[ConversionJob]:
        return list(self._jobs)

    @classmethod
    def new(
        cls,
        images: ArchiveImages,
        config: ConversionConfig,
        archiver: Archiver,
        tools: ToolProvider | None = None,
    ) -> ArchiveConversionJob:
        """アーカイブ変換ジョブを作成する

        ジョブを実行するまでファイルは変更しない。

        Raises:
            NothingToDo: 変換済み、または変換対象の画像がない場合
            PreconditionError: 作業ディレクトリが既に存在する場合、
                または変換後のファイル名が他の画像と重なる場合
        """
        archive = images.archive
        target = config.target

        if cls.already_converted(archive, target.value):
            raise NothingToDo(f"変換済みです: {archive.path}")

        workspace = archive.parent / archive.name
        if workspace.exists():
            raise PreconditionError(f"展開先のディレクトリが既に存在します: {workspace}")

        extract_dir = archive.parent if has_root_within(images.entries, archive.name) else workspace

        jobs = []
        for info in images:
            image_path = extract_dir / info.path
            plan = plan_conversion(info.format, target, config.force)
            if plan is None:
                logger.debug("skip conversion for %s", image_path)
                continue
            logger.debug("create job for %s: %s", image_path, plan)
            jobs.append(ConversionJob(image_path, plan))

        if not jobs:
            raise NothingToDo(f"変換する画像がありません: {archive.path}")

        collisions = find_collisions((extract_dir / info.path for info in images), jobs)
        if collisions:
            raise PreconditionError(
                f"変換後のファイル名が他の画像と重なります: {', '.join(map(str, collisions))}"
            )

        return cls(archive, extract_dir, jobs, config, archiver, tools or ToolProvider())

    @staticmethod
    def already_converted(archive: ArchivePath, target_value: str) -> bool:
        """アーカイブが変換済みかを判定する

        名前が既に `.<形式>.<拡張子>` で終わっているか、
        同じディレクトリに変換後のアーカイブが存在する場合は変換済みとみなす。
        """
        ending = f".{target_value}.{archive.extension}"
        if archive.path.name.lower().endswith(ending):
            return True
        return archive.converted_path(target_value).exists()

    def run(
        self,
        progress_callback: ProgressCallback | None = None,
        notifier: Notifier | None = None,
    ) -> Path:
        """ジョブを実行する

        Returns:
            作成したアーカイブのパス

        Raises:
            PreconditionError: アーカイブが消えた、または作業ディレクトリが既に存在する場合
            ConversionError: 展開、変換、格納のいずれかに失敗した場合
            Interrupted: 中断が要求された場合
        """
        if not self._archive.path.is_file():
            raise PreconditionError(f"アーカイブが見つかりません: {self.path}")

        try:
            self.workspace.mkdir()
        except FileExistsError as e:
            raise PreconditionError(f"展開先のディレクトリが既に存在します: {self.workspace}") from e

        with WorkspaceGuard(self.workspace):
            try:
                self._archiver.extract(self._archive.path, self._extract_dir)
                scheduler = ConversionScheduler(
                    self._jobs, self._config.workers, self._tools, notifier
                )
                scheduler.run(progress_callback)
                pack_directory(self.workspace, self.output_path)
            except (ToolError, OSError) as e:
                raise ConversionError(f"アーカイブ内の画像を変換できません: {self.path}", [e]) from e

        logger.info("created %s", self.output_path)
        return self.output_path
