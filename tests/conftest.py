"""共通フィクスチャ

外部ツールはsys.executableで起動するPythonのワンライナーに置き換え、
プロセスの起動、終了通知、ポーリングは実際の仕組みで動かす。
アーカイブの一覧取得と展開はzipfileで代用する。
"""

from __future__ import annotations

import sys
import zipfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import pytest

from cbzin.converter.formats import ImageFormat
from cbzin.converter.tools import (
    JPEG_RECONSTRUCTION_MARKER,
    BackupTool,
    ToolProvider,
    ToolSelection,
)
from cbzin.workspace.archive import ArchiveEntry

COPY_SCRIPT = "import shutil, sys, time; time.sleep(float(sys.argv[3])); shutil.copyfile(sys.argv[1], sys.argv[2])"
FAIL_SCRIPT = "import sys; sys.stderr.write('conversion failed'); sys.exit(1)"


@dataclass(frozen=True)
class ToolCall:
    """偽の外部ツールの呼び出し記録"""

    source: ImageFormat
    target: ImageFormat
    backup: bool
    input_path: Path
    output_path: Path


class FakeToolProvider(ToolProvider):
    """外部ツールの代わりにPythonでファイルをコピーするToolProvider

    Attributes:
        failing: 専用ツールが失敗する(変換元, 変換先)の組
        backup_fails: 代替ツールも失敗させるか
        jpeg_reconstruction: JXL判定で再圧縮JPEGと報告するか
        delay: 各変換プロセスの所要時間（秒）
        calls: 変換コマンドの呼び出し記録
        probes: JXL判定の対象になった画像
    """

    def __init__(
        self,
        failing: Iterable[tuple[ImageFormat, ImageFormat]] = (),
        backup_fails: bool = False,
        jpeg_reconstruction: bool = False,
        delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.failing = set(failing)
        self.backup_fails = backup_fails
        self.jpeg_reconstruction = jpeg_reconstruction
        self.delay = delay
        self.calls: list[ToolCall] = []
        self.probes: list[Path] = []

    def conversion_command(
        self,
        source: ImageFormat,
        target: ImageFormat,
        selection: ToolSelection,
        input_path: Path,
        output_path: Path,
    ) -> list[str]:
        backup = isinstance(selection, BackupTool)
        self.calls.append(ToolCall(source, target, backup, input_path, output_path))
        fails = self.backup_fails if backup else (source, target) in self.failing
        if fails:
            return [sys.executable, "-c", FAIL_SCRIPT]
        return [
            sys.executable,
            "-c",
            COPY_SCRIPT,
            str(input_path),
            str(output_path),
            str(self.delay),
        ]

    def probe_command(self, image_path: Path) -> list[str]:
        self.probes.append(image_path)
        line = JPEG_RECONSTRUCTION_MARKER if self.jpeg_reconstruction else 'box: type: "jxlc"'
        return [sys.executable, "-c", f"print('JPEG XL image'); print({line!r})"]


class ZipArchiver:
    """zipfileで一覧取得と展開を行うArchiver"""

    def __init__(self) -> None:
        self.extracted: list[tuple[Path, Path]] = []

    def list_entries(self, archive: Path) -> list[ArchiveEntry]:
        with zipfile.ZipFile(archive) as zf:
            return [
                ArchiveEntry(PurePosixPath(name.rstrip("/")), name.endswith("/"))
                for name in zf.namelist()
            ]

    def extract(self, archive: Path, destination: Path) -> None:
        self.extracted.append((archive, destination))
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(destination)


@pytest.fixture
def fake_tools() -> Callable[..., FakeToolProvider]:
    """FakeToolProviderを作成する関数"""
    return FakeToolProvider


@pytest.fixture
def tools() -> FakeToolProvider:
    """常に成功するFakeToolProvider"""
    return FakeToolProvider()


@pytest.fixture
def archiver() -> ZipArchiver:
    return ZipArchiver()


@pytest.fixture
def make_archive() -> Callable[[Path, dict[str, bytes]], Path]:
    """エントリ名と内容からZipアーカイブを作成する関数"""

    def _make(path: Path, entries: dict[str, bytes]) -> Path:
        with zipfile.ZipFile(path, "w") as zf:
            for name, data in entries.items():
                zf.writestr(name, data)
        return path

    return _make
