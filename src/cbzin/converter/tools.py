"""外部ツールモジュール

画像形式の組み合わせごとに使用する外部ツールとコマンドラインを定義する。
専用ツールが失敗した場合は汎用ツール（magick）を代替として使用する。
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from cbzin.converter.formats import ImageFormat
from cbzin.converter.process import ManagedProcess

logger = logging.getLogger(__name__)

# jxlinfoの出力に含まれる、再圧縮JPEGの復元用ボックスを示す行
JPEG_RECONSTRUCTION_MARKER = 'box: type: "jbrd"'


class Tool(Enum):
    """使用する外部ツール（値は実行コマンド名）"""

    MAGICK = "magick"
    CAVIF = "cavif"
    AVIFDEC = "avifdec"
    CJXL = "cjxl"
    DJXL = "djxl"
    JXLINFO = "jxlinfo"
    CWEBP = "cwebp"
    DWEBP = "dwebp"
    SEVEN_ZIP = "7z"

    @property
    def command(self) -> str:
        """実行コマンド名"""
        return self.value

    def available(self) -> bool:
        """PATH上にコマンドが存在するか"""
        return shutil.which(self.command) is not None


@dataclass(frozen=True)
class ToolSettings:
    """外部ツールの品質設定"""

    jpeg_quality: int = 92
    avif_quality: int = 88
    avif_speed: int = 3
    avif_decode_jpeg_quality: int = 80
    jxl_effort: int = 9
    jxl_distance: float = 0.0
    webp_quality: int = 90


@dataclass(frozen=True)
class BestTool:
    """形式の組み合わせに最適な専用ツールを使用する"""


@dataclass(frozen=True)
class BackupTool:
    """専用ツールが失敗したため代替ツールを使用する

    Attributes:
        last_error: 専用ツールでの失敗内容
    """

    last_error: Exception


ToolSelection = BestTool | BackupTool

CommandBuilder = Callable[[ToolSettings, str, str], list[str]]

_DIRECT_COMMANDS: dict[tuple[ImageFormat, ImageFormat], CommandBuilder] = {
    (ImageFormat.JPEG, ImageFormat.PNG): lambda s, i, o: ["magick", i, o],
    (ImageFormat.PNG, ImageFormat.JPEG): lambda s, i, o: [
        "magick",
        i,
        "-quality",
        str(s.jpeg_quality),
        o,
    ],
    (ImageFormat.AVIF, ImageFormat.PNG): lambda s, i, o: ["avifdec", "--jobs", "1", i, o],
    (ImageFormat.AVIF, ImageFormat.JPEG): lambda s, i, o: [
        "avifdec",
        "--jobs",
        "1",
        "--quality",
        str(s.avif_decode_jpeg_quality),
        i,
        o,
    ],
    (ImageFormat.JXL, ImageFormat.PNG): lambda s, i, o: ["djxl", i, o, "--num_threads=1"],
    (ImageFormat.JXL, ImageFormat.JPEG): lambda s, i, o: ["djxl", i, o, "--num_threads=1"],
    (ImageFormat.WEBP, ImageFormat.PNG): lambda s, i, o: ["dwebp", i, "-o", o],
}


def _encode_avif(s: ToolSettings, i: str, o: str) -> list[str]:
    return [
        "cavif",
        f"--speed={s.avif_speed}",
        "--threads=1",
        f"--quality={s.avif_quality}",
        i,
        "-o",
        o,
    ]


def _encode_jxl(s: ToolSettings, i: str, o: str) -> list[str]:
    return [
        "cjxl",
        f"--effort={s.jxl_effort}",
        "--num_threads=1",
        f"--distance={s.jxl_distance:g}",
        i,
        o,
    ]


def _encode_webp(s: ToolSettings, i: str, o: str) -> list[str]:
    return ["cwebp", "-q", str(s.webp_quality), i, "-o", o]


for _source in (ImageFormat.JPEG, ImageFormat.PNG):
    _DIRECT_COMMANDS[(_source, ImageFormat.AVIF)] = _encode_avif
    _DIRECT_COMMANDS[(_source, ImageFormat.JXL)] = _encode_jxl
    _DIRECT_COMMANDS[(_source, ImageFormat.WEBP)] = _encode_webp


class ToolProvider:
    """外部ツールのコマンド生成と起動を行う

    Attributes:
        settings: ツールの品質設定
    """

    def __init__(self, settings: ToolSettings | None = None) -> None:
        self.settings = settings or ToolSettings()

    def conversion_command(
        self,
        source: ImageFormat,
        target: ImageFormat,
        selection: ToolSelection,
        input_path: Path,
        output_path: Path,
    ) -> list[str]:
        """1レグ分の変換コマンドを生成する

        Raises:
            ValueError: 専用ツールが存在しない組み合わせの場合
        """
        if isinstance(selection, BackupTool):
            return self.backup_command(input_path, output_path)
        builder = _DIRECT_COMMANDS.get((source, target))
        if builder is None:
            raise ValueError(f"直接変換できない組み合わせです: {source.value} -> {target.value}")
        return builder(self.settings, str(input_path), str(output_path))

    def backup_command(self, input_path: Path, output_path: Path) -> list[str]:
        """代替ツールの変換コマンドを生成する"""
        return [Tool.MAGICK.command, str(input_path), str(output_path)]

    def probe_command(self, image_path: Path) -> list[str]:
        """JXLのメタ情報を取得するコマンドを生成する"""
        return [Tool.JXLINFO.command, str(image_path)]

    def spawn_conversion(
        self,
        source: ImageFormat,
        target: ImageFormat,
        selection: ToolSelection,
        input_path: Path,
        output_path: Path,
        on_exit: Callable[[], None] | None = None,
    ) -> ManagedProcess:
        """1レグ分の変換プロセスを起動する

        Raises:
            ToolSpawnError: プロセスを起動できない場合
        """
        command = self.conversion_command(source, target, selection, input_path, output_path)
        logger.debug("spawn: %s", " ".join(command))
        return ManagedProcess(command, on_exit=on_exit)

    def jxl_is_compressed_jpeg(self, image_path: Path) -> bool:
        """JXLファイルが再圧縮されたJPEGかを判定する

        Raises:
            ToolError: jxlinfoの起動または実行に失敗した場合
        """
        with ManagedProcess(self.probe_command(image_path), capture_output=True) as process:
            output = process.wait_with_output()
        return any(
            line.lstrip().startswith(JPEG_RECONSTRUCTION_MARKER) for line in output.splitlines()
        )
