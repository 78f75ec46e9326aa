"""外部ツールのコマンド生成のテスト"""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from cbzin.converter.formats import ImageFormat
from cbzin.converter.tools import (
    BackupTool,
    BestTool,
    Tool,
    ToolProvider,
    ToolSettings,
)
from cbzin.errors import ToolFailedError, ToolSpawnError

JPEG = ImageFormat.JPEG
PNG = ImageFormat.PNG
AVIF = ImageFormat.AVIF
JXL = ImageFormat.JXL
WEBP = ImageFormat.WEBP


class TestConversionCommand:
    """ToolProvider.conversion_commandのテスト"""

    @pytest.mark.parametrize(
        "source,target,expected",
        [
            pytest.param(JPEG, PNG, ["magick", "in", "out"], id="jpeg->png"),
            pytest.param(PNG, JPEG, ["magick", "in", "-quality", "92", "out"], id="png->jpeg"),
            pytest.param(
                JPEG,
                AVIF,
                ["cavif", "--speed=3", "--threads=1", "--quality=88", "in", "-o", "out"],
                id="jpeg->avif",
            ),
            pytest.param(
                PNG,
                JXL,
                ["cjxl", "--effort=9", "--num_threads=1", "--distance=0", "in", "out"],
                id="png->jxl",
            ),
            pytest.param(PNG, WEBP, ["cwebp", "-q", "90", "in", "-o", "out"], id="png->webp"),
            pytest.param(AVIF, PNG, ["avifdec", "--jobs", "1", "in", "out"], id="avif->png"),
            pytest.param(
                AVIF,
                JPEG,
                ["avifdec", "--jobs", "1", "--quality", "80", "in", "out"],
                id="avif->jpeg",
            ),
            pytest.param(JXL, JPEG, ["djxl", "in", "out", "--num_threads=1"], id="jxl->jpeg"),
            pytest.param(JXL, PNG, ["djxl", "in", "out", "--num_threads=1"], id="jxl->png"),
            pytest.param(WEBP, PNG, ["dwebp", "in", "-o", "out"], id="webp->png"),
        ],
    )
    def test_best_tool(self, source: ImageFormat, target: ImageFormat, expected: list[str]) -> None:
        """正常系: 専用ツールのコマンド"""
        command = ToolProvider().conversion_command(
            source, target, BestTool(), Path("in"), Path("out")
        )
        assert command == expected

    def test_custom_settings(self) -> None:
        """正常系: 品質設定がコマンドに反映される"""
        tools = ToolProvider(ToolSettings(avif_quality=70, avif_speed=6))
        command = tools.conversion_command(JPEG, AVIF, BestTool(), Path("in"), Path("out"))
        assert "--quality=70" in command
        assert "--speed=6" in command

    def test_backup_tool(self) -> None:
        """正常系: 代替ツールは組み合わせに関わらずmagick"""
        selection = BackupTool(RuntimeError("cavif failed"))
        command = ToolProvider().conversion_command(
            JPEG, PNG, selection, Path("a.jpg"), Path("a.png")
        )
        assert command == ["magick", "a.jpg", "a.png"]

    @pytest.mark.parametrize(
        "source,target",
        [
            pytest.param(WEBP, JPEG, id="webp->jpeg"),
            pytest.param(AVIF, JXL, id="avif->jxl"),
            pytest.param(JXL, WEBP, id="jxl->webp"),
        ],
    )
    def test_no_direct_tool(self, source: ImageFormat, target: ImageFormat) -> None:
        """異常系: 専用ツールがない組み合わせはValueError"""
        with pytest.raises(ValueError):
            ToolProvider().conversion_command(source, target, BestTool(), Path("in"), Path("out"))


class TestTool:
    """Tool列挙型のテスト"""

    def test_command_names(self) -> None:
        assert Tool.SEVEN_ZIP.command == "7z"
        assert Tool.MAGICK.command == "magick"

    @pytest.mark.parametrize(
        "which_result,expected",
        [
            pytest.param("/usr/bin/cjxl", True, id="正常系: PATH上に存在"),
            pytest.param(None, False, id="異常系: 見つからない"),
        ],
    )
    def test_available(self, which_result: str | None, expected: bool) -> None:
        with patch("cbzin.converter.tools.shutil.which", return_value=which_result) as which:
            assert Tool.CJXL.available() is expected
        which.assert_called_once_with("cjxl")


class TestJxlProbe:
    """JXLの再圧縮JPEG判定のテスト"""

    @pytest.mark.parametrize(
        "jpeg_reconstruction",
        [
            pytest.param(True, id="正常系: jbrdボックスあり"),
            pytest.param(False, id="正常系: jbrdボックスなし"),
        ],
    )
    def test_jxl_is_compressed_jpeg(self, fake_tools, tmp_path: Path, jpeg_reconstruction: bool) -> None:
        tools = fake_tools(jpeg_reconstruction=jpeg_reconstruction)
        image = tmp_path / "a.jxl"
        image.write_bytes(b"jxl")

        assert tools.jxl_is_compressed_jpeg(image) is jpeg_reconstruction
        assert tools.probes == [image]

    def test_probe_failure(self, tmp_path: Path) -> None:
        """異常系: jxlinfoが異常終了した場合はToolFailedError"""

        class FailingProbe(ToolProvider):
            def probe_command(self, image_path: Path) -> list[str]:
                return [sys.executable, "-c", "import sys; sys.exit(2)"]

        with pytest.raises(ToolFailedError) as exc_info:
            FailingProbe().jxl_is_compressed_jpeg(tmp_path / "a.jxl")
        assert exc_info.value.returncode == 2

    def test_spawn_failure(self, tmp_path: Path) -> None:
        """異常系: 存在しないコマンドはToolSpawnError"""

        class MissingTool(ToolProvider):
            def conversion_command(self, *args: object) -> list[str]:
                return [str(tmp_path / "no-such-tool")]

        with pytest.raises(ToolSpawnError):
            MissingTool().spawn_conversion(
                JPEG, AVIF, BestTool(), tmp_path / "a.jpg", tmp_path / "a.avif"
            )
