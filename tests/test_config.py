"""設定ファイル読み込みのテスト"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cbzin.config import (
    DEFAULT_LOG_FILE,
    MEMORY_PER_WORKER_MB,
    CbzinConfig,
    ConfigError,
    ConversionConfig,
    calculate_workers,
    get_default_config,
    load_config,
    resolve_workers,
)
from cbzin.converter.formats import ImageFormat
from cbzin.converter.tools import ToolSettings


class TestDefaultConfig:
    """デフォルト設定のテスト"""

    def test_get_default_config_returns_cbzin_config(self) -> None:
        """デフォルト設定がCbzinConfigを返す"""
        config = get_default_config()
        assert isinstance(config, CbzinConfig)

    def test_default_values(self) -> None:
        """デフォルト値が正しい"""
        config = get_default_config()
        assert config.workers is None  # 自動計算
        assert config.force is False
        assert config.log_file == DEFAULT_LOG_FILE
        assert config.tools == ToolSettings()


class TestConversionConfig:
    """ConversionConfigのテスト"""

    def test_defaults(self) -> None:
        config = ConversionConfig(ImageFormat.AVIF)
        assert config.workers == 1
        assert config.force is False

    @pytest.mark.parametrize("workers", [0, -4])
    def test_invalid_workers(self, workers: int) -> None:
        """異常系: ワーカー数が1未満の場合はValueError"""
        with pytest.raises(ValueError):
            ConversionConfig(ImageFormat.AVIF, workers=workers)


class TestLoadConfig:
    """設定読み込みのテスト"""

    def test_load_config_valid_file(self, tmp_path: Path) -> None:
        """有効な設定ファイルが読み込める"""
        config_file = tmp_path / "cbzin.yml"
        config_file.write_text("workers: 4\nforce: true\nlog_file: logs/run.log\n")

        config = load_config(config_file)
        assert config.workers == 4
        assert config.force is True
        assert config.log_file == Path("logs/run.log")

    def test_load_config_file_not_found(self, tmp_path: Path) -> None:
        """存在しないファイルでConfigError"""
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nonexistent.yml")

    def test_load_config_invalid_yaml(self, tmp_path: Path) -> None:
        """無効なYAMLでConfigError"""
        config_file = tmp_path / "invalid.yml"
        config_file.write_text("this is not valid yaml: [")

        with pytest.raises(ConfigError):
            load_config(config_file)

    def test_load_config_not_mapping(self, tmp_path: Path) -> None:
        """マッピング以外のYAMLでConfigError"""
        config_file = tmp_path / "list.yml"
        config_file.write_text("- workers\n- force\n")

        with pytest.raises(ConfigError):
            load_config(config_file)

    def test_load_config_empty_file(self, tmp_path: Path) -> None:
        """空のファイルはデフォルト設定を返す"""
        config_file = tmp_path / "empty.yml"
        config_file.write_text("")

        assert load_config(config_file) == get_default_config()

    @pytest.mark.parametrize(
        "content",
        [
            pytest.param("workers: 0", id="異常系: 0"),
            pytest.param("workers: -2", id="異常系: 負数"),
            pytest.param("workers: many", id="異常系: 文字列"),
        ],
    )
    def test_load_config_invalid_workers(self, tmp_path: Path, content: str) -> None:
        config_file = tmp_path / "workers.yml"
        config_file.write_text(content)

        with pytest.raises(ConfigError):
            load_config(config_file)

    def test_load_config_tool_settings(self, tmp_path: Path) -> None:
        """ツール設定がデフォルト値とマージされる"""
        config_content = """
tools:
  avif_quality: 70
  jxl_distance: 1
"""
        config_file = tmp_path / "tools.yml"
        config_file.write_text(config_content)

        config = load_config(config_file)
        assert config.tools.avif_quality == 70
        assert config.tools.jxl_distance == 1.0
        assert config.tools.avif_speed == ToolSettings().avif_speed
        assert config.workers is None


class TestResolveWorkers:
    """resolve_workersのテスト"""

    @pytest.mark.parametrize(
        "option,configured,expected",
        [
            pytest.param(3, 5, 3, id="正常系: コマンドライン指定を優先"),
            pytest.param(None, 5, 5, id="正常系: 設定ファイル"),
        ],
    )
    def test_explicit(self, option: int | None, configured: int, expected: int) -> None:
        assert resolve_workers(option, CbzinConfig(workers=configured)) == expected

    def test_automatic(self) -> None:
        """正常系: 指定がなければ自動計算"""
        with patch("cbzin.config.calculate_workers", return_value=6) as calculate:
            assert resolve_workers(None, CbzinConfig()) == 6
        calculate.assert_called_once_with()


class TestCalculateWorkers:
    """calculate_workersのテスト"""

    @pytest.mark.parametrize(
        "memory_mb,cpu_count,expected",
        [
            pytest.param(MEMORY_PER_WORKER_MB * 8, 4, 4, id="正常系: CPUコア数で制限"),
            pytest.param(MEMORY_PER_WORKER_MB * 2, 16, 2, id="正常系: メモリで制限"),
            pytest.param(100, 8, 1, id="正常系: 最小1"),
        ],
    )
    def test_calculate_workers(self, memory_mb: int, cpu_count: int, expected: int) -> None:
        with patch("cbzin.config.os.cpu_count", return_value=cpu_count):
            assert calculate_workers(memory_mb) == expected

    def test_detect_memory(self) -> None:
        """正常系: メモリ量はpsutilで取得する"""
        memory = MagicMock(available=MEMORY_PER_WORKER_MB * 3 * 1024 * 1024)
        with (
            patch("cbzin.config.psutil.virtual_memory", return_value=memory),
            patch("cbzin.config.os.cpu_count", return_value=8),
        ):
            assert calculate_workers() == 3
