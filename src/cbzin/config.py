"""Configuration module for cbzin."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import psutil
import yaml

from cbzin.converter.formats import ImageFormat
from cbzin.converter.tools import ToolSettings

# 1ワーカーあたりのメモリ使用量（MB）
MEMORY_PER_WORKER_MB = 500

DEFAULT_LOG_FILE = Path("cbzin.log")


class ConfigError(Exception):
    """設定ファイル読み込みエラー"""

    pass


@dataclass(frozen=True)
class ConversionConfig:
    """変換の実行時設定

    Attributes:
        target: 変換先の画像形式
        workers: 同時に実行する外部プロセスの最大数
        force: 新しい形式同士の変換も行うか
    """

    target: ImageFormat
    workers: int = 1
    force: bool = False

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"ワーカー数は1以上である必要があります: {self.workers}")


@dataclass(frozen=True)
class CbzinConfig:
    """ルート設定"""

    workers: int | None = None
    force: bool = False
    log_file: Path = DEFAULT_LOG_FILE
    tools: ToolSettings = field(default_factory=ToolSettings)


def load_config(path: Path) -> CbzinConfig:
    """設定ファイルを読み込む

    Args:
        path: 設定ファイルパス

    Returns:
        CbzinConfig: 読み込んだ設定（デフォルトとマージ済み）

    Raises:
        ConfigError: ファイル読み込みまたはパースエラー
    """
    if not path.exists():
        raise ConfigError(f"設定ファイルが見つかりません: {path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML解析エラー: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("設定ファイルはYAMLのマッピング形式である必要があります")

    default = get_default_config()

    workers = data.get("workers", default.workers)
    if workers is not None and (not isinstance(workers, int) or workers < 1):
        raise ConfigError(f"workersは1以上の整数である必要があります: {workers}")

    log_file = data.get("log_file")
    return CbzinConfig(
        workers=workers,
        force=bool(data.get("force", default.force)),
        log_file=Path(log_file) if log_file else default.log_file,
        tools=_merge_tool_settings(data.get("tools", {}), default.tools),
    )


def get_default_config() -> CbzinConfig:
    """デフォルト設定を取得する"""
    return CbzinConfig()


def _merge_tool_settings(data: dict[str, Any], default: ToolSettings) -> ToolSettings:
    """ツール設定をマージする"""
    if not isinstance(data, dict):
        return default
    return ToolSettings(
        jpeg_quality=data.get("jpeg_quality", default.jpeg_quality),
        avif_quality=data.get("avif_quality", default.avif_quality),
        avif_speed=data.get("avif_speed", default.avif_speed),
        avif_decode_jpeg_quality=data.get(
            "avif_decode_jpeg_quality", default.avif_decode_jpeg_quality
        ),
        jxl_effort=data.get("jxl_effort", default.jxl_effort),
        jxl_distance=float(data.get("jxl_distance", default.jxl_distance)),
        webp_quality=data.get("webp_quality", default.webp_quality),
    )


def resolve_workers(option: int | None, config: CbzinConfig) -> int:
    """ワーカー数を決定する

    コマンドライン指定、設定ファイル、自動計算の順に優先する。
    """
    if option is not None:
        return option
    if config.workers is not None:
        return config.workers
    return calculate_workers()


def calculate_workers(available_memory_mb: int | None = None) -> int:
    """最適なワーカー数を計算する

    メモリ使用量とCPUコア数に基づいて、最適なワーカー数を計算する。
    1ワーカーあたり500MBのメモリを想定する。

    Args:
        available_memory_mb: 使用可能なメモリ（MB）。Noneの場合は自動検出

    Returns:
        最適なワーカー数（最小1）
    """
    cpu_count = os.cpu_count() or 1

    if available_memory_mb is None:
        available_memory_mb = psutil.virtual_memory().available // (1024 * 1024)

    memory_based_workers = available_memory_mb // MEMORY_PER_WORKER_MB
    return max(1, min(memory_based_workers, cpu_count))
