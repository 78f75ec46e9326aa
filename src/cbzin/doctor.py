"""依存ツールチェッカー"""

from __future__ import annotations

import re
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass

from cbzin.converter.tools import Tool
from cbzin.errors import MissingToolsError


@dataclass(frozen=True)
class CheckResult:
    """チェック結果"""

    name: str
    required: bool
    found: bool
    version: str | None
    message: str | None


@dataclass(frozen=True)
class DependencyInfo:
    """依存ツール情報"""

    name: str
    tool: Tool
    version_flag: str
    required: bool

    @property
    def command(self) -> str:
        return self.tool.command


DEPENDENCIES: list[DependencyInfo] = [
    DependencyInfo(name="ImageMagick", tool=Tool.MAGICK, version_flag="-version", required=True),
    DependencyInfo(name="7-Zip", tool=Tool.SEVEN_ZIP, version_flag="i", required=True),
    DependencyInfo(name="cavif", tool=Tool.CAVIF, version_flag="--version", required=False),
    DependencyInfo(name="avifdec", tool=Tool.AVIFDEC, version_flag="--version", required=False),
    DependencyInfo(name="cjxl", tool=Tool.CJXL, version_flag="--version", required=False),
    DependencyInfo(name="djxl", tool=Tool.DJXL, version_flag="--version", required=False),
    DependencyInfo(name="jxlinfo", tool=Tool.JXLINFO, version_flag="--version", required=False),
    DependencyInfo(name="cwebp", tool=Tool.CWEBP, version_flag="-version", required=False),
    DependencyInfo(name="dwebp", tool=Tool.DWEBP, version_flag="-version", required=False),
]


def _extract_version(output: str) -> str | None:
    """コマンド出力からバージョン番号を抽出する"""
    patterns = [
        r"(\d+\.\d+\.\d+)",
        r"(\d+\.\d+)",
        r"version\s+(\d+)",
    ]
    for pattern in patterns:
        match = re.search(pattern, output, re.IGNORECASE)
        if match:
            return match.group(1)
    return None


def check_dependency(info: DependencyInfo) -> CheckResult:
    """単一の依存ツールをチェックする"""
    try:
        result = subprocess.run(
            [info.command, info.version_flag],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except FileNotFoundError:
        message = f"コマンド '{info.command}' が見つかりません"
    except subprocess.TimeoutExpired:
        message = f"コマンド '{info.command}' がタイムアウトしました"
    except OSError as e:
        message = f"コマンド実行エラー: {e}"
    else:
        version = _extract_version(result.stdout + result.stderr)
        return CheckResult(info.name, info.required, found=True, version=version, message=None)
    return CheckResult(info.name, info.required, found=False, version=None, message=message)


def check_all_dependencies() -> list[CheckResult]:
    """全ての依存ツールをチェックする"""
    return [check_dependency(info) for info in DEPENDENCIES]


def find_missing_tools(tools: Iterable[Tool]) -> list[str]:
    """PATH上に見つからないツールの名前をソートして返す"""
    return sorted({tool.command for tool in tools if not tool.available()})


def ensure_tools_available(tools: Iterable[Tool]) -> None:
    """必要なツールがすべて利用可能かを確認する

    Raises:
        MissingToolsError: 見つからないツールがある場合
    """
    missing = find_missing_tools(tools)
    if missing:
        raise MissingToolsError(missing)
