"""変換計画モジュール

画像1枚ごとに必要な形式変換の手順（レグ）を決定する純粋なロジックを提供する。
外部ツールが直接変換できない組み合わせは中間形式を経由する2段階変換とする。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from cbzin.converter.formats import ImageFormat
from cbzin.converter.tools import Tool

logger = logging.getLogger(__name__)

JPEG = ImageFormat.JPEG
PNG = ImageFormat.PNG
AVIF = ImageFormat.AVIF
JXL = ImageFormat.JXL
WEBP = ImageFormat.WEBP


@dataclass(frozen=True)
class OneStep:
    """単一ツールで完結する変換"""

    source: ImageFormat
    target: ImageFormat


@dataclass(frozen=True)
class TwoStep:
    """中間形式を経由する2段階変換の1段目

    Attributes:
        source: 変換元の形式
        over: 中間形式
        target: 最終的な変換先の形式
    """

    source: ImageFormat
    over: ImageFormat
    target: ImageFormat


@dataclass(frozen=True)
class Finish:
    """2段階変換の2段目（1段目が成功した後にのみ生成される）"""

    source: ImageFormat
    target: ImageFormat


@dataclass(frozen=True)
class UndecidedJxl:
    """中間形式が画像の内容に依存するJXL変換

    JXLが再圧縮されたJPEGを含む場合はJPEG、それ以外はPNGを経由する。
    画像ファイルが準備されるまで判定できないため、ジョブ開始時に解決する。
    """

    source: ImageFormat
    target: ImageFormat


Plan = OneStep | TwoStep | UndecidedJxl
"""計画時点の変換計画"""

LegPlan = OneStep | TwoStep | Finish
"""実行可能な具体的な変換手順"""

JxlProbe = Callable[[Path], bool]
"""JXLファイルが再圧縮JPEGかを判定する関数"""


def plan_conversion(current: ImageFormat, target: ImageFormat, force: bool) -> Plan | None:
    """画像の変換計画を決定する

    JPEGまたはPNGが変換元か変換先に含まれる計画は常に実行する。
    新しい形式同士の変換はforceが指定された場合のみ実行する。

    Args:
        current: 画像の現在の形式
        target: 変換先の形式
        force: 全形式の変換を強制するか

    Returns:
        変換計画、変換不要の場合はNone
    """
    plan = _compute_plan(current, target)
    if plan is None:
        return None
    if force or _performs_always(plan):
        return plan
    logger.debug("skip %s -> %s without force", current.value, target.value)
    return None


def _compute_plan(current: ImageFormat, target: ImageFormat) -> Plan | None:
    if current == target:
        return None
    if current == AVIF and target in (JXL, WEBP):
        return TwoStep(current, PNG, target)
    if current == JXL and target in (AVIF, WEBP):
        return UndecidedJxl(current, target)
    if current == WEBP and target in (JPEG, AVIF, JXL):
        return TwoStep(current, PNG, target)
    return OneStep(current, target)


def _performs_always(plan: Plan) -> bool:
    if isinstance(plan, UndecidedJxl):
        return False
    return plan.source.is_legacy or plan.target.is_legacy


def resolve_plan(plan: Plan | LegPlan, image_path: Path, probe: JxlProbe) -> LegPlan:
    """変換計画を具体的な変換手順に解決する

    UndecidedJxlの場合のみprobeを呼び出して中間形式を決定する。

    Args:
        plan: 変換計画
        image_path: 変換対象の画像パス
        probe: JXL判定関数

    Returns:
        具体的な変換手順
    """
    if not isinstance(plan, UndecidedJxl):
        return plan
    if probe(image_path):
        logger.debug("jxl is compressed jpeg: %s", image_path)
        return TwoStep(plan.source, JPEG, plan.target)
    logger.debug("jxl is encoded: %s", image_path)
    return TwoStep(plan.source, PNG, plan.target)


def next_leg(plan: LegPlan) -> tuple[ImageFormat, ImageFormat]:
    """次に実行するレグの(変換元, 変換先)を返す"""
    if isinstance(plan, TwoStep):
        return plan.source, plan.over
    return plan.source, plan.target


def recovery_plan(plan: LegPlan) -> LegPlan | None:
    """専用ツールが失敗した場合の代替手順を返す

    PNGを中間形式として代替ツールで変換し直す。
    変換元か変換先がPNGの場合は中間形式が不要なため単一レグとする。

    Returns:
        代替手順、Finishレグの場合は回復手段がないためNone
    """
    if isinstance(plan, Finish):
        return None
    if PNG in (plan.source, plan.target):
        return OneStep(plan.source, plan.target)
    return TwoStep(plan.source, PNG, plan.target)


def output_formats(plan: Plan | LegPlan) -> set[ImageFormat]:
    """変換計画の実行中に作成される可能性のあるファイルの形式

    中間形式と、代替ツールで再試行する場合のPNGを含む。
    """
    formats = {plan.target}
    if isinstance(plan, TwoStep):
        formats.add(plan.over)
    elif isinstance(plan, UndecidedJxl):
        formats.update((JPEG, PNG))
    if not isinstance(plan, Finish):
        formats.add(PNG)
    return formats


def _decoder(source: ImageFormat) -> Tool:
    return {
        JPEG: Tool.MAGICK,
        PNG: Tool.MAGICK,
        AVIF: Tool.AVIFDEC,
        JXL: Tool.DJXL,
        WEBP: Tool.DWEBP,
    }[source]


def _encoder(target: ImageFormat) -> Tool:
    return {
        JPEG: Tool.MAGICK,
        PNG: Tool.MAGICK,
        AVIF: Tool.CAVIF,
        JXL: Tool.CJXL,
        WEBP: Tool.CWEBP,
    }[target]


def required_tools(plan: Plan | LegPlan) -> list[Tool]:
    """変換計画の実行に必要な外部ツールを返す"""
    if isinstance(plan, UndecidedJxl):
        return [Tool.JXLINFO, _decoder(plan.source), _encoder(plan.target)]
    if isinstance(plan, TwoStep):
        return [_decoder(plan.source), _encoder(plan.target)]
    if plan.source.is_legacy:
        return [_encoder(plan.target)]
    return [_decoder(plan.source)]
