"""Converter module for cbzin.

画像1枚ごとの変換計画、外部ツールの起動、変換ジョブの状態機械、
同時実行数を制限するスケジューラを提供するモジュール。
"""

from cbzin.converter.formats import ImageFormat
from cbzin.converter.job import Completed, ConversionJob, Running, Step, Waiting
from cbzin.converter.plan import (
    Finish,
    OneStep,
    Plan,
    TwoStep,
    UndecidedJxl,
    plan_conversion,
    recovery_plan,
    required_tools,
)
from cbzin.converter.process import ManagedProcess
from cbzin.converter.scheduler import ConversionScheduler, Notification, Notifier
from cbzin.converter.tools import BackupTool, BestTool, Tool, ToolProvider, ToolSettings

__all__ = [
    "BackupTool",
    "BestTool",
    "Completed",
    "ConversionJob",
    "ConversionScheduler",
    "Finish",
    "ImageFormat",
    "ManagedProcess",
    "Notification",
    "Notifier",
    "OneStep",
    "Plan",
    "Running",
    "Step",
    "Tool",
    "ToolProvider",
    "ToolSettings",
    "TwoStep",
    "UndecidedJxl",
    "Waiting",
    "plan_conversion",
    "recovery_plan",
    "required_tools",
]
