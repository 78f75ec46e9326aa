"""画像変換ジョブモジュール

画像1枚の変換を、外部プロセスを1つずつ起動しながら進める状態機械を提供する。

状態遷移:
    Waiting -> Running -> Completed -> (Waiting | 終了)

Completedから再びWaitingに戻るのは、2段階変換の2段目に進む場合と、
専用ツールの失敗から代替ツールで1回だけ回復を試みる場合のみ。
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from cbzin.converter.plan import (
    Finish,
    JxlProbe,
    LegPlan,
    Plan,
    TwoStep,
    next_leg,
    output_formats,
    recovery_plan,
    resolve_plan,
)
from cbzin.converter.process import ManagedProcess
from cbzin.converter.tools import BackupTool, BestTool, ToolProvider, ToolSelection
from cbzin.errors import ConversionError, ToolError, ToolFailedError

logger = logging.getLogger(__name__)


class Step(Enum):
    """proceed()の結果"""

    SAME_AS_BEFORE = "same_as_before"
    PROGRESS = "progress"
    FINISHED = "finished"


@dataclass(frozen=True)
class Waiting:
    """プロセスの起動待ち"""

    image_path: Path
    plan: LegPlan
    tool: ToolSelection = BestTool()


@dataclass(frozen=True)
class Running:
    """プロセスが実行中"""

    process: ManagedProcess
    image_path: Path
    output_path: Path
    plan: LegPlan
    tool: ToolSelection


@dataclass(frozen=True)
class Completed:
    """プロセスが終了し、終了コードの検証と後処理を待っている"""

    process: ManagedProcess
    image_path: Path
    output_path: Path
    plan: LegPlan
    tool: ToolSelection


JobState = Waiting | Running | Completed


class ConversionJob:
    """画像1枚の変換ジョブ

    start()で変換計画を解決してWaiting状態にし、以降はproceed()を
    FINISHEDが返るまで繰り返し呼び出す。

    Attributes:
        image_path: 変換対象の画像パス
        plan: 作成時の変換計画
    """

    def __init__(self, image_path: Path, plan: Plan) -> None:
        self.image_path = image_path
        self.plan = plan
        self._state: JobState | None = None
        self._finished = False

    def __repr__(self) -> str:
        return f"ConversionJob({str(self.image_path)!r}, {self.plan!r})"

    @property
    def state(self) -> JobState | None:
        """現在の状態（開始前と終了後はNone）"""
        return self._state

    @property
    def finished(self) -> bool:
        return self._finished

    def written_paths(self) -> set[Path]:
        """変換中に作成される可能性のあるファイルのパス（変換元自身を除く）"""
        paths = {self.image_path.with_suffix(fmt.extension) for fmt in output_formats(self.plan)}
        paths.discard(self.image_path)
        return paths

    def start(self, tools: ToolProvider) -> None:
        """変換計画を解決し、Waiting状態にする

        Raises:
            ConversionError: JXLの判定に失敗した場合
        """
        if self._state is not None or self._finished:
            raise RuntimeError(f"ジョブは既に開始されています: {self.image_path}")
        probe: JxlProbe = tools.jxl_is_compressed_jpeg
        try:
            plan = resolve_plan(self.plan, self.image_path, probe)
        except ToolError as e:
            raise ConversionError(f"変換方法を決定できません: {self.image_path}") from e
        self._state = Waiting(self.image_path, plan)

    def proceed(
        self,
        tools: ToolProvider,
        on_exit: Callable[[], None] | None = None,
    ) -> Step:
        """状態を1段階進める

        Args:
            tools: 外部ツールの提供元
            on_exit: 起動したプロセスの終了時に呼び出すコールバック

        Returns:
            進捗の有無、または変換の完了

        Raises:
            ConversionError: 回復不能なエラーが発生した場合
        """
        match self._state:
            case Waiting() as waiting:
                self._state = self._start_leg(waiting, tools, on_exit)
                return Step.PROGRESS
            case Running() as running:
                if not running.process.poll():
                    return Step.SAME_AS_BEFORE
                self._state = Completed(
                    running.process,
                    running.image_path,
                    running.output_path,
                    running.plan,
                    running.tool,
                )
                return Step.PROGRESS
            case Completed() as completed:
                self._state = self._complete(completed)
                if self._state is None:
                    self._finished = True
                    return Step.FINISHED
                return Step.PROGRESS
            case None:
                raise RuntimeError(f"ジョブが実行中ではありません: {self.image_path}")

    def close(self) -> None:
        """実行中のプロセスがあれば終了させる"""
        if isinstance(self._state, (Running, Completed)):
            self._state.process.close()

    def _start_leg(
        self,
        waiting: Waiting,
        tools: ToolProvider,
        on_exit: Callable[[], None] | None,
    ) -> Running:
        source, target = next_leg(waiting.plan)
        output_path = waiting.image_path.with_suffix(target.extension)
        logger.debug("start conversion for %s: %s", waiting.image_path, waiting.plan)
        # 出力先は常に新しいinodeにする
        output_path.unlink(missing_ok=True)

        try:
            process = tools.spawn_conversion(
                source, target, waiting.tool, waiting.image_path, output_path, on_exit
            )
        except ToolError as e:
            message = f"画像を変換できません: {waiting.image_path}"
            if isinstance(waiting.tool, BackupTool):
                raise ConversionError(message, [waiting.tool.last_error, e]) from e
            raise ConversionError(message, [e]) from e

        return Running(process, waiting.image_path, output_path, waiting.plan, waiting.tool)

    def _complete(self, completed: Completed) -> Waiting | None:
        logger.debug("completed conversion for %s: %s", completed.image_path, completed.plan)
        try:
            completed.process.wait()
        except (ToolFailedError, OSError) as e:
            return self._recover(completed, e)
        finally:
            completed.process.close()

        try:
            completed.image_path.unlink()
        except OSError as e:
            raise ConversionError(f"変換前の画像を削除できません: {completed.image_path}") from e

        plan = completed.plan
        if isinstance(plan, TwoStep):
            return Waiting(completed.output_path, Finish(plan.over, plan.target))
        return None

    def _recover(self, completed: Completed, error: Exception) -> Waiting:
        """専用ツールの失敗後、代替ツールによる再試行を準備する"""
        completed.output_path.unlink(missing_ok=True)

        if isinstance(completed.tool, BackupTool):
            raise ConversionError(
                f"変換を断念しました: {completed.image_path}",
                [completed.tool.last_error, error],
            ) from error

        plan = recovery_plan(completed.plan)
        if plan is None:
            raise ConversionError(
                f"前段で変換した画像をさらに変換できません。状態が不整合です: {completed.image_path}",
                [error],
            ) from error

        logger.info("conversion failed for %s, retry with backup tool: %s", completed.image_path, error)
        return Waiting(completed.image_path, plan, BackupTool(error))


def find_collisions(images: Iterable[Path], jobs: Iterable[ConversionJob]) -> list[Path]:
    """変換中に既存の画像や他のジョブの出力と重なるパスを探す

    同じディレクトリに `a.jpg` と `a.png` がある場合等、
    あるジョブの出力が別の画像を上書きしてしまう組み合わせを検出する。

    Args:
        images: 変換対象外のものも含むすべての画像のパス
        jobs: 変換ジョブ

    Returns:
        重なったパス（ソート済み）
    """
    owners = {path: path for path in images}
    collisions: set[Path] = set()
    for job in jobs:
        for path in job.written_paths():
            if owners.setdefault(path, job.image_path) != job.image_path:
                collisions.add(path)
    return sorted(collisions)
