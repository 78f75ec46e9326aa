"""変換スケジューラモジュール

同時実行数を制限しながら複数の変換ジョブを進めるConversionSchedulerを提供する。

制御スレッドは1つで、並列性は最大N個の外部プロセスによって得る。
制御スレッドがブロックするのは通知（子プロセスの終了、または中断要求）を
待つ間のみで、起床するたびに使用中のすべてのスロットをポーリングする。
"""

from __future__ import annotations

import logging
import queue
import signal
import threading
from collections import deque
from collections.abc import Callable, Iterable
from enum import Enum
from types import FrameType
from typing import Any

from cbzin.converter.job import ConversionJob, Step
from cbzin.converter.tools import ToolProvider
from cbzin.errors import Interrupted

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
"""変換が完了した画像の数を受け取るコールバック"""


class Notification(Enum):
    """制御スレッドを起床させる通知"""

    CHILD_EXITED = "child_exited"
    INTERRUPT = "interrupt"


class Notifier:
    """子プロセスの終了と中断要求を多重化する通知源

    コンテキストマネージャとして使用している間、メインスレッドであれば
    SIGINTを捕捉して中断要求として通知する。入れ子で使用できる。
    SimpleQueue.put()はシグナルハンドラからも安全に呼び出せる。
    """

    def __init__(self, handle_sigint: bool = True) -> None:
        self._queue: queue.SimpleQueue[Notification] = queue.SimpleQueue()
        self._handle_sigint = handle_sigint
        self._previous_handler: Any = None
        self._installed = False
        self._depth = 0
        self._interrupted = False

    def __enter__(self) -> Notifier:
        if (
            self._depth == 0
            and self._handle_sigint
            and threading.current_thread() is threading.main_thread()
        ):
            self._previous_handler = signal.signal(signal.SIGINT, self._on_sigint)
            self._installed = True
        self._depth += 1
        return self

    def __exit__(self, *args: object) -> None:
        self._depth -= 1
        if self._depth == 0 and self._installed:
            signal.signal(signal.SIGINT, self._previous_handler)
            self._installed = False

    @property
    def interrupted(self) -> bool:
        """中断が要求されたか"""
        return self._interrupted

    def _on_sigint(self, signum: int, frame: FrameType | None) -> None:
        self.interrupt()

    def child_exited(self) -> None:
        """子プロセスの終了を通知する（監視スレッドから呼び出される）"""
        self._queue.put(Notification.CHILD_EXITED)

    def interrupt(self) -> None:
        """中断を要求する"""
        self._interrupted = True
        self._queue.put(Notification.INTERRUPT)

    def raise_if_interrupted(self) -> None:
        """中断が要求されていればInterruptedを送出する"""
        if self._interrupted:
            raise Interrupted()

    def wait(self) -> set[Notification]:
        """通知が届くまでブロックし、溜まっている通知をまとめて返す

        Raises:
            Interrupted: 中断が要求されている場合
        """
        self.raise_if_interrupted()
        notifications = {self._queue.get()}
        while True:
            try:
                notifications.add(self._queue.get_nowait())
            except queue.Empty:
                break
        self.raise_if_interrupted()
        return notifications


class ConversionScheduler:
    """同時実行数を制限して変換ジョブを進めるスケジューラ

    未開始ジョブのFIFOキューと、N個のスロットを持つ。
    実行中のジョブ数は常にN以下に保たれる。

    使用例:
        >>> scheduler = ConversionScheduler(jobs, workers=4, tools=ToolProvider())
        >>> scheduler.run(progress_callback=lambda n: print(n))
    """

    def __init__(
        self,
        jobs: Iterable[ConversionJob],
        workers: int,
        tools: ToolProvider,
        notifier: Notifier | None = None,
    ) -> None:
        """スケジューラを初期化する

        Args:
            jobs: 変換ジョブ（この順にキューへ積まれる）
            workers: 同時に実行する外部プロセスの最大数
            tools: 外部ツールの提供元
            notifier: 通知源（Noneの場合は新規作成）

        Raises:
            ValueError: workersが1未満の場合
        """
        if workers < 1:
            raise ValueError(f"ワーカー数は1以上である必要があります: {workers}")
        self._queue: deque[ConversionJob] = deque(jobs)
        self._slots: list[ConversionJob | None] = [None] * workers
        self._tools = tools
        self._notifier = notifier or Notifier()
        self._completed = 0

    @property
    def workers(self) -> int:
        return len(self._slots)

    @property
    def queued(self) -> int:
        """未開始のジョブ数"""
        return len(self._queue)

    @property
    def occupied(self) -> int:
        """ジョブを保持しているスロット数"""
        return sum(1 for job in self._slots if job is not None)

    @property
    def completed(self) -> int:
        """変換が完了した画像の数"""
        return self._completed

    def jobs(self) -> list[ConversionJob]:
        """未完了のジョブ一覧（スロット内のものを先に返す）"""
        active = [job for job in self._slots if job is not None]
        return active + list(self._queue)

    def pending(self) -> bool:
        """未完了のジョブが残っているか"""
        return bool(self._queue) or self.occupied > 0

    def run(self, progress_callback: ProgressCallback | None = None) -> int:
        """すべてのジョブが完了するまで実行する

        中断やエラーで終了した場合も、実行中のプロセスはすべて終了させる。

        Args:
            progress_callback: 画像1枚の変換が完了するたびに1を渡して呼び出す

        Returns:
            変換が完了した画像の数

        Raises:
            Interrupted: 中断が要求された場合
            ConversionError: 回復不能な変換エラーが発生した場合
        """
        with self._notifier:
            try:
                self._proceed_slots(progress_callback)
                while self.pending():
                    self._notifier.wait()
                    self._proceed_slots(progress_callback)
            finally:
                self._abort_slots()
        return self._completed

    def _proceed_slots(self, progress_callback: ProgressCallback | None) -> None:
        """進捗がなくなるまで、すべてのスロットのジョブを進める"""
        for index in range(len(self._slots)):
            while True:
                job = self._slots[index]
                if job is None:
                    if not self._queue:
                        break
                    job = self._queue.popleft()
                    self._slots[index] = job
                    job.start(self._tools)
                    continue

                step = job.proceed(self._tools, self._notifier.child_exited)
                if step is Step.SAME_AS_BEFORE:
                    break
                if step is Step.FINISHED:
                    self._slots[index] = None
                    self._completed += 1
                    if progress_callback is not None:
                        progress_callback(1)

    def _abort_slots(self) -> None:
        for index, job in enumerate(self._slots):
            if job is not None:
                job.close()
                self._slots[index] = None
