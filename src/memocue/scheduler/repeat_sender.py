"""Execution lock and repeat-send tracking.

``ExecutionLock`` keeps at most one in-flight execution per task.
``RepeatSender`` tracks multi-shot deliveries and owns the waits between
attempts, so an abort can cut a wait short instead of letting it run out.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger

from .models import Task
from .types import ScheduleKind

logger = logger.bind(module="scheduler.repeat_sender")

DEFAULT_REPEAT_INTERVAL_MINUTES = 5.0

# Hourly and cron schedules already fire often enough on their own
_NO_REPEAT_KINDS = frozenset({ScheduleKind.HOURLY.value, ScheduleKind.CRON.value})


def repeat_config(task: Task) -> tuple[bool, int, float]:
    """Resolve the effective repeat-send settings of a task.

    Returns:
        (enabled, count, interval_minutes). Disabled means one attempt and
        no interval.
    """
    schedule = task.schedule
    enabled = bool(
        schedule is not None
        and schedule.repeat.enabled
        and schedule.kind not in _NO_REPEAT_KINDS
    )
    if not enabled:
        return False, 1, 0.0

    count = max(schedule.repeat.count or 1, 1)
    interval = schedule.repeat.interval_minutes
    if not interval or interval < 0:
        interval = DEFAULT_REPEAT_INTERVAL_MINUTES
    return True, count, float(interval)


class ExecutionLock:
    """Per-task mutual exclusion for deliveries."""

    def __init__(self):
        self._running: dict[str, datetime] = {}

    def try_begin(self, task_id: str) -> bool:
        """Mark a task as executing; False if it already is."""
        if task_id in self._running:
            return False
        self._running[task_id] = datetime.now(timezone.utc)
        return True

    def end(self, task_id: str) -> None:
        self._running.pop(task_id, None)

    def is_locked(self, task_id: str) -> bool:
        return task_id in self._running

    def locked_task_ids(self) -> list[str]:
        return list(self._running)


@dataclass(eq=False)
class WaitHandle:
    """A pending inter-attempt wait: the future awaited and the timer that resolves it."""
    future: asyncio.Future
    timer: asyncio.TimerHandle

    def cancel(self) -> None:
        self.timer.cancel()
        if not self.future.done():
            self.future.set_result(False)


@dataclass
class RepeatSendState:
    """Progress of one task's repeat-send run."""
    task_id: str
    total_count: int
    interval_minutes: float
    current_count: int = 0
    aborted: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    waits: set[WaitHandle] = field(default_factory=set)

    def cancel_waits(self) -> int:
        pending = len(self.waits)
        for handle in list(self.waits):
            handle.cancel()
        self.waits.clear()
        return pending


def _resolve(future: asyncio.Future, value: bool) -> None:
    if not future.done():
        future.set_result(value)


class RepeatSender:
    """Tracks repeat-send runs and their cancellable waits.

    Args:
        interval_unit_seconds: Seconds per interval unit. Intervals are
            configured in minutes; tests shrink this to run quickly.
    """

    def __init__(self, interval_unit_seconds: float = 60.0):
        self.interval_unit_seconds = interval_unit_seconds
        self._states: dict[str, RepeatSendState] = {}

    def start(self, task_id: str, total_count: int, interval_minutes: float) -> RepeatSendState:
        """Begin tracking a run, replacing any leftover state for the task."""
        if task_id in self._states:
            self.cleanup(task_id)
        state = RepeatSendState(
            task_id=task_id,
            total_count=total_count,
            interval_minutes=interval_minutes,
        )
        self._states[task_id] = state
        return state

    def get(self, task_id: str) -> RepeatSendState | None:
        return self._states.get(task_id)

    def is_active(self, task_id: str) -> bool:
        return task_id in self._states

    def is_aborted(self, task_id: str) -> bool:
        state = self._states.get(task_id)
        return state is not None and state.aborted

    def mark_attempt(self, task_id: str, iteration: int) -> None:
        state = self._states.get(task_id)
        if state is not None:
            state.current_count = iteration

    async def wait(self, task_id: str, minutes: float) -> bool:
        """Wait between two attempts.

        Returns:
            True if the full interval elapsed, False if the run was aborted
            before or during the wait.
        """
        state = self._states.get(task_id)
        if state is None or state.aborted:
            return False

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = loop.call_later(minutes * self.interval_unit_seconds, _resolve, future, True)
        handle = WaitHandle(future=future, timer=timer)
        state.waits.add(handle)
        try:
            return await future
        finally:
            timer.cancel()
            state.waits.discard(handle)

    def abort(self, task_id: str) -> bool:
        """Flag the run as aborted and release every pending wait right away.

        Returns:
            True if the task had a run in progress
        """
        state = self._states.get(task_id)
        if state is None:
            return False
        state.aborted = True
        cancelled = state.cancel_waits()
        logger.info(f"Repeat-send aborted for task {task_id} ({cancelled} pending waits released)")
        return True

    def cleanup(self, task_id: str) -> None:
        """Drop a task's state and cancel its waits, whatever the outcome was."""
        state = self._states.pop(task_id, None)
        if state is None:
            return
        state.cancel_waits()
        logger.debug(f"Repeat-send state cleared for task {task_id}")

    def clear_all(self) -> None:
        for task_id in list(self._states):
            self.abort(task_id)
            self.cleanup(task_id)

    def active_task_ids(self) -> list[str]:
        return list(self._states)

    def pending_wait_count(self, task_id: str | None = None) -> int:
        if task_id is not None:
            state = self._states.get(task_id)
            return len(state.waits) if state else 0
        return sum(len(s.waits) for s in self._states.values())
