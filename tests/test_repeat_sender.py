"""Tests for the execution lock and repeat-send tracking."""
import asyncio

import pytest

from memocue.scheduler.repeat_sender import (
    DEFAULT_REPEAT_INTERVAL_MINUTES,
    ExecutionLock,
    RepeatSender,
    repeat_config,
)
from memocue.scheduler.types import CronSchedule, HourlySchedule, OnceSchedule, RepeatSettings

from conftest import make_task, repeating


class TestRepeatConfig:
    """Effective repeat settings of a task."""

    def test_disabled_by_default(self):
        assert repeat_config(make_task()) == (False, 1, 0.0)

    def test_enabled(self):
        task = make_task(schedule=OnceSchedule(at="2030-01-01T09:00:00", repeat=repeating(3, 2)))
        assert repeat_config(task) == (True, 3, 2.0)

    def test_defaults_for_missing_values(self):
        settings = RepeatSettings(enabled=True, count=None, interval_minutes=None)
        task = make_task(schedule=OnceSchedule(at="2030-01-01T09:00:00", repeat=settings))
        assert repeat_config(task) == (True, 1, DEFAULT_REPEAT_INTERVAL_MINUTES)

    def test_negative_interval_uses_default(self):
        task = make_task(schedule=OnceSchedule(at="2030-01-01T09:00:00", repeat=repeating(2, -1)))
        assert repeat_config(task) == (True, 2, DEFAULT_REPEAT_INTERVAL_MINUTES)

    @pytest.mark.parametrize("schedule", [
        HourlySchedule(minute=0, repeat=repeating(3, 1)),
        CronSchedule(expression="0 9 * * *", repeat=repeating(3, 1)),
    ])
    def test_never_for_hourly_or_cron(self, schedule):
        assert repeat_config(make_task(schedule=schedule)) == (False, 1, 0.0)

    def test_no_schedule(self):
        assert repeat_config(make_task(schedule=None)) == (False, 1, 0.0)


class TestExecutionLock:
    """Per-task mutual exclusion."""

    def test_second_begin_fails(self):
        lock = ExecutionLock()
        assert lock.try_begin("t1")
        assert not lock.try_begin("t1")
        assert lock.try_begin("t2")
        assert sorted(lock.locked_task_ids()) == ["t1", "t2"]

    def test_end_releases(self):
        lock = ExecutionLock()
        lock.try_begin("t1")
        lock.end("t1")
        assert not lock.is_locked("t1")
        assert lock.try_begin("t1")

    def test_end_unknown_is_noop(self):
        ExecutionLock().end("missing")


class TestRepeatSender:
    """Repeat-send state and cancellable waits."""

    @pytest.mark.asyncio
    async def test_wait_elapses(self):
        sender = RepeatSender(interval_unit_seconds=0.001)
        sender.start("t1", total_count=2, interval_minutes=1)
        assert await sender.wait("t1", 1) is True
        assert sender.pending_wait_count("t1") == 0

    @pytest.mark.asyncio
    async def test_wait_without_state_returns_immediately(self):
        sender = RepeatSender(interval_unit_seconds=60)
        assert await asyncio.wait_for(sender.wait("unknown", 5), timeout=0.5) is False

    @pytest.mark.asyncio
    async def test_abort_cuts_wait_short(self):
        sender = RepeatSender(interval_unit_seconds=60)
        sender.start("t1", total_count=3, interval_minutes=5)

        waiter = asyncio.create_task(sender.wait("t1", 5))
        await asyncio.sleep(0)
        assert sender.pending_wait_count("t1") == 1

        assert sender.abort("t1") is True
        assert await asyncio.wait_for(waiter, timeout=0.5) is False
        assert sender.pending_wait_count() == 0
        assert sender.is_aborted("t1")

    @pytest.mark.asyncio
    async def test_wait_after_abort_returns_false(self):
        sender = RepeatSender(interval_unit_seconds=60)
        sender.start("t1", total_count=3, interval_minutes=5)
        sender.abort("t1")
        assert await asyncio.wait_for(sender.wait("t1", 5), timeout=0.5) is False

    def test_abort_without_run(self):
        assert RepeatSender().abort("t1") is False

    def test_mark_attempt_and_cleanup(self):
        sender = RepeatSender()
        state = sender.start("t1", total_count=3, interval_minutes=1)
        sender.mark_attempt("t1", 2)
        assert state.current_count == 2
        assert sender.active_task_ids() == ["t1"]

        sender.cleanup("t1")
        assert not sender.is_active("t1")
        assert sender.get("t1") is None

    def test_restart_replaces_state(self):
        sender = RepeatSender()
        first = sender.start("t1", total_count=3, interval_minutes=1)
        second = sender.start("t1", total_count=2, interval_minutes=1)
        assert first is not second
        assert sender.get("t1") is second

    @pytest.mark.asyncio
    async def test_clear_all_aborts_every_run(self):
        sender = RepeatSender(interval_unit_seconds=60)
        states = [sender.start(task_id, 2, 1) for task_id in ("a", "b")]
        waiters = [asyncio.create_task(sender.wait(s.task_id, 1)) for s in states]
        await asyncio.sleep(0)

        sender.clear_all()

        assert await asyncio.wait_for(asyncio.gather(*waiters), timeout=0.5) == [False, False]
        assert all(s.aborted for s in states)
        assert sender.active_task_ids() == []
