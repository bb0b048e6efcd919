"""Main Scheduler Service class.

This is the unified entry point for all scheduler operations: it owns the job
table, the tick loop, the execution lock and the repeat-send tracker, and
wires the task executor to the stores and providers it is given.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from loguru import logger

from ...config import Settings
from ..executor import TaskExecutor
from ..lease import InstanceLease
from ..models import Job, Task
from ..repeat_sender import ExecutionLock, RepeatSender
from ..schedule import now_in
from ..types import ExecutionResult, SchedulerStatus
from .events import EventEmitter, emit_job_event, EventTypes
from .state import SchedulerServiceDeps, SchedulerServiceState
from . import ops
from . import timer

logger = logger.bind(module="scheduler.service")


class SchedulerService:
    """Scheduler for reminder tasks.

    States: stopped -> ``start()`` -> running -> ``stop()`` -> stopped. A
    stopped service cannot be started again; build a new one instead.
    """

    def __init__(
        self,
        task_store: Any,
        device_directory: Any,
        provider_factory: Any,
        log_store: Any,
        settings: Settings | None = None,
        events: EventEmitter | None = None,
        lease: InstanceLease | None = None,
        repeat_sender: RepeatSender | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize scheduler service.

        Args:
            task_store: Task persistence (``memocue.scheduler.service.store.TaskStore``)
            device_directory: Device lookup (``DeviceDirectory``)
            provider_factory: Push provider registry (``ProviderFactory``)
            log_store: Execution log (``ExecutionLogStore``)
            settings: Scheduler settings, defaults to built-in values
            events: Event emitter shared with the stores
            lease: Instance lease; without one this process always ticks
            repeat_sender: Repeat-send tracker
            clock: Returns the current aware time, defaults to the wall clock
        """
        self.settings = settings or Settings()
        self.tz = ZoneInfo(self.settings.timezone)
        self.events = events or EventEmitter()
        self.deps = SchedulerServiceDeps(
            task_store=task_store,
            device_directory=device_directory,
            provider_factory=provider_factory,
            log_store=log_store,
        )
        self.state = SchedulerServiceState()
        self.lease = lease
        self.execution_lock = ExecutionLock()
        self.repeat_sender = repeat_sender or RepeatSender()
        self.executor = TaskExecutor(
            device_directory=device_directory,
            provider_factory=provider_factory,
            log_store=log_store,
            task_store=task_store,
            execution_lock=self.execution_lock,
            repeat_sender=self.repeat_sender,
        )
        self._clock = clock

    @property
    def task_store(self) -> Any:
        return self.deps.task_store

    @property
    def running(self) -> bool:
        return self.state.running

    @property
    def jobs(self) -> dict[str, Job]:
        return self.state.jobs

    def now(self) -> datetime:
        """Current time in the scheduler timezone."""
        if self._clock is not None:
            return self._clock().astimezone(self.tz)
        return now_in(self.settings.timezone)

    async def start(self) -> bool:
        """Start the scheduler service.

        Returns:
            False if another live instance holds the lease; this process then
            keeps serving manual operations but never ticks
        """
        if self.state.stopped:
            raise RuntimeError("Scheduler service was stopped and cannot be restarted")
        if self.state.running:
            logger.warning("Scheduler already running")
            return True

        if self.lease is not None and not await self.lease.acquire():
            logger.warning("Another scheduler instance holds the lease, tick loop not started")
            return False

        self.state.running = True
        await self.load_jobs()
        self.state.timer_task = asyncio.create_task(timer.timer_loop(self))

        emit_job_event(self.events, EventTypes.SCHEDULER_STARTED, "")
        logger.info(f"Scheduler service started ({len(self.state.jobs)} jobs, timezone {self.settings.timezone})")
        return True

    async def stop(self) -> None:
        """Stop the scheduler service and cancel everything it started."""
        if self.state.stopped:
            return
        self.state.stopped = True
        self.state.running = False
        self.state.wake_event.set()

        # Cancel timer task
        if self.state.timer_task:
            self.state.timer_task.cancel()
            try:
                await self.state.timer_task
            except asyncio.CancelledError:
                pass

        pending = []
        for job in self.state.jobs.values():
            pending.extend(h for h in (job.cron_trigger, job.retry_handle) if h is not None)
            job.cancel_handles()
        self.repeat_sender.clear_all()

        inflight = list(self.state.inflight)
        for run in inflight:
            run.cancel()
        pending.extend(inflight)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.state.reset()

        if self.lease is not None:
            await self.lease.release()

        emit_job_event(self.events, EventTypes.SCHEDULER_STOPPED, "")
        logger.info("Scheduler service stopped")

    def get_status(self) -> SchedulerStatus:
        """Get scheduler status.

        Returns:
            Current scheduler status
        """
        return ops.get_status(self)

    # ============== Job Management ==============

    async def schedule_task(self, task: Task) -> Job | None:
        """Create or replace the job for a task.

        Args:
            task: Task to schedule

        Returns:
            The job, or None if the task is disabled or never fires again
        """
        job = await ops.schedule_task(self, task)
        if job is not None and self.state.running:
            timer.arm_cron_trigger(self, job)
        return job

    def remove_task(self, task_id: str) -> bool:
        """Remove a task's job and abort any delivery in flight.

        Args:
            task_id: ID of the task

        Returns:
            True if a job existed
        """
        return ops.remove_task(self, task_id)

    async def reload(self) -> int:
        """Rebuild the job table from the task store.

        Returns:
            Number of scheduled jobs
        """
        cleared = ops.clear_jobs(self)
        logger.info(f"Reloading scheduler, cleared {cleared} jobs")
        await self.load_jobs()
        emit_job_event(self.events, EventTypes.SCHEDULER_RELOADED, "", {"total_jobs": len(self.state.jobs)})
        return len(self.state.jobs)

    async def update_task(self, task_id: str, updates: dict[str, Any]) -> Task | None:
        """Write changes to a task and reschedule it.

        Args:
            task_id: ID of the task
            updates: camelCase fields to merge into the stored record

        Returns:
            Updated task, or None if not found
        """
        task = await self.task_store.update_task(task_id, updates)
        if task is None:
            return None
        self.remove_task(task_id)
        if self.state.running:
            await self.schedule_task(task)
        return task

    async def enable_task(self, task_id: str) -> Task | None:
        task = await self.task_store.enable_task(task_id)
        if task is not None and self.state.running:
            await self.schedule_task(task)
        return task

    async def disable_task(self, task_id: str) -> Task | None:
        self.remove_task(task_id)
        return await self.task_store.disable_task(task_id)

    async def execute_now(self, task_id: str) -> ExecutionResult:
        """Run a task immediately, outside the tick.

        Honours the execution lock; the job's schedule and retry state are
        left untouched.

        Args:
            task_id: ID of the task

        Returns:
            Execution result
        """
        task = await self.task_store.get_task(task_id)
        if task is None:
            return ExecutionResult(task_id=task_id, success=False, error="Task not found")
        logger.info(f"Manual execution of task {task_id} ({task.title})")
        return await self.executor.execute(task)

    # ============== Event Handling ==============

    def on_event(self, handler: Callable[[Any], None]) -> None:
        """Register an event handler.

        Args:
            handler: Function to call when events are emitted
        """
        self.events.add_handler(handler)

    def off_event(self, handler: Callable[[Any], None]) -> None:
        """Unregister an event handler.

        Args:
            handler: Handler to remove
        """
        self.events.remove_handler(handler)

    # ============== Loading ==============

    async def load_jobs(self) -> None:
        """Schedule every enabled task in the store.

        A failed read leaves ``needs_reload`` set and the timer loop tries
        again on its next pass.
        """
        try:
            tasks = await self.task_store.load_enabled_tasks()
        except Exception as e:
            self.state.needs_reload = True
            logger.error(f"Failed to load tasks, will retry on the next tick: {e}")
            return
        self.state.needs_reload = False

        for task in tasks:
            try:
                await self.schedule_task(task)
            except Exception as e:
                logger.error(f"Failed to schedule task {task.id}: {e}")
        logger.info(f"Loaded {len(self.state.jobs)} of {len(tasks)} enabled tasks")
