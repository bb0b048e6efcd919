"""Timer management for the scheduler.

Handles the periodic tick, native cron triggers, running due jobs and
scheduling retries. Each execution runs in its own asyncio task so one slow
or failing task never holds up the others.
"""
import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from ..models import Task
from ..schedule import compute_next_push_at
from ..types import CronSchedule, ExecutionResult, OnceSchedule, RetryDecision
from .events import emit_job_event, EventTypes
from . import ops

if TYPE_CHECKING:
    from ..models import Job
    from .service import SchedulerService

logger = logger.bind(module="scheduler.timer")


async def timer_loop(service: "SchedulerService") -> None:
    """Main timer loop that runs due jobs.

    This loop runs continuously and:
    1. Retries loading the tasks if the last load failed
    2. Launches every due job, right away on the first pass
    3. Sleeps one tick interval (or until woken early)
    4. Repeats
    """
    logger.info("Timer loop started")

    while service.state.running:
        try:
            service.state.wake_event.clear()
            if service.state.needs_reload:
                await service.load_jobs()
            tick(service)

            try:
                await asyncio.wait_for(
                    service.state.wake_event.wait(),
                    timeout=service.settings.tick_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

        except asyncio.CancelledError:
            logger.info("Timer loop cancelled")
            break
        except Exception as e:
            logger.error(f"Timer loop error: {e}")
            await asyncio.sleep(1)  # Avoid tight loop on errors

    logger.info("Timer loop stopped")


def tick(service: "SchedulerService") -> list[str]:
    """One scheduler tick; skipped if the lease has been lost."""
    if service.lease is not None and not service.lease.is_holder:
        logger.warning("Scheduler lease not held, skipping tick")
        return []
    return run_due_jobs(service)


def run_due_jobs(service: "SchedulerService") -> list[str]:
    """Launch all jobs whose next push time has come.

    Jobs waiting on a retry or already executing are left alone.

    Returns:
        IDs of the launched tasks
    """
    now = service.now()
    due = [
        job.task_id
        for job in service.state.jobs.values()
        if job.next_push_at <= now
        and job.retry_handle is None
        and not service.execution_lock.is_locked(job.task_id)
        and not is_inflight(service, job.task_id)
    ]
    if due:
        logger.info(f"Running {len(due)} due jobs")
    for task_id in due:
        launch(service, task_id)
    return due


def _run_name(task_id: str) -> str:
    return f"memocue-run-{task_id}"


def is_inflight(service: "SchedulerService", task_id: str) -> bool:
    """Whether a launched run of the task has not finished yet."""
    name = _run_name(task_id)
    return any(run.get_name() == name and not run.done() for run in service.state.inflight)


def launch(service: "SchedulerService", task_id: str) -> asyncio.Task:
    """Run a job in its own asyncio task, tracked until it finishes."""
    run = asyncio.create_task(run_job(service, task_id), name=_run_name(task_id))
    service.state.inflight.add(run)
    run.add_done_callback(service.state.inflight.discard)
    return run


async def run_job(service: "SchedulerService", task_id: str) -> ExecutionResult | None:
    """Execute a scheduled task and route the outcome.

    The task is re-read from the store so the run uses its current content.
    Nothing raised in here escapes; failures go to the retry policy.

    Args:
        service: The scheduler service
        task_id: ID of the task to run

    Returns:
        Execution result, or None if the job vanished or errored
    """
    job = service.state.jobs.get(task_id)
    if job is None:
        return None

    def job_alive() -> bool:
        return not job.removed

    emit_job_event(service.events, EventTypes.JOB_STARTED, task_id)
    try:
        task = await service.task_store.get_task(task_id)
        if job.removed:
            logger.info(f"Job for task {task_id} was removed while loading, not running it")
            return None
        if task is None or not task.enabled:
            logger.info(f"Task {task_id} is gone or disabled, removing its job")
            ops.remove_task(service, task_id)
            return None
        result = await service.executor.execute(task, keep_going=job_alive)
    except Exception as e:
        logger.error(f"Task {task_id} execution error: {e}")
        emit_job_event(service.events, EventTypes.JOB_FAILED, task_id, {"error": str(e)[:500]})
        await handle_failure(service, task_id, str(e))
        return None

    if result.skipped:
        emit_job_event(service.events, EventTypes.JOB_SKIPPED, task_id)
        return result

    if result.success:
        emit_job_event(service.events, EventTypes.JOB_COMPLETED, task_id, result.to_dict())
        await handle_success(service, task)
    else:
        emit_job_event(service.events, EventTypes.JOB_FAILED, task_id, {"error": result.error})
        await handle_failure(service, task_id, result.error or "unknown error")
    return result


async def handle_success(service: "SchedulerService", task: Task) -> None:
    """Advance the job after a successful run; one-time tasks are disabled."""
    job = service.state.jobs.get(task.id)
    if job is None:
        return
    job.retry_count = 0

    if isinstance(task.schedule, OnceSchedule):
        ops.remove_task(service, task.id)
        try:
            await service.task_store.disable_task(task.id)
        except Exception as e:
            logger.error(f"Failed to disable one-time task {task.id}: {e}")
            return
        logger.info(f"One-time task {task.id} completed and disabled")
        return

    # Recompute from the stored schedule, which may have changed mid-run
    try:
        current = await service.task_store.get_task(task.id) or task
    except Exception as e:
        logger.warning(f"Failed to reload task {task.id}, using the run's copy: {e}")
        current = task

    next_push_at = compute_next_push_at(current.schedule, service.now(), current.last_push_at)
    if service.state.jobs.get(task.id) is not job:
        return  # Rescheduled while we were reloading

    if next_push_at is None:
        logger.info(f"Task {task.id} has no further triggers, removing its job")
        ops.remove_task(service, task.id)
    else:
        job.task = current
        job.next_push_at = next_push_at

    try:
        await service.task_store.update_task_fields(task.id, next_push_at=next_push_at)
    except Exception as e:
        logger.warning(f"Failed to persist nextPushAt for task {task.id}: {e}")


async def handle_failure(
    service: "SchedulerService",
    task_id: str,
    error: str,
) -> RetryDecision | None:
    """Apply the retry policy to a failed run.

    Returns:
        The retry decision, or None if the job no longer exists
    """
    job = service.state.jobs.get(task_id)
    if job is None:
        logger.error(f"Task {task_id} failed: {error}")
        return None

    max_retries = job.task.max_retries
    if max_retries is None:
        max_retries = service.settings.max_retries

    decision = ops.decide_retry(
        job,
        max_retries,
        service.settings.retry_base_seconds,
        service.settings.max_retry_delay_seconds,
    )
    if decision.should_retry:
        logger.info(
            f"Task {task_id} failed ({error}), retry {decision.retry_count}/{max_retries} "
            f"in {decision.delay_seconds:g}s"
        )
        emit_job_event(
            service.events,
            EventTypes.JOB_RETRYING,
            task_id,
            {"retry_count": decision.retry_count, "delay_seconds": decision.delay_seconds},
        )
        schedule_retry(service, job, decision.delay_seconds)
    else:
        logger.error(f"Task {task_id} failed after {max_retries} retries, giving up: {error}")
        ops.remove_task(service, task_id)
    return decision


def schedule_retry(service: "SchedulerService", job: "Job", delay_seconds: float) -> None:
    if job.retry_handle is not None and not job.retry_handle.done():
        job.retry_handle.cancel()
    job.retry_handle = asyncio.create_task(_retry_after(service, job, delay_seconds))


async def _retry_after(service: "SchedulerService", job: "Job", delay_seconds: float) -> None:
    await asyncio.sleep(delay_seconds)
    if service.state.jobs.get(job.task_id) is not job:
        return
    job.retry_handle = None
    launch(service, job.task_id)


# ============== Native Cron Triggers ==============

def arm_cron_trigger(service: "SchedulerService", job: "Job") -> None:
    """Fire cron jobs at their exact occurrence instead of the next tick."""
    schedule = job.task.schedule
    if not isinstance(schedule, CronSchedule):
        return
    job.cron_trigger = asyncio.create_task(
        cron_trigger_loop(service, job.task_id, schedule),
        name=f"memocue-cron-{job.task_id}",
    )


async def cron_trigger_loop(
    service: "SchedulerService",
    task_id: str,
    schedule: CronSchedule,
) -> None:
    """Sleep until each cron occurrence and launch the job."""
    fired_at = None
    while True:
        now = service.now()
        base = now if fired_at is None else max(now, fired_at)
        target = compute_next_push_at(schedule, base)
        if target is None:
            logger.warning(f"Cron trigger for task {task_id} has no next occurrence, stopping")
            return

        delay = (target - service.now()).total_seconds()
        while delay > 0:
            await asyncio.sleep(delay)
            delay = (target - service.now()).total_seconds()

        job = service.state.jobs.get(task_id)
        if job is None:
            return
        fired_at = target
        if service.lease is not None and not service.lease.is_holder:
            logger.warning(f"Scheduler lease not held, cron trigger for task {task_id} skipped")
            continue
        if service.execution_lock.is_locked(task_id) or is_inflight(service, task_id):
            logger.warning(f"Task {task_id} still executing, cron occurrence {target.isoformat()} skipped")
            continue
        if job.retry_handle is not None:
            logger.info(f"Task {task_id} waiting on a retry, cron occurrence {target.isoformat()} skipped")
            continue
        launch(service, task_id)
