"""Core operations for the scheduler service.

Contains the job-table logic: scheduling, removal, status and the retry
policy. Nothing here starts asyncio tasks; arming triggers is left to
``timer``.
"""
from typing import TYPE_CHECKING

from loguru import logger

from ..models import Job, Task
from ..schedule import compute_next_push_at, schedule_to_human
from ..types import JobSnapshot, RetryDecision, SchedulerStatus
from .events import emit_job_event, EventTypes

if TYPE_CHECKING:
    from .service import SchedulerService

logger = logger.bind(module="scheduler.ops")


async def schedule_task(service: "SchedulerService", task: Task) -> Job | None:
    """Create or replace the job for a task.

    Args:
        service: The scheduler service
        task: Task to schedule

    Returns:
        The new job, or None if the task is disabled or has no upcoming trigger
    """
    if not task.enabled:
        remove_task(service, task.id)
        return None

    next_push_at = compute_next_push_at(task.schedule, service.now(), task.last_push_at)
    if next_push_at is None:
        logger.warning(f"Task {task.id} ({task.title}) has no upcoming trigger, not scheduled")
        remove_task(service, task.id)
        return None

    # Replacing a job keeps any in-flight delivery running
    old = service.state.jobs.pop(task.id, None)
    if old is not None:
        old.cancel_handles()

    job = Job(task_id=task.id, task=task, next_push_at=next_push_at)
    service.state.jobs[task.id] = job

    try:
        await service.task_store.update_task_fields(task.id, next_push_at=next_push_at)
    except Exception as e:
        logger.warning(f"Failed to persist nextPushAt for task {task.id}: {e}")

    emit_job_event(
        service.events,
        EventTypes.JOB_SCHEDULED,
        task.id,
        {"next_push_at": next_push_at.isoformat()},
    )
    logger.info(f"Scheduled task {task.id} ({task.title}), next push at {next_push_at.isoformat()}")
    return job


def remove_task(service: "SchedulerService", task_id: str) -> bool:
    """Remove a task's job and stop any delivery in flight.

    Synchronous so that cancellation takes effect before the caller resumes.

    Returns:
        True if a job was removed
    """
    job = service.state.jobs.pop(task_id, None)
    if job is not None:
        job.removed = True
        job.cancel_handles()

    aborted = service.repeat_sender.abort(task_id)
    if job is not None or aborted:
        emit_job_event(service.events, EventTypes.JOB_REMOVED, task_id)
        logger.info(f"Removed job for task {task_id}")
    return job is not None


def clear_jobs(service: "SchedulerService") -> int:
    """Remove every job; returns how many there were."""
    task_ids = list(service.state.jobs)
    for task_id in task_ids:
        remove_task(service, task_id)
    return len(task_ids)


# ============== Retry Policy ==============

def compute_retry_delay(
    retry_count: int,
    base_seconds: float,
    max_delay_seconds: float,
) -> float:
    """Exponential backoff: ``base * 2**retry_count``, capped."""
    return min(base_seconds * (2 ** retry_count), max_delay_seconds)


def decide_retry(
    job: Job,
    max_retries: int,
    base_seconds: float,
    max_delay_seconds: float,
) -> RetryDecision:
    """Count one more failure on ``job`` and decide whether to retry.

    Args:
        job: The failed job; its ``retry_count`` is incremented
        max_retries: Retries allowed before giving up
        base_seconds: Backoff base delay
        max_delay_seconds: Backoff cap

    Returns:
        Retry decision with the delay to wait
    """
    job.retry_count += 1
    if job.retry_count > max_retries:
        return RetryDecision(should_retry=False, retry_count=job.retry_count)
    return RetryDecision(
        should_retry=True,
        retry_count=job.retry_count,
        delay_seconds=compute_retry_delay(job.retry_count, base_seconds, max_delay_seconds),
    )


# ============== Status ==============

def get_status(service: "SchedulerService") -> SchedulerStatus:
    """Get scheduler status.

    Returns:
        Snapshot of the job table, soonest first
    """
    jobs = sorted(service.state.jobs.values(), key=lambda j: j.next_push_at)
    return SchedulerStatus(
        running=service.state.running,
        timezone=service.settings.timezone,
        lease_held=service.lease.is_holder if service.lease is not None else False,
        jobs=[
            JobSnapshot(
                id=job.task_id,
                title=job.task.title,
                schedule_type=job.task.schedule_type,
                label=schedule_to_human(job.task.schedule),
                next_push_at=job.next_push_at,
                enabled=job.task.enabled,
            )
            for job in jobs
        ],
    )
