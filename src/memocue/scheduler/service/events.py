"""Event system for the scheduler.

Emits events for job lifecycle changes and for every recorded delivery, so
real-time consumers (dashboards, SSE bridges) can follow along.
"""
import time
from typing import Any, Callable

from loguru import logger

from ..types import SchedulerEvent

logger = logger.bind(module="scheduler.events")


# Type alias for event handlers
EventHandler = Callable[[SchedulerEvent], None]


class EventEmitter:
    """Event emitter for scheduler events."""

    def __init__(self):
        self._handlers: list[EventHandler] = []

    def add_handler(self, handler: EventHandler) -> None:
        """Add an event handler."""
        self._handlers.append(handler)

    def remove_handler(self, handler: EventHandler) -> None:
        """Remove an event handler."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, event: SchedulerEvent) -> None:
        """Emit an event to all handlers."""
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler error: {e}")


def emit_job_event(
    emitter: EventEmitter | None,
    event_type: str,
    task_id: str,
    payload: dict[str, Any] | None = None,
) -> None:
    """Emit a task-related event.

    Args:
        emitter: Event emitter instance (no-op when None)
        event_type: Type of event (e.g., "job.started", "execution.log")
        task_id: ID of the task
        payload: Additional event payload
    """
    if emitter is None:
        return
    event = SchedulerEvent(
        type=event_type,
        task_id=task_id,
        timestamp_ms=int(time.time() * 1000),
        payload=payload or {},
    )
    emitter.emit(event)


# Event type constants
class EventTypes:
    """Constants for event types."""

    # Scheduler lifecycle
    SCHEDULER_STARTED = "scheduler.started"
    SCHEDULER_STOPPED = "scheduler.stopped"
    SCHEDULER_RELOADED = "scheduler.reloaded"

    # Job lifecycle
    JOB_SCHEDULED = "job.scheduled"
    JOB_REMOVED = "job.removed"

    # Job execution
    JOB_STARTED = "job.started"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"
    JOB_SKIPPED = "job.skipped"
    JOB_RETRYING = "job.retrying"

    # Task record changes pushed to the dashboard
    TASK_UPDATE = "task.update"

    # One delivery attempt written to the execution log
    EXECUTION_LOG = "execution.log"
