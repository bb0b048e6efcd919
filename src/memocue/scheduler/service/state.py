"""State management for the scheduler service.

Contains dependency injection and runtime state management.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..models import Device, ExecutionLogEntry, Job, Task


class TaskSource(Protocol):
    """What the scheduler needs from the task store."""

    async def load_enabled_tasks(self) -> list[Task]: ...

    async def get_task(self, task_id: str) -> Task | None: ...

    async def update_task_fields(self, task_id: str, **fields: Any) -> Task | None: ...


class DeviceSource(Protocol):
    async def resolve_devices(self, device_ids: list[str]) -> list[Device]: ...


class LogSink(Protocol):
    async def record(self, entry: ExecutionLogEntry) -> None: ...


@dataclass
class SchedulerServiceDeps:
    """Collaborators of the scheduler service.

    Built once at process start and passed in, so tests can swap any of them.
    """
    task_store: TaskSource
    device_directory: DeviceSource
    provider_factory: Any
    log_store: LogSink


@dataclass
class SchedulerServiceState:
    """Runtime state of the scheduler service."""
    running: bool = False
    stopped: bool = False
    timer_task: asyncio.Task | None = None
    wake_event: asyncio.Event = field(default_factory=asyncio.Event)

    # Set when loading tasks from the store failed
    needs_reload: bool = False

    # Job table, keyed by task id
    jobs: dict[str, Job] = field(default_factory=dict)

    # Executions started by ticks, triggers and retries
    inflight: set[asyncio.Task] = field(default_factory=set)

    def reset(self) -> None:
        """Reset state to initial values."""
        self.running = False
        self.timer_task = None
        self.needs_reload = False
        self.jobs.clear()
        self.inflight.clear()
        self.wake_event.clear()
