"""Data models for tasks, devices, jobs and execution logs.

Tasks and devices are persisted as camelCase JSON records shared with the
web dashboard; only the fields the scheduler needs are modelled here and any
other keys are carried through untouched in ``extra``.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
import uuid

from loguru import logger

from .types import Schedule, schedule_from_dict

logger = logger.bind(module="scheduler.models")

_TASK_KEYS = {
    "id", "title", "content", "url", "sound", "group", "icon", "priority",
    "enabled", "schedule", "deviceIds", "deviceId", "maxRetries",
    "lastPushAt", "nextPushAt",
}


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_max_retries(value: Any) -> int | None:
    """Stored retry limits may arrive as strings from the dashboard."""
    if value in (None, ""):
        return None
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid maxRetries {value!r}")
        return None


@dataclass
class Task:
    """A persisted reminder definition."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str = ""
    content: str = ""
    enabled: bool = True

    # None when the stored descriptor could not be parsed
    schedule: Schedule | None = None
    device_ids: list[str] = field(default_factory=list)
    max_retries: int | None = None

    # Message options forwarded to providers
    url: str | None = None
    sound: str | None = None
    group: str | None = None
    icon: str | None = None
    priority: int = 0

    last_push_at: datetime | None = None
    next_push_at: datetime | None = None

    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def schedule_type(self) -> str:
        return self.schedule.kind if self.schedule else "unknown"

    def message(self) -> dict[str, Any]:
        """Message payload handed to push providers."""
        return {
            "title": self.title,
            "content": self.content,
            "url": self.url,
            "sound": self.sound,
            "group": self.group,
            "icon": self.icon,
            "priority": self.priority,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "url": self.url,
            "sound": self.sound,
            "group": self.group,
            "icon": self.icon,
            "priority": self.priority,
            "enabled": self.enabled,
            "schedule": self.schedule.to_dict() if self.schedule else None,
            "deviceIds": list(self.device_ids),
            "maxRetries": self.max_retries,
            "lastPushAt": format_timestamp(self.last_push_at),
            "nextPushAt": format_timestamp(self.next_push_at),
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Create from dictionary."""
        task = cls(
            id=data.get("id", str(uuid.uuid4())),
            title=data.get("title", ""),
            content=data.get("content", ""),
            enabled=bool(data.get("enabled", True)),
            url=data.get("url"),
            sound=data.get("sound"),
            group=data.get("group"),
            icon=data.get("icon"),
            priority=int(data.get("priority") or 0),
            max_retries=_parse_max_retries(data.get("maxRetries")),
            last_push_at=parse_timestamp(data.get("lastPushAt")),
            next_push_at=parse_timestamp(data.get("nextPushAt")),
            extra={k: v for k, v in data.items() if k not in _TASK_KEYS},
        )

        # Compatible with the old single-device format
        if data.get("deviceIds"):
            task.device_ids = list(data["deviceIds"])
        elif data.get("deviceId"):
            task.device_ids = [data["deviceId"]]

        schedule_data = data.get("schedule")
        if not schedule_data and data.get("scheduleType"):
            schedule_data = _legacy_schedule(data)
        if schedule_data:
            try:
                task.schedule = schedule_from_dict(schedule_data)
            except (ValueError, TypeError) as e:
                logger.warning(f"Task {task.id} has an unusable schedule: {e}")

        return task


def _legacy_schedule(data: dict[str, Any]) -> dict[str, Any]:
    """Map the old ``scheduleType``/``scheduleValue`` pair to a schedule dict."""
    value = data.get("scheduleValue")
    schedule: dict[str, Any] = {"type": data["scheduleType"]}
    if isinstance(value, dict):
        schedule.update(value)
    elif data["scheduleType"] == "once":
        schedule["datetime"] = value
    elif data["scheduleType"] == "cron":
        schedule["expression"] = value
    return schedule


@dataclass
class Device:
    """A push target registered in the device directory."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    provider_type: str = "bark"
    provider_config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "providerType": self.provider_type,
            "providerConfig": self.provider_config,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Device":
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            name=data.get("name", ""),
            provider_type=(data.get("providerType") or data.get("type") or "bark"),
            provider_config=data.get("providerConfig") or {},
            enabled=bool(data.get("enabled") or data.get("isActive")),
        )


@dataclass
class Job:
    """In-memory scheduling record for one task. Never persisted."""
    task_id: str
    task: Task
    next_push_at: datetime
    retry_count: int = 0
    cron_trigger: asyncio.Task | None = None
    retry_handle: asyncio.Task | None = None
    # Set once the job is removed; runs started for it stop delivering
    removed: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def cancel_handles(self) -> None:
        """Cancel the native cron trigger and any pending retry."""
        for handle in (self.cron_trigger, self.retry_handle):
            if handle is not None and not handle.done():
                handle.cancel()
        self.cron_trigger = None
        self.retry_handle = None


@dataclass
class ExecutionLogEntry:
    """One delivery attempt, as written to the execution log."""
    task_id: str
    device_id: str
    status: str
    task_title: str = ""
    device_name: str = ""
    error: str | None = None
    iteration: int = 1
    total_iterations: int = 1
    duration_ms: int = 0
    id: str = field(default_factory=lambda: f"log_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "taskTitle": self.task_title,
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "status": self.status,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "iteration": self.iteration,
            "totalIterations": self.total_iterations,
            "duration": self.duration_ms,
        }
