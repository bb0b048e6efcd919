"""Core type definitions for the scheduler system.

This module defines:
- Schedule types (once/hourly/daily/weekly/monthly/monthlyInterval/
  interval/workdays/weekend/cron/custom)
- Repeat-send and retry settings attached to a task
- Result and status types returned by the executor and the service
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal


# ============== Schedule Types ==============

class ScheduleKind(str, Enum):
    """Kind of schedule, as stored in the ``type`` field."""
    ONCE = "once"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MONTHLY_INTERVAL = "monthlyInterval"
    INTERVAL = "interval"
    WORKDAYS = "workdays"
    WEEKEND = "weekend"
    CRON = "cron"
    CUSTOM = "custom"


@dataclass
class RepeatSettings:
    """Multi-shot delivery settings carried on every schedule."""
    enabled: bool = False
    count: int | None = None
    interval_minutes: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enableRepeat": self.enabled,
            "repeatCount": self.count,
            "repeatInterval": self.interval_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepeatSettings":
        return cls(
            enabled=bool(data.get("enableRepeat", False)),
            count=_to_number(data.get("repeatCount"), int),
            interval_minutes=_to_number(data.get("repeatInterval"), float),
        )


def _to_number(value: Any, kind: type) -> Any:
    if value in (None, ""):
        return None
    try:
        return kind(value)
    except (TypeError, ValueError):
        return None


@dataclass
class OnceSchedule:
    """Fire once at an absolute instant."""
    kind: Literal["once"] = "once"
    at: str = ""  # ISO-8601, naive values are read in the scheduler timezone
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "datetime": self.at, **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OnceSchedule":
        return cls(at=data.get("datetime", ""), repeat=RepeatSettings.from_dict(data))


@dataclass
class HourlySchedule:
    """Fire at a fixed minute of every hour, optionally inside an hour window."""
    kind: Literal["hourly"] = "hourly"
    minute: int = 0
    start_hour: int | None = None
    end_hour: int | None = None
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "minute": self.minute,
            "startHour": self.start_hour,
            "endHour": self.end_hour,
            **self.repeat.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HourlySchedule":
        return cls(
            minute=int(data.get("minute") or 0),
            start_hour=_to_number(data.get("startHour"), int),
            end_hour=_to_number(data.get("endHour"), int),
            repeat=RepeatSettings.from_dict(data),
        )


@dataclass
class DailySchedule:
    """Fire at one or more wall-clock times every day."""
    kind: Literal["daily"] = "daily"
    times: list[str] = field(default_factory=list)  # "HH:MM"
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "times": list(self.times), **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DailySchedule":
        times = data.get("times") or ([data["time"]] if data.get("time") else [])
        return cls(times=list(times), repeat=RepeatSettings.from_dict(data))


@dataclass
class WeeklySchedule:
    """Fire on selected weekdays (0=Sunday .. 6=Saturday) at one time."""
    kind: Literal["weekly"] = "weekly"
    days: list[int] = field(default_factory=list)
    time: str = ""
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "days": list(self.days), "time": self.time, **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WeeklySchedule":
        days = data.get("days") or data.get("weekDays") or []
        return cls(
            days=[int(d) for d in days],
            time=data.get("time", ""),
            repeat=RepeatSettings.from_dict(data),
        )


@dataclass
class MonthlySchedule:
    """Fire on selected days of the month at one time."""
    kind: Literal["monthly"] = "monthly"
    days: list[int] = field(default_factory=list)
    time: str = ""
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "days": list(self.days), "time": self.time, **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonthlySchedule":
        days = [data["day"]] if data.get("day") else (data.get("days") or [])
        return cls(
            days=[int(d) for d in days],
            time=data.get("time", ""),
            repeat=RepeatSettings.from_dict(data),
        )


@dataclass
class MonthlyIntervalSchedule:
    """Fire every N months on the anchor date's day of month."""
    kind: Literal["monthlyInterval"] = "monthlyInterval"
    interval: int = 1
    first_date: str = ""  # "YYYY-MM-DD"
    time: str = ""
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "interval": self.interval,
            "firstDate": self.first_date,
            "time": self.time,
            **self.repeat.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonthlyIntervalSchedule":
        return cls(
            interval=int(data.get("interval") or 0),
            first_date=data.get("firstDate", ""),
            time=data.get("time", ""),
            repeat=RepeatSettings.from_dict(data),
        )


@dataclass
class IntervalSchedule:
    """Fire every N minutes counted from the last push."""
    kind: Literal["interval"] = "interval"
    minutes: float = 0
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "interval": self.minutes, **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IntervalSchedule":
        return cls(minutes=float(data.get("interval") or 0), repeat=RepeatSettings.from_dict(data))


@dataclass
class WorkdaysSchedule:
    """Fire at the given times Monday to Friday."""
    kind: Literal["workdays"] = "workdays"
    times: list[str] = field(default_factory=list)
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "times": list(self.times), **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkdaysSchedule":
        return cls(times=list(data.get("times") or []), repeat=RepeatSettings.from_dict(data))


@dataclass
class WeekendSchedule:
    """Fire at the given times on Saturday and Sunday."""
    kind: Literal["weekend"] = "weekend"
    times: list[str] = field(default_factory=list)
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "times": list(self.times), **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WeekendSchedule":
        return cls(times=list(data.get("times") or []), repeat=RepeatSettings.from_dict(data))


@dataclass
class CronSchedule:
    """Cron expression schedule.

    Supports both 5-part (minute precision) and 6-part (second precision) formats:
    - 5-part: "min hour day month weekday" (e.g., "30 7 * * *" = every day at 7:30)
    - 6-part: "sec min hour day month weekday" (e.g., "0 30 7 * * *" = every day at 7:30:00)
    """
    kind: Literal["cron"] = "cron"
    expression: str = ""
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "expression": self.expression, **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CronSchedule":
        return cls(
            expression=data.get("expression") or data.get("value") or "",
            repeat=RepeatSettings.from_dict(data),
        )


@dataclass
class CustomSchedule:
    """Fire at an explicit list of instants."""
    kind: Literal["custom"] = "custom"
    dates: list[str] = field(default_factory=list)
    repeat: RepeatSettings = field(default_factory=RepeatSettings)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "dates": list(self.dates), **self.repeat.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CustomSchedule":
        return cls(dates=list(data.get("dates") or []), repeat=RepeatSettings.from_dict(data))


# Union type for all schedule types
Schedule = (
    OnceSchedule
    | HourlySchedule
    | DailySchedule
    | WeeklySchedule
    | MonthlySchedule
    | MonthlyIntervalSchedule
    | IntervalSchedule
    | WorkdaysSchedule
    | WeekendSchedule
    | CronSchedule
    | CustomSchedule
)

_SCHEDULE_CLASSES: dict[str, type] = {
    ScheduleKind.ONCE.value: OnceSchedule,
    ScheduleKind.HOURLY.value: HourlySchedule,
    ScheduleKind.DAILY.value: DailySchedule,
    ScheduleKind.WEEKLY.value: WeeklySchedule,
    ScheduleKind.MONTHLY.value: MonthlySchedule,
    ScheduleKind.MONTHLY_INTERVAL.value: MonthlyIntervalSchedule,
    ScheduleKind.INTERVAL.value: IntervalSchedule,
    ScheduleKind.WORKDAYS.value: WorkdaysSchedule,
    ScheduleKind.WEEKEND.value: WeekendSchedule,
    ScheduleKind.CRON.value: CronSchedule,
    ScheduleKind.CUSTOM.value: CustomSchedule,
}


def schedule_from_dict(data: dict[str, Any]) -> Schedule:
    """Create a Schedule from a dictionary."""
    kind = data.get("type")
    schedule_cls = _SCHEDULE_CLASSES.get(kind)  # type: ignore[arg-type]
    if schedule_cls is None:
        raise ValueError(f"Unknown schedule type: {kind}")
    return schedule_cls.from_dict(data)


# ============== Run Status ==============

class DeliveryStatus(str, Enum):
    """Outcome of one delivery attempt to one device."""
    SUCCESS = "success"
    FAILED = "failed"


# ============== Result Types ==============

@dataclass
class DeliveryResult:
    """Result of one (iteration, device) delivery attempt."""
    device_id: str
    iteration: int
    success: bool
    message_id: str | None = None
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "iteration": self.iteration,
            "success": self.success,
            "message_id": self.message_id,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ExecutionResult:
    """Aggregate result of executing a task once."""
    task_id: str
    success: bool
    skipped: bool = False
    deliveries: list[DeliveryResult] = field(default_factory=list)
    error: str | None = None

    @property
    def success_count(self) -> int:
        return sum(1 for d in self.deliveries if d.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for d in self.deliveries if not d.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "success": self.success,
            "skipped": self.skipped,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "deliveries": [d.to_dict() for d in self.deliveries],
            "error": self.error,
        }


@dataclass
class RetryDecision:
    """What the retry policy decided after a failed execution."""
    should_retry: bool
    retry_count: int
    delay_seconds: float = 0.0


@dataclass
class JobSnapshot:
    """Read-only view of one job for status listings."""
    id: str
    title: str
    schedule_type: str
    label: str
    next_push_at: datetime | None
    enabled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "schedule_type": self.schedule_type,
            "label": self.label,
            "next_push_at": self.next_push_at.isoformat() if self.next_push_at else None,
            "enabled": self.enabled,
        }


@dataclass
class SchedulerStatus:
    """Status of the scheduler service."""
    running: bool
    timezone: str
    jobs: list[JobSnapshot] = field(default_factory=list)
    lease_held: bool = False

    @property
    def total_jobs(self) -> int:
        return len(self.jobs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "timezone": self.timezone,
            "lease_held": self.lease_held,
            "total_jobs": self.total_jobs,
            "jobs": [job.to_dict() for job in self.jobs],
        }


# ============== Events ==============

@dataclass
class SchedulerEvent:
    """Event emitted for job lifecycle changes and delivery logs."""
    type: str
    task_id: str
    timestamp_ms: int
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "task_id": self.task_id,
            "timestamp_ms": self.timestamp_ms,
            "payload": self.payload,
        }
