"""Scheduler module for reminder tasks.

This module provides the task scheduling and execution engine:
- Eleven schedule types (once/hourly/daily/weekly/monthly/monthlyInterval/
  interval/workdays/weekend/cron/custom)
- Per-task execution lock and cancellable repeat-send
- Exponential-backoff retries
- JSON file persistence (easy to view and edit)
- asyncio-based tick loop and native cron triggers
- A file lease so one process per host drives the clock
"""
# Core types
from .types import (
    # Schedule types
    ScheduleKind,
    RepeatSettings,
    OnceSchedule,
    HourlySchedule,
    DailySchedule,
    WeeklySchedule,
    MonthlySchedule,
    MonthlyIntervalSchedule,
    IntervalSchedule,
    WorkdaysSchedule,
    WeekendSchedule,
    CronSchedule,
    CustomSchedule,
    Schedule,
    schedule_from_dict,
    # Result types
    DeliveryStatus,
    DeliveryResult,
    ExecutionResult,
    RetryDecision,
    JobSnapshot,
    SchedulerStatus,
    SchedulerEvent,
)

# Errors
from .errors import (
    SchedulerError,
    ScheduleComputationError,
    NoAvailableDeviceError,
    DispatchFailure,
    UnknownProviderError,
    StoreLockError,
)

# Models
from .models import Task, Device, Job, ExecutionLogEntry

# Schedule utilities
from .schedule import (
    compute_next_push_at,
    schedule_to_human,
    validate_cron_expression,
    now_in,
)

# Execution
from .repeat_sender import ExecutionLock, RepeatSender, repeat_config
from .executor import TaskExecutor
from .lease import InstanceLease

# Service
from .service import SchedulerService

__all__ = [
    # Core types
    "ScheduleKind",
    "RepeatSettings",
    "OnceSchedule",
    "HourlySchedule",
    "DailySchedule",
    "WeeklySchedule",
    "MonthlySchedule",
    "MonthlyIntervalSchedule",
    "IntervalSchedule",
    "WorkdaysSchedule",
    "WeekendSchedule",
    "CronSchedule",
    "CustomSchedule",
    "Schedule",
    "schedule_from_dict",
    "DeliveryStatus",
    "DeliveryResult",
    "ExecutionResult",
    "RetryDecision",
    "JobSnapshot",
    "SchedulerStatus",
    "SchedulerEvent",
    # Errors
    "SchedulerError",
    "ScheduleComputationError",
    "NoAvailableDeviceError",
    "DispatchFailure",
    "UnknownProviderError",
    "StoreLockError",
    # Models
    "Task",
    "Device",
    "Job",
    "ExecutionLogEntry",
    # Schedule utilities
    "compute_next_push_at",
    "schedule_to_human",
    "validate_cron_expression",
    "now_in",
    # Execution
    "ExecutionLock",
    "RepeatSender",
    "repeat_config",
    "TaskExecutor",
    "InstanceLease",
    # Service
    "SchedulerService",
]
