"""Scheduler service package.

This package contains the core scheduler service components:
- state.py: State management and dependencies
- json_store.py: JSON file persistence layer
- store.py: Task, device and execution-log stores
- ops.py: Job table operations and retry policy
- timer.py: Tick loop, cron triggers and retries
- events.py: Event system
"""
from .events import EventEmitter, EventTypes, emit_job_event
from .json_store import JsonFileStore
from .service import SchedulerService
from .store import DeviceDirectory, ExecutionLogStore, TaskStore

__all__ = [
    "SchedulerService",
    "JsonFileStore",
    "TaskStore",
    "DeviceDirectory",
    "ExecutionLogStore",
    "EventEmitter",
    "EventTypes",
    "emit_job_event",
]
