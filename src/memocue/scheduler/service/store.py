"""Task, device and execution-log stores backed by JSON files."""
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from ..errors import UnknownProviderError
from ..models import Device, ExecutionLogEntry, Task, parse_timestamp
from .events import EventEmitter, EventTypes, emit_job_event
from .json_store import JsonFileStore

logger = logger.bind(module="scheduler.store")

TASKS_FILE = "tasks.json"
DEVICES_FILE = "devices.json"
LOGS_FILE = "logs.json"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _logged_between(log: dict[str, Any], start: datetime, end: datetime | None) -> bool:
    ts = parse_timestamp(log.get("timestamp"))
    if ts is None:
        return False
    return start <= ts and (end is None or ts <= end)


class TaskStore:
    """Task records in ``tasks.json`` (a JSON list)."""

    def __init__(self, files: JsonFileStore, events: EventEmitter | None = None):
        self.files = files
        self.events = events

    async def get_all_tasks(self) -> list[Task]:
        records = await self.files.read_json(TASKS_FILE, [])
        return [Task.from_dict(r) for r in records if isinstance(r, dict)]

    async def load_enabled_tasks(self) -> list[Task]:
        return [t for t in await self.get_all_tasks() if t.enabled]

    async def get_task(self, task_id: str) -> Task | None:
        for task in await self.get_all_tasks():
            if task.id == task_id:
                return task
        return None

    async def save_task(self, task: Task) -> Task:
        """Insert or replace a task record."""
        record = task.to_dict()
        record["updatedAt"] = _now_iso()

        def upsert(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
            for i, existing in enumerate(records):
                if existing.get("id") == task.id:
                    records[i] = record
                    return records
            records.append(record)
            return records

        await self.files.update_json(TASKS_FILE, upsert, [])
        return task

    async def update_task(self, task_id: str, updates: dict[str, Any]) -> Task | None:
        """Merge camelCase ``updates`` into a stored task record."""
        updates = {k: _serialize(v) for k, v in updates.items() if k != "id"}
        return await self._patch(task_id, updates)

    async def update_task_fields(self, task_id: str, **fields: Any) -> Task | None:
        """Set scheduler-owned fields, e.g. ``next_push_at=...``, ``enabled=False``."""
        updates = {_camel(k): _serialize(v) for k, v in fields.items()}
        return await self._patch(task_id, updates)

    async def disable_task(self, task_id: str) -> Task | None:
        return await self.update_task_fields(task_id, enabled=False)

    async def enable_task(self, task_id: str) -> Task | None:
        return await self.update_task_fields(task_id, enabled=True)

    async def _patch(self, task_id: str, updates: dict[str, Any]) -> Task | None:
        found: dict[str, Any] = {}

        def apply(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
            for record in records:
                if record.get("id") == task_id:
                    record.update(updates)
                    record["updatedAt"] = _now_iso()
                    found["record"] = record
                    break
            return records

        await self.files.update_json(TASKS_FILE, apply, [])
        if "record" not in found:
            logger.warning(f"Task {task_id} not found in store")
            return None

        task = Task.from_dict(found["record"])
        emit_job_event(self.events, EventTypes.TASK_UPDATE, task_id, updates)
        return task


class DeviceDirectory:
    """Device records in ``devices.json``."""

    def __init__(self, files: JsonFileStore, provider_factory: Any):
        self.files = files
        self.provider_factory = provider_factory

    async def list_devices(self) -> list[Device]:
        records = await self.files.read_json(DEVICES_FILE, [])
        return [Device.from_dict(r) for r in records if isinstance(r, dict)]

    async def resolve_devices(self, device_ids: list[str]) -> list[Device]:
        """Enabled devices among ``device_ids``."""
        wanted = set(device_ids)
        return [d for d in await self.list_devices() if d.id in wanted and d.enabled]

    async def save_device(self, device: Device) -> Device:
        """Insert or replace a device.

        Raises:
            UnknownProviderError: If no provider is registered for its type
        """
        if not self.provider_factory.is_supported(device.provider_type):
            raise UnknownProviderError(device.provider_type)

        record = device.to_dict()

        def upsert(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
            records = [r for r in records if r.get("id") != device.id]
            records.append(record)
            return records

        await self.files.update_json(DEVICES_FILE, upsert, [])
        return device


class ExecutionLogStore:
    """Delivery log in ``logs.json``, newest first and capped at ``max_logs``."""

    def __init__(
        self,
        files: JsonFileStore,
        max_logs: int = 1000,
        events: EventEmitter | None = None,
    ):
        self.files = files
        self.max_logs = max_logs
        self.events = events

    async def record(self, entry: ExecutionLogEntry) -> None:
        """Append one delivery record. Failures are logged, never raised."""
        record = entry.to_dict()
        try:
            await self.files.update_json(
                LOGS_FILE,
                lambda logs: ([record] + list(logs))[: self.max_logs],
                [],
            )
        except Exception as e:
            logger.error(f"Failed to record execution log for task {entry.task_id}: {e}")
            return

        emit_job_event(self.events, EventTypes.EXECUTION_LOG, entry.task_id, record)

    async def get_logs(self) -> list[dict[str, Any]]:
        try:
            return await self.files.read_json(LOGS_FILE, [])
        except Exception as e:
            logger.error(f"Failed to read execution logs: {e}")
            return []

    async def last_execution_for_task(self, task_id: str) -> dict[str, Any] | None:
        for log in await self.get_logs():
            if log.get("taskId") == task_id:
                return log
        return None

    async def last_executions_for_tasks(self, task_ids: list[str]) -> dict[str, dict[str, Any]]:
        wanted = set(task_ids)
        latest: dict[str, dict[str, Any]] = {}
        for log in await self.get_logs():
            task_id = log.get("taskId")
            if task_id in wanted and task_id not in latest:
                latest[task_id] = log
        return latest

    async def filter_logs(
        self,
        task_id: str | None = None,
        device_id: str | None = None,
        status: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Filter logs; results stay newest first."""
        logs = await self.get_logs()
        if task_id:
            logs = [log for log in logs if log.get("taskId") == task_id]
        if device_id:
            logs = [log for log in logs if log.get("deviceId") == device_id]
        if status:
            logs = [log for log in logs if log.get("status") == status]
        if start_time or end_time:
            start = start_time or datetime.min.replace(tzinfo=timezone.utc)
            end = end_time or datetime.now(timezone.utc)
            logs = [log for log in logs if _logged_between(log, start, end)]
        if limit:
            logs = logs[:limit]
        return logs

    async def clean_old_logs(self, days_to_keep: int = 30) -> int:
        """Drop records older than ``days_to_keep`` days; returns how many."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        removed = 0

        def prune(logs: list[dict[str, Any]]) -> list[dict[str, Any]]:
            nonlocal removed
            kept = [log for log in logs if _logged_between(log, cutoff, None)]
            removed = len(logs) - len(kept)
            return kept

        try:
            await self.files.update_json(LOGS_FILE, prune, [])
        except Exception as e:
            logger.error(f"Failed to clean old logs: {e}")
            return 0

        if removed:
            logger.info(f"Removed {removed} execution logs older than {days_to_keep} days")
        return removed
