"""Shared fixtures for the MemoCue scheduler tests."""
import asyncio
from datetime import datetime, timedelta
from typing import Any

import pytest

from memocue.config import Settings
from memocue.providers import ProviderFactory, PushProvider, PushResult
from memocue.scheduler.models import Device, Task
from memocue.scheduler.repeat_sender import RepeatSender
from memocue.scheduler.service import (
    DeviceDirectory,
    EventEmitter,
    ExecutionLogStore,
    JsonFileStore,
    TaskStore,
)
from memocue.scheduler.types import DailySchedule, RepeatSettings


class FakeProvider(PushProvider):
    """Records every send; fails for configured devices or raises on demand."""

    name = "fake"

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failing_devices: set[str] = set()
        self.fail_all = False
        self.raise_error: Exception | None = None

    def validate_config(self, config: dict[str, Any]) -> None:
        pass

    async def send(self, device: Device, message: dict[str, Any]) -> PushResult:
        self.calls.append((device.id, message))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_all or device.id in self.failing_devices:
            return PushResult(success=False, error=f"device {device.id} rejected")
        return PushResult(success=True, message_id=f"msg-{len(self.calls)}")


class EventRecorder:
    """Collects emitted events and lets a test wait for a given type."""

    def __init__(self):
        self.events = []
        self._waiters: dict[str, asyncio.Event] = {}

    def __call__(self, event) -> None:
        self.events.append(event)
        waiter = self._waiters.get(event.type)
        if waiter is not None:
            waiter.set()

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.type == event_type]

    async def wait_for(self, event_type: str, timeout: float = 2.0) -> None:
        if self.of_type(event_type):
            return
        waiter = self._waiters.setdefault(event_type, asyncio.Event())
        await asyncio.wait_for(waiter.wait(), timeout=timeout)


def make_task(**kwargs: Any) -> Task:
    """A daily task targeting ``device-1`` unless overridden."""
    kwargs.setdefault("title", "Drink water")
    kwargs.setdefault("content", "Time for a glass of water")
    kwargs.setdefault("schedule", DailySchedule(times=["09:00"]))
    kwargs.setdefault("device_ids", ["device-1"])
    return Task(**kwargs)


def make_device(device_id: str = "device-1", enabled: bool = True) -> Device:
    return Device(id=device_id, name=f"Phone {device_id}", provider_type="fake", enabled=enabled)


def repeating(count: int, interval_minutes: float) -> RepeatSettings:
    return RepeatSettings(enabled=True, count=count, interval_minutes=interval_minutes)


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)


def past(service, seconds: float = 1.0) -> datetime:
    return service.now() - timedelta(seconds=seconds)


@pytest.fixture
def settings(tmp_path):
    """Settings with fast retries and a tick loop that only fires once, at start."""
    return Settings(
        data_dir=tmp_path,
        timezone="Asia/Shanghai",
        max_retries=2,
        retry_base_seconds=0.01,
        max_retry_delay_seconds=0.03,
        tick_interval_seconds=3600.0,
        max_logs=50,
    )


@pytest.fixture
def files(tmp_path):
    return JsonFileStore(tmp_path)


@pytest.fixture
def events():
    return EventEmitter()


@pytest.fixture
def recorder(events):
    recorder = EventRecorder()
    events.add_handler(recorder)
    return recorder


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def provider_factory(provider):
    factory = ProviderFactory()
    factory.register("fake", lambda: provider)
    return factory


@pytest.fixture
def task_store(files, events):
    return TaskStore(files, events=events)


@pytest.fixture
def device_directory(files, provider_factory):
    return DeviceDirectory(files, provider_factory)


@pytest.fixture
def log_store(files, events):
    return ExecutionLogStore(files, max_logs=50, events=events)


@pytest.fixture
def repeat_sender():
    # One "minute" of repeat interval lasts 10ms
    return RepeatSender(interval_unit_seconds=0.01)
