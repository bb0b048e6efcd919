"""Exception types raised inside the scheduling engine.

Only ``NoAvailableDeviceError``, ``DispatchFailure`` and ``StoreLockError`` ever
cross a component boundary; the service turns all of them into log lines and
retry decisions instead of letting them reach the tick loop.
"""


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class ScheduleComputationError(SchedulerError):
    """A schedule descriptor is unknown or malformed."""


class NoAvailableDeviceError(SchedulerError):
    """None of a task's target devices exist or are enabled."""

    def __init__(self, task_id: str):
        super().__init__(f"No available push device for task {task_id}")
        self.task_id = task_id


class DispatchFailure(SchedulerError):
    """Every delivery attempt of an execution failed."""


class UnknownProviderError(SchedulerError):
    """A push provider type is not registered with the factory."""

    def __init__(self, provider_type: str):
        super().__init__(f"Unknown provider type: {provider_type}")
        self.provider_type = provider_type


class StoreLockError(SchedulerError):
    """The advisory lock on a data file could not be acquired in time."""
