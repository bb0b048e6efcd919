"""Task executor: delivers one task to its devices.

One execution resolves the task's devices, takes the execution lock and runs
the repeat-send loop. Every (attempt, device) pair produces exactly one
execution-log record, whatever the provider did.
"""
import time
from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger

from .errors import DispatchFailure, NoAvailableDeviceError
from .models import Device, ExecutionLogEntry, Task
from .repeat_sender import ExecutionLock, RepeatSender, repeat_config
from .types import DeliveryResult, DeliveryStatus, ExecutionResult

logger = logger.bind(module="scheduler.executor")


class TaskExecutor:
    """Executes tasks by pushing their message through the provider factory."""

    def __init__(
        self,
        device_directory: Any,
        provider_factory: Any,
        log_store: Any,
        task_store: Any = None,
        execution_lock: ExecutionLock | None = None,
        repeat_sender: RepeatSender | None = None,
    ):
        """Initialize executor.

        Args:
            device_directory: Resolves device ids (``resolve_devices``)
            provider_factory: Creates providers by type (``create``)
            log_store: Receives one record per delivery (``record``)
            task_store: Receives ``last_push_at`` updates, optional
            execution_lock: Shared per-task lock
            repeat_sender: Shared repeat-send tracker
        """
        self.device_directory = device_directory
        self.provider_factory = provider_factory
        self.log_store = log_store
        self.task_store = task_store
        self.lock = execution_lock or ExecutionLock()
        self.repeat_sender = repeat_sender or RepeatSender()

    async def execute(
        self,
        task: Task,
        keep_going: Callable[[], bool] | None = None,
    ) -> ExecutionResult:
        """Execute a task once.

        Args:
            task: The task to deliver
            keep_going: Checked before every attempt; once it returns False
                the run stops as if it had been aborted

        Returns:
            Aggregate result. ``skipped`` is set when another execution of
            the same task is still in flight, or when the run was stopped
            before its first delivery.
        """
        try:
            devices = await self.device_directory.resolve_devices(task.device_ids)
        except Exception as e:
            logger.error(f"Failed to resolve devices for task {task.id}: {e}")
            return ExecutionResult(task_id=task.id, success=False, error=str(e))

        if not devices:
            error = NoAvailableDeviceError(task.id)
            logger.error(str(error))
            return ExecutionResult(task_id=task.id, success=False, error=str(error))

        if keep_going is not None and not keep_going():
            logger.info(f"Task {task.id} was removed before delivery, skipping")
            return ExecutionResult(task_id=task.id, success=False, skipped=True, error="Execution cancelled")

        if not self.lock.try_begin(task.id):
            logger.warning(f"Task {task.id} is already executing, skipping this trigger")
            return ExecutionResult(
                task_id=task.id,
                success=False,
                skipped=True,
                error="Execution already in progress",
            )

        try:
            deliveries = await self._send_notifications(task, devices, keep_going)
        finally:
            self.lock.end(task.id)

        if not deliveries:
            return ExecutionResult(task_id=task.id, success=False, skipped=True, error="Execution cancelled")
        await self._record_push_time(task)

        result = ExecutionResult(task_id=task.id, success=False, deliveries=deliveries)
        result.success = result.success_count > 0
        if not result.success:
            result.error = str(DispatchFailure(f"All {len(deliveries)} deliveries failed for task {task.id}"))

        logger.info(
            f"Task {task.id} ({task.title}) done: "
            f"{result.success_count} succeeded, {result.failure_count} failed"
        )
        if result.failure_count:
            failed = sorted({d.device_id for d in deliveries if not d.success})
            logger.warning(f"Some deliveries failed for task {task.id}: {failed}")
        return result

    async def _send_notifications(
        self,
        task: Task,
        devices: list[Device],
        keep_going: Callable[[], bool] | None = None,
    ) -> list[DeliveryResult]:
        """Run the repeat-send loop over all devices."""
        enabled, count, interval = repeat_config(task)
        logger.info(
            f"Pushing task {task.id}: repeat={enabled}, count={count}, interval={interval:g}min"
        )

        state = self.repeat_sender.start(task.id, count, interval)

        def stopped() -> bool:
            return state.aborted or (keep_going is not None and not keep_going())

        deliveries: list[DeliveryResult] = []
        try:
            for iteration in range(1, count + 1):
                if stopped():
                    logger.info(f"Task {task.id} aborted, stopping repeat-send")
                    break

                if iteration > 1:
                    logger.info(f"Waiting {interval:g}min before attempt {iteration}/{count} of task {task.id}")
                    await self.repeat_sender.wait(task.id, interval)

                    if stopped():
                        logger.info(f"Task {task.id} aborted, stopping repeat-send")
                        break

                self.repeat_sender.mark_attempt(task.id, iteration)
                for device in devices:
                    deliveries.append(await self._deliver(task, device, iteration, count))
        finally:
            self.repeat_sender.cleanup(task.id)

        return deliveries

    async def _deliver(
        self,
        task: Task,
        device: Device,
        iteration: int,
        total: int,
    ) -> DeliveryResult:
        """Send to one device and record the attempt."""
        started = time.monotonic()
        message_id = None
        try:
            provider = self.provider_factory.create(device.provider_type)
            push = await provider.send(device, task.message())
            success, message_id, error = push.success, push.message_id, push.error
        except Exception as e:
            success, error = False, str(e) or type(e).__name__
            logger.error(f"Push raised for task {task.id}, device {device.name or device.id}: {error}")
        duration_ms = int((time.monotonic() - started) * 1000)

        if success:
            logger.info(f"Push succeeded: task {task.id}, device {device.name or device.id}, attempt {iteration}/{total}")
        else:
            logger.warning(f"Push failed: task {task.id}, device {device.name or device.id}, attempt {iteration}/{total}: {error}")

        await self.log_store.record(ExecutionLogEntry(
            task_id=task.id,
            task_title=task.title,
            device_id=device.id,
            device_name=device.name,
            status=(DeliveryStatus.SUCCESS if success else DeliveryStatus.FAILED).value,
            error=None if success else error,
            iteration=iteration,
            total_iterations=total,
            duration_ms=duration_ms,
        ))

        return DeliveryResult(
            device_id=device.id,
            iteration=iteration,
            success=success,
            message_id=message_id,
            error=None if success else error,
            duration_ms=duration_ms,
        )

    async def _record_push_time(self, task: Task) -> None:
        task.last_push_at = datetime.now(timezone.utc)
        if self.task_store is None:
            return
        try:
            await self.task_store.update_task_fields(task.id, last_push_at=task.last_push_at)
        except Exception as e:
            logger.warning(f"Failed to persist lastPushAt for task {task.id}: {e}")
