"""Instance lease: only one process per host drives the scheduler clock.

The lease is a small JSON record (``pid``, ``hostname``, ``acquiredAt``,
``lastHeartbeat``). A record whose owner runs on another host, or whose pid
is no longer alive, is stale and may be taken over. Reads and writes happen
under an ``fcntl`` lock on a sidecar guard file, and the record itself is
replaced atomically.

Liveness is the only check: there is no fencing token, so a reused pid or a
host rename can confuse it.
"""
import asyncio
import fcntl
import json
import os
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from loguru import logger

from .errors import StoreLockError

logger = logger.bind(module="scheduler.lease")


def is_process_alive(pid: int) -> bool:
    """Check if a process with given PID is alive.

    Args:
        pid: Process ID to check.

    Returns:
        True if process exists, including ones we may not signal.
    """
    try:
        os.kill(pid, 0)  # Signal 0 checks existence without sending signal
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


@dataclass
class LeaseInfo:
    """Contents of the lease record."""
    pid: int
    hostname: str
    acquired_at: str
    last_heartbeat: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "hostname": self.hostname,
            "acquiredAt": self.acquired_at,
            "lastHeartbeat": self.last_heartbeat,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeaseInfo":
        return cls(
            pid=int(data["pid"]),
            hostname=str(data.get("hostname", "")),
            acquired_at=data.get("acquiredAt", ""),
            last_heartbeat=data.get("lastHeartbeat", ""),
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InstanceLease:
    """File-based scheduler lease with a heartbeat."""

    def __init__(
        self,
        path: str | Path,
        heartbeat_seconds: float = 10.0,
        pid: int | None = None,
        hostname: str | None = None,
        process_alive: Callable[[int], bool] = is_process_alive,
        lock_retries: int = 10,
        lock_retry_delay: float = 0.05,
    ):
        """Initialize the lease.

        Args:
            path: Lease record location
            heartbeat_seconds: Period of ``lastHeartbeat`` rewrites
            pid: Owner pid to record, defaults to this process
            hostname: Owner host to record, defaults to this host
            process_alive: Liveness probe for a recorded pid
            lock_retries: Attempts at the guard lock before giving up
            lock_retry_delay: Base delay between attempts, grows linearly
        """
        self.path = Path(path).expanduser()
        self.heartbeat_seconds = heartbeat_seconds
        self.pid = pid if pid is not None else os.getpid()
        self.hostname = hostname or socket.gethostname()
        self.process_alive = process_alive
        self.lock_retries = lock_retries
        self.lock_retry_delay = lock_retry_delay
        self._holder = False
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def is_holder(self) -> bool:
        return self._holder

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        guard_path = self.path.with_name(f"{self.path.name}.guard")
        with open(guard_path, "a+") as guard:
            for attempt in range(self.lock_retries):
                try:
                    fcntl.flock(guard.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    await asyncio.sleep(self.lock_retry_delay * (attempt + 1))
            else:
                raise StoreLockError(f"Could not lock {guard_path} after {self.lock_retries} attempts")
            try:
                yield
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

    def _read(self) -> LeaseInfo | None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return LeaseInfo.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable lease record {self.path}: {e}")
            return None

    def _write(self, info: LeaseInfo) -> None:
        temp_path = self.path.with_name(f"{self.path.name}.tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(info.to_dict(), f, indent=2)
        temp_path.replace(self.path)

    def _owns(self, info: LeaseInfo | None) -> bool:
        return info is not None and info.pid == self.pid and info.hostname == self.hostname

    async def read(self) -> LeaseInfo | None:
        """Current lease record, if any."""
        async with self._guard():
            return self._read()

    async def acquire(self) -> bool:
        """Take the lease unless a live process on this host holds it.

        Returns:
            True if this instance now holds the lease
        """
        if self._holder:
            return True

        try:
            async with self._guard():
                existing = self._read()
                if (
                    existing is not None
                    and not self._owns(existing)
                    and existing.hostname == self.hostname
                    and self.process_alive(existing.pid)
                ):
                    logger.info(
                        f"Scheduler lease held by pid {existing.pid} on {existing.hostname}"
                    )
                    return False

                if existing is not None and not self._owns(existing):
                    logger.info(
                        f"Taking over stale scheduler lease from pid {existing.pid} "
                        f"on {existing.hostname}"
                    )

                now = _now_iso()
                self._write(LeaseInfo(
                    pid=self.pid,
                    hostname=self.hostname,
                    acquired_at=now,
                    last_heartbeat=now,
                ))
        except (OSError, StoreLockError) as e:
            logger.error(f"Failed to acquire scheduler lease: {e}")
            return False

        self._holder = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"Acquired scheduler lease (pid {self.pid} on {self.hostname})")
        return True

    async def heartbeat(self) -> bool:
        """Rewrite ``lastHeartbeat``; returns False once the lease is lost."""
        async with self._guard():
            existing = self._read()
            if not self._owns(existing):
                logger.error("Scheduler lease lost to another process")
                self._holder = False
                return False
            existing.last_heartbeat = _now_iso()
            self._write(existing)
        return True

    async def _heartbeat_loop(self) -> None:
        while self._holder:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                if not await self.heartbeat():
                    return
            except (OSError, StoreLockError) as e:
                logger.error(f"Failed to update lease heartbeat: {e}")

    async def release(self) -> None:
        """Stop the heartbeat and delete the record if it is still ours."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        if not self._holder:
            return
        self._holder = False

        try:
            async with self._guard():
                if self._owns(self._read()):
                    self.path.unlink(missing_ok=True)
        except (OSError, StoreLockError) as e:
            logger.error(f"Failed to release scheduler lease: {e}")
            return
        logger.info(f"Released scheduler lease (pid {self.pid})")
