"""JSON file persistence layer.

Tasks, devices and execution logs live in plain JSON files under the data
directory so users can view and edit them directly. Writers are serialized
in-process with an ``asyncio.Lock`` per file and across processes with an
advisory ``fcntl`` lock on a sidecar ``.lock`` file.
"""
import asyncio
import copy
import fcntl
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from loguru import logger

from ..errors import StoreLockError

logger = logger.bind(module="scheduler.json_store")


class JsonFileStore:
    """Reads and atomically rewrites JSON files in one directory."""

    def __init__(
        self,
        data_dir: str | Path,
        lock_retries: int = 10,
        lock_retry_delay: float = 0.05,
    ):
        """Initialize JSON file store.

        Args:
            data_dir: Directory holding the JSON files
            lock_retries: Attempts at the cross-process lock before giving up
            lock_retry_delay: Base delay between attempts, grows linearly
        """
        self.data_dir = Path(data_dir).expanduser()
        self.lock_retries = lock_retries
        self.lock_retry_delay = lock_retry_delay
        self._locks: dict[str, asyncio.Lock] = {}

    def path_for(self, name: str) -> Path:
        return self.data_dir / name

    def _lock_for(self, name: str) -> asyncio.Lock:
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    @asynccontextmanager
    async def _locked(self, name: str) -> AsyncIterator[None]:
        """Hold both the in-process and the cross-process lock for a file."""
        async with self._lock_for(name):
            self.data_dir.mkdir(parents=True, exist_ok=True)
            lock_path = self.path_for(name).with_name(f"{name}.lock")
            with open(lock_path, "a+") as lock_file:
                for attempt in range(self.lock_retries):
                    try:
                        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        await asyncio.sleep(self.lock_retry_delay * (attempt + 1))
                else:
                    raise StoreLockError(f"Could not lock {name} after {self.lock_retries} attempts")
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read(self, name: str, default: Any) -> Any:
        path = self.path_for(name)
        if not path.exists():
            return copy.deepcopy(default)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse {path}: {e}")
            return copy.deepcopy(default)

    def _write(self, name: str, data: Any) -> None:
        path = self.path_for(name)
        # Write atomically (write to temp, then rename)
        temp_path = path.with_name(f"{name}.tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        temp_path.replace(path)

    async def read_json(self, name: str, default: Any = None) -> Any:
        """Read a file, returning a copy of ``default`` if it does not exist."""
        async with self._locked(name):
            return self._read(name, default)

    async def write_json(self, name: str, data: Any) -> None:
        async with self._locked(name):
            self._write(name, data)
        logger.debug(f"Saved {name}")

    async def update_json(
        self,
        name: str,
        mutate: Callable[[Any], Any],
        default: Any = None,
    ) -> Any:
        """Read, transform and write back a file under one lock.

        Args:
            name: File name inside the data directory
            mutate: Receives the current data and returns the new data
            default: Value used when the file does not exist yet

        Returns:
            The data that was written
        """
        async with self._locked(name):
            data = mutate(self._read(name, default))
            self._write(name, data)
            return data
