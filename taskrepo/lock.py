"""Per-project lock serializing read-modify-write cycles on the task stores.

TaskLock takes an exclusive flock() on a dedicated lock file inside the tasks
directory. The lock domain is the OS process, so CLI invocations and agent
sessions on one machine exclude each other. Always hold TaskLock while
reading stores whose contents feed a write.

Critical: never bypass TaskLock for "quick writes" - concurrent writers WILL
lose each other's changes.

The kernel drops flock() locks when the holder exits, so a crashed process
never leaves a stale lock behind. Holder details written into the file are
for diagnostics only.
"""
from __future__ import annotations

import fcntl
import json
import os
import socket
import time
from contextlib import AbstractContextManager
from pathlib import Path
from types import TracebackType
from typing import IO, Any, Callable, Dict, Optional, Type, TypeVar

from taskrepo.errors import LockTimeout

LOCK_FILENAME = ".tasks.lock"
DEFAULT_TIMEOUT = 30.0

T = TypeVar("T")


def lock_path_for(tasks_dir: Path | str) -> Path:
    """Return the lock file guarding the stores in ``tasks_dir``."""
    return Path(tasks_dir).expanduser().resolve() / LOCK_FILENAME


class TaskLock(AbstractContextManager["TaskLock"]):
    """Exclusive advisory lock on a project's task files."""

    def __init__(
        self,
        lock_path: Path | str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = 0.05,
    ) -> None:
        self._lock_path = Path(lock_path)
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._handle: Optional[IO[str]] = None

    @property
    def path(self) -> Path:
        return self._lock_path

    @property
    def held(self) -> bool:
        return self._handle is not None

    def __enter__(self) -> "TaskLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def acquire(self) -> None:
        if self._handle is not None:
            raise RuntimeError(f"Lock re-entry detected for {self._lock_path}")
        deadline = time.monotonic() + self._timeout
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = self._lock_path.open("a+", encoding="utf-8")
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() > deadline:
                    holder = self.read_holder()
                    handle.close()
                    raise LockTimeout(
                        f"Unable to acquire task lock at {self._lock_path} within {self._timeout}s",
                        lock_path=str(self._lock_path),
                        timeout_seconds=self._timeout,
                        holder=holder,
                    )
                time.sleep(self._poll_interval)
        self._handle = handle
        self._write_holder()

    def release(self) -> None:
        """Release the lock if held."""
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None

    def _write_holder(self) -> None:
        assert self._handle is not None
        info = {
            "pid": os.getpid(),
            "timestamp": time.time(),
            "host": socket.gethostname(),
        }
        self._handle.seek(0)
        self._handle.truncate()
        self._handle.write(json.dumps(info))
        self._handle.flush()

    def read_holder(self) -> Optional[Dict[str, Any]]:
        """Return the last recorded holder details, if readable."""
        try:
            raw = self._lock_path.read_text(encoding="utf-8")
            info = json.loads(raw) if raw.strip() else None
        except (FileNotFoundError, json.JSONDecodeError):
            return None
        return info if isinstance(info, dict) else None


def with_lock(project_key: Path | str, fn: Callable[[], T], *, timeout: float = DEFAULT_TIMEOUT) -> T:
    """Run ``fn`` while holding the lock for the project's tasks directory.

    Args:
        project_key: The tasks directory whose stores ``fn`` mutates
        fn: Zero-argument callable
        timeout: Seconds to wait for the lock

    Returns:
        Whatever ``fn`` returns

    Raises:
        LockTimeout: If the lock is not acquired within ``timeout``
    """
    with TaskLock(lock_path_for(project_key), timeout=timeout):
        return fn()


__all__ = ["DEFAULT_TIMEOUT", "LOCK_FILENAME", "TaskLock", "lock_path_for", "with_lock"]
