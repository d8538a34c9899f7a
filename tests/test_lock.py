"""
Tests for the per-project task lock.

A second TaskLock on the same file, in this process or another one, must
wait and then fail with LockTimeout; the lock must be released on every exit
path, including exceptions.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import pytest

from taskrepo.errors import LockTimeout
from taskrepo.lock import LOCK_FILENAME, TaskLock, lock_path_for, with_lock

REPO_ROOT = Path(__file__).resolve().parent.parent


def test_lock_path_is_inside_tasks_dir(tmp_path):
    assert lock_path_for(tmp_path) == tmp_path.resolve() / LOCK_FILENAME


def test_second_holder_times_out(tmp_path):
    path = lock_path_for(tmp_path)
    with TaskLock(path):
        contender = TaskLock(path, timeout=0.2, poll_interval=0.02)
        start = time.monotonic()
        with pytest.raises(LockTimeout) as excinfo:
            contender.acquire()
        assert time.monotonic() - start >= 0.2
        assert not contender.held
    err = excinfo.value
    assert err.error_type == "lock-timeout"
    assert err.metadata["lock_path"] == str(path)
    assert err.metadata["holder"]["pid"] > 0


def test_lock_released_after_block(tmp_path):
    path = lock_path_for(tmp_path)
    with TaskLock(path) as lock:
        assert lock.held
    assert not lock.held
    with TaskLock(path, timeout=0.1):
        pass


def test_lock_released_when_block_raises(tmp_path):
    path = lock_path_for(tmp_path)
    with pytest.raises(RuntimeError, match="boom"):
        with TaskLock(path):
            raise RuntimeError("boom")
    with TaskLock(path, timeout=0.1):
        pass


def test_reentry_is_rejected(tmp_path):
    lock = TaskLock(lock_path_for(tmp_path))
    with lock:
        with pytest.raises(RuntimeError, match="re-entry"):
            lock.acquire()


def test_holder_details_recorded(tmp_path):
    lock = TaskLock(lock_path_for(tmp_path))
    with lock:
        holder = lock.read_holder()
    assert set(holder) == {"pid", "timestamp", "host"}


def test_with_lock_returns_result(tmp_path):
    assert with_lock(tmp_path, lambda: 42) == 42


def test_with_lock_releases_on_exception(tmp_path):
    def fail():
        raise ValueError("nope")

    with pytest.raises(ValueError):
        with_lock(tmp_path, fail)
    assert with_lock(tmp_path, lambda: "again", timeout=0.1) == "again"


def test_lock_excludes_other_processes(tmp_path):
    """A lock held by another process blocks this one until it exits."""
    path = lock_path_for(tmp_path)
    ready = tmp_path / "ready"
    script = textwrap.dedent(
        f"""
        import time
        from pathlib import Path
        from taskrepo.lock import TaskLock

        with TaskLock(Path({str(path)!r})):
            Path({str(ready)!r}).write_text("held")
            time.sleep(1.0)
        """
    )
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH")]))
    proc = subprocess.Popen([sys.executable, "-c", script], env=env)
    try:
        deadline = time.monotonic() + 10
        while not ready.exists():
            assert proc.poll() is None, "lock holder exited early"
            assert time.monotonic() < deadline, "lock holder never started"
            time.sleep(0.02)

        with pytest.raises(LockTimeout) as excinfo:
            TaskLock(path, timeout=0.1, poll_interval=0.02).acquire()
        assert excinfo.value.metadata["holder"]["pid"] == proc.pid

        with TaskLock(path, timeout=10):
            info = json.loads(path.read_text())
            assert info["pid"] != proc.pid
    finally:
        proc.wait(timeout=10)
