"""Shared fixtures for the task repository tests."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(autouse=True)
def isolated_log(tmp_path, monkeypatch):
    """Send the event log to a per-test file and keep env overrides out."""
    log_path = tmp_path / "logs" / "taskrepo.log"
    monkeypatch.setenv("TASKREPO_LOG_PATH", str(log_path))
    monkeypatch.delenv("TASKREPO_LOG_LEVEL", raising=False)
    monkeypatch.delenv("TASKREPO_PROJECT_DIR", raising=False)
    return log_path


@pytest.fixture
def stores(tmp_path):
    """Active and archive store paths inside a fresh tasks directory."""
    tasks_dir = tmp_path / ".tasks"
    tasks_dir.mkdir()
    return tasks_dir / "tasks.jsonl", tasks_dir / "complete.jsonl"


@pytest.fixture
def log_entries(isolated_log):
    """Return a callable reading the structured log written so far."""

    def _read() -> list[dict]:
        if not isolated_log.exists():
            return []
        return [json.loads(line) for line in isolated_log.read_text().splitlines() if line.strip()]

    return _read
