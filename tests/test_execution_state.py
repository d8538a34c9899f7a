"""Tests for the execution-state side channel."""

from __future__ import annotations

import pytest

from taskrepo.errors import ValidationError
from taskrepo.execution_state import (
    clear_execution_state,
    read_execution_state,
    running_task_id,
    state_file_path,
    write_execution_state,
)
from taskrepo.models import ExecutionState


def test_absent_state_reads_as_none(tmp_path):
    assert read_execution_state(tmp_path) is None
    assert running_task_id(tmp_path) is None
    assert running_task_id(None) is None


def test_write_then_read(tmp_path):
    path = write_execution_state(tmp_path, {"task_id": 5, "story_id": 2, "task_start_time": "2025-01-15T10:30:00Z"})
    assert path == state_file_path(tmp_path)
    state = read_execution_state(tmp_path)
    assert state == ExecutionState(task_id=5, story_id=2, task_start_time="2025-01-15T10:30:00Z")
    assert running_task_id(tmp_path) == 5


def test_write_accepts_model(tmp_path):
    write_execution_state(tmp_path, ExecutionState(task_id=1, task_start_time="2025-01-15T10:30:00Z"))
    assert read_execution_state(tmp_path).story_id is None


def test_invalid_state_is_rejected_on_write(tmp_path):
    with pytest.raises(ValidationError) as excinfo:
        write_execution_state(tmp_path, {"task_id": "5"})
    fields = {d["field"] for d in excinfo.value.diagnostics}
    assert fields == {"task_id", "task_start_time"}
    assert not state_file_path(tmp_path).exists()


@pytest.mark.parametrize("content", ["{broken", "[1, 2]", '{"task_id": "x"}'])
def test_unreadable_state_is_logged_and_ignored(tmp_path, caplog, content):
    state_file_path(tmp_path).write_text(content)
    with caplog.at_level("WARNING", logger="taskrepo.execution_state"):
        assert read_execution_state(tmp_path) is None
    assert "execution state" in caplog.text


def test_clear(tmp_path):
    assert clear_execution_state(tmp_path) is False
    write_execution_state(tmp_path, {"task_id": 1, "task_start_time": "2025-01-15T10:30:00Z"})
    assert clear_execution_state(tmp_path) is True
    assert read_execution_state(tmp_path) is None
