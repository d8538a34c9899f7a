"""Tests for id allocation and parent lookups."""

from __future__ import annotations

import pytest

from taskrepo.errors import ParentNotFound
from taskrepo.ids import children_of, find_task, index_of, next_id, validate_parent
from taskrepo.validation import validate_task


def make_task(task_id: int, parent_id=None):
    return validate_task(
        {
            "id": task_id,
            "parent_id": parent_id,
            "status": "open",
            "title": f"Task {task_id}",
            "category": "simple",
            "type": "task",
        }
    )


def test_next_id_starts_at_one():
    assert next_id([], []) == 1


def test_next_id_counts_archived_ids():
    active = [make_task(2)]
    archive = [make_task(9), make_task(4)]
    assert next_id(active, archive) == 10


def test_next_id_after_everything_archived():
    assert next_id([], [make_task(5)]) == 6


def test_validate_parent_searches_archive():
    parent = make_task(3)
    assert validate_parent(3, [make_task(1)], [parent]) == parent


def test_validate_parent_missing():
    with pytest.raises(ParentNotFound) as excinfo:
        validate_parent(42, [make_task(1)], [])
    assert excinfo.value.metadata == {"parent_id": 42}
    assert str(excinfo.value) == "Parent task not found: 42"


def test_lookup_helpers():
    tasks = [make_task(1), make_task(2, parent_id=1), make_task(3), make_task(4, parent_id=1)]
    assert find_task(tasks, 3).id == 3
    assert find_task(tasks, 99) is None
    assert index_of(tasks, 4) == 3
    assert index_of(tasks, 99) is None
    assert [task.id for task in children_of(tasks, 1)] == [2, 4]
