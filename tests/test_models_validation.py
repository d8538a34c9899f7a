"""
Tests for the task record schema and its diagnostics.

Covers strict typing, enum closure, normalization of optional collections,
forward-compatible extra keys, and the explain/validate helpers.
"""

from __future__ import annotations

import pytest

from taskrepo.errors import ValidationError
from taskrepo.models import ExecutionState, Task, TaskStatus, TaskType
from taskrepo.validation import (
    explain_relation,
    explain_session_event,
    explain_task,
    format_diagnostics,
    format_field_path,
    is_valid_relation,
    is_valid_session_event,
    is_valid_task,
    validate_relation,
    validate_session_event,
    validate_task,
)


def minimal_task(**overrides):
    data = {
        "id": 1,
        "status": "open",
        "title": "Write docs",
        "category": "simple",
        "type": "task",
    }
    data.update(overrides)
    return data


class TestTaskModel:
    def test_defaults_are_filled(self):
        task = validate_task(minimal_task())
        assert task.description == ""
        assert task.design == ""
        assert task.meta == {}
        assert task.relations == []
        assert task.shared_context == []
        assert task.session_events == []
        assert task.parent_id is None
        assert task.status is TaskStatus.OPEN
        assert task.type is TaskType.TASK

    def test_null_collections_normalize_to_empty(self):
        task = validate_task(minimal_task(shared_context=None, session_events=None, relations=None, meta=None))
        assert task.shared_context == []
        assert task.session_events == []
        assert task.relations == []
        assert task.meta == {}

    def test_meta_coerced_to_strings(self):
        task = validate_task(minimal_task(meta={"priority": 1, 2: True}))
        assert task.meta == {"priority": "1", "2": "True"}

    def test_string_id_is_rejected(self):
        assert not is_valid_task(minimal_task(id="5"))

    def test_boolean_id_is_rejected(self):
        assert not is_valid_task(minimal_task(id=True))

    def test_non_positive_id_is_rejected(self):
        assert not is_valid_task(minimal_task(id=0))

    def test_blank_category_is_rejected(self):
        assert not is_valid_task(minimal_task(category="   "))

    def test_unknown_keys_survive_serialization(self):
        task = validate_task(minimal_task(future_field={"nested": [1, 2]}))
        data = task.to_dict()
        assert data["future_field"] == {"nested": [1, 2]}
        assert list(data)[-1] == "future_field"

    def test_to_dict_omits_empty_optionals(self):
        data = validate_task(minimal_task()).to_dict()
        assert "shared_context" not in data
        assert "session_events" not in data
        assert "parent_id" not in data
        assert "code_reviewed" not in data
        assert data["meta"] == {}
        assert data["relations"] == []

    def test_story_flag(self):
        assert validate_task(minimal_task(type="story")).is_story
        assert not validate_task(minimal_task()).is_story

    def test_task_is_frozen(self):
        task = validate_task(minimal_task())
        with pytest.raises(Exception):
            task.title = "changed"  # type: ignore[misc]


class TestExplainTask:
    def test_valid_task_has_no_diagnostics(self):
        assert explain_task(minimal_task()) is None

    def test_none_and_empty_are_rejected(self):
        assert explain_task(None)[0]["type"] == "missing"
        assert explain_task({})[0]["type"] == "empty"
        assert not is_valid_task(None)
        assert not is_valid_task({})

    def test_non_mapping_is_rejected(self):
        diagnostics = explain_task(["not", "a", "task"])
        assert diagnostics[0]["type"] == "dict_type"

    def test_missing_field_message(self):
        data = minimal_task()
        del data["title"]
        diagnostics = explain_task(data)
        assert [d["message"] for d in diagnostics] == ["missing required field: title"]

    def test_invalid_enum_message_lists_allowed_values(self):
        diagnostics = explain_task(minimal_task(status="done"))
        assert len(diagnostics) == 1
        message = diagnostics[0]["message"]
        assert message.startswith("status has invalid value 'done' (expected one of:")
        assert "'in-progress'" in message

    def test_nested_relation_path(self):
        relations = [{"id": 1, "relates_to": 2, "as_type": "duplicates"}]
        diagnostics = explain_task(minimal_task(relations=relations))
        assert diagnostics[0]["field"] == "relations[0].as_type"
        assert "relations[0].as_type has invalid value 'duplicates'" in diagnostics[0]["message"]

    def test_every_violation_reported(self):
        diagnostics = explain_task(minimal_task(id="1", type="epic"))
        fields = {d["field"] for d in diagnostics}
        assert fields == {"id", "type"}

    def test_validate_task_raises_with_diagnostics(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_task(minimal_task(status="done"))
        err = excinfo.value
        assert err.error_type == "validation"
        assert err.diagnostics[0]["field"] == "status"
        payload = err.to_dict()
        assert payload["diagnostics"] == err.diagnostics
        assert "Invalid task" in payload["error"]

    def test_format_diagnostics_joins_messages(self):
        diagnostics = [{"message": "a"}, {"message": "b"}]
        assert format_diagnostics(diagnostics) == "a; b"

    def test_format_field_path(self):
        assert format_field_path(()) == "record"
        assert format_field_path(("session_events", 2, "event_type")) == "session_events[2].event_type"


class TestRelationAndSessionEvent:
    def test_relation_round_trip(self):
        relation = validate_relation({"id": 1, "relates_to": 7, "as_type": "blocked-by"})
        assert relation.relates_to == 7
        assert is_valid_relation({"id": 2, "relates_to": 3, "as_type": "related"})

    def test_relation_rejects_extra_keys(self):
        diagnostics = explain_relation({"id": 1, "relates_to": 7, "as_type": "related", "note": "x"})
        assert diagnostics[0]["message"] == "unexpected field: note"

    def test_session_event_requires_timestamp(self):
        assert not is_valid_session_event({"event_type": "compaction"})
        diagnostics = explain_session_event({"event_type": "compaction"})
        assert diagnostics[0]["message"] == "missing required field: timestamp"

    def test_session_event_optional_fields(self):
        event = validate_session_event(
            {"timestamp": "2025-01-15T10:30:00Z", "event_type": "session-start", "session_id": "abc"}
        )
        assert event.session_id == "abc"
        assert event.content is None

    def test_invalid_event_type(self):
        with pytest.raises(ValidationError):
            validate_session_event({"timestamp": "2025-01-15T10:30:00Z", "event_type": "shutdown"})


class TestExecutionStateModel:
    def test_story_id_optional(self):
        state = ExecutionState.from_dict({"task_id": 4, "task_start_time": "2025-01-15T10:30:00Z"})
        assert state.story_id is None
        assert state.to_dict() == {"task_id": 4, "story_id": None, "task_start_time": "2025-01-15T10:30:00Z"}

    def test_task_from_dict_matches_validate(self):
        assert Task.from_dict(minimal_task()) == validate_task(minimal_task())
