"""Schema validation with human-readable diagnostics.

Two APIs over each model: a boolean predicate to fail fast, and an explainer
that lists every violated constraint so callers can render actionable errors.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from taskrepo.errors import ValidationError
from taskrepo.models import Relation, RelationType, SessionEvent, SessionEventType, Task, TaskStatus, TaskType

M = TypeVar("M", bound=BaseModel)

_ENUM_FIELDS: Dict[str, Type[Enum]] = {
    "status": TaskStatus,
    "type": TaskType,
    "as_type": RelationType,
    "event_type": SessionEventType,
}


def format_field_path(loc: Sequence[Any]) -> str:
    """Render a pydantic error location as ``relations[0].as_type``."""
    if not loc:
        return "record"
    rendered = ""
    for element in loc:
        if isinstance(element, int):
            rendered += f"[{element}]"
        else:
            rendered += f".{element}" if rendered else str(element)
    return rendered


def _last_name(loc: Sequence[Any]) -> Optional[str]:
    for element in reversed(loc):
        if isinstance(element, str):
            return element
    return None


def _describe(error: Mapping[str, Any]) -> str:
    loc = error.get("loc", ())
    field_name = format_field_path(loc)
    kind = error.get("type", "")
    value = error.get("input")

    if kind == "missing":
        return f"missing required field: {field_name}"
    if kind == "enum":
        enum_cls = _ENUM_FIELDS.get(_last_name(loc) or "")
        allowed = ", ".join(repr(member.value) for member in enum_cls) if enum_cls else "?"
        return f"{field_name} has invalid value {value!r} (expected one of: {allowed})"
    if kind.endswith("_type") or kind.endswith("_parsing"):
        return f"{field_name} has invalid type (got: {value!r}, expected: {kind.split('_')[0]})"
    if kind == "extra_forbidden":
        return f"unexpected field: {field_name}"
    return f"{field_name} failed validation: {error.get('msg', kind)}"


def diagnostics_from_error(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    diagnostics = []
    for error in exc.errors(include_url=False):
        loc = tuple(error.get("loc", ()))
        diagnostics.append(
            {
                "field": format_field_path(loc),
                "type": error.get("type"),
                "message": _describe(error),
                "value": error.get("input") if error.get("type") != "missing" else None,
            }
        )
    return diagnostics


def format_diagnostics(diagnostics: Sequence[Mapping[str, Any]]) -> str:
    """Join diagnostics into a single ``; ``-separated message."""
    return "; ".join(str(d.get("message")) for d in diagnostics)


def _explain(model: Type[M], data: Any, label: str) -> Optional[List[Dict[str, Any]]]:
    if data is None:
        return [{"field": label, "type": "missing", "message": f"{label} is required", "value": None}]
    if isinstance(data, model):
        return None
    if isinstance(data, Mapping) and not data:
        return [{"field": label, "type": "empty", "message": f"{label} must not be empty", "value": {}}]
    if not isinstance(data, Mapping):
        return [
            {
                "field": label,
                "type": "dict_type",
                "message": f"{label} must be an object, got {type(data).__name__}",
                "value": data,
            }
        ]
    try:
        model.model_validate(dict(data))
    except PydanticValidationError as exc:
        return diagnostics_from_error(exc)
    return None


def _validate(model: Type[M], data: Any, label: str) -> M:
    if isinstance(data, model):
        return data
    diagnostics = _explain(model, data, label)
    if diagnostics:
        raise ValidationError(f"Invalid {label}: {format_diagnostics(diagnostics)}", diagnostics)
    return model.model_validate(dict(data))


def explain_task(data: Any) -> Optional[List[Dict[str, Any]]]:
    """Explain why a task payload is invalid.

    Returns:
        One diagnostic per violated constraint, or None if the payload is valid
    """
    return _explain(Task, data, "task")


def is_valid_task(data: Any) -> bool:
    return explain_task(data) is None


def validate_task(data: Any) -> Task:
    """Validate a task payload and return the parsed Task.

    Raises:
        ValidationError: With field-level diagnostics if the payload is invalid
    """
    return _validate(Task, data, "task")


def explain_relation(data: Any) -> Optional[List[Dict[str, Any]]]:
    return _explain(Relation, data, "relation")


def is_valid_relation(data: Any) -> bool:
    return explain_relation(data) is None


def validate_relation(data: Any) -> Relation:
    return _validate(Relation, data, "relation")


def explain_session_event(data: Any) -> Optional[List[Dict[str, Any]]]:
    return _explain(SessionEvent, data, "session event")


def is_valid_session_event(data: Any) -> bool:
    return explain_session_event(data) is None


def validate_session_event(data: Any) -> SessionEvent:
    return _validate(SessionEvent, data, "session event")


__all__ = [
    "explain_relation",
    "explain_session_event",
    "explain_task",
    "format_diagnostics",
    "format_field_path",
    "is_valid_relation",
    "is_valid_session_event",
    "is_valid_task",
    "validate_relation",
    "validate_session_event",
    "validate_task",
]
