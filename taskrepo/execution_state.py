"""Execution-state side channel naming the task an agent is running.

The record lives in a single small JSON file next to the project config.
Its absence is a normal state (manual editing), so unreadable or invalid
files are logged and treated as absent rather than raised.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from taskrepo.config import EXECUTION_STATE_FILENAME
from taskrepo.errors import ValidationError
from taskrepo.models import ExecutionState
from taskrepo.persistence import read_json_object, write_json_object
from taskrepo.validation import diagnostics_from_error, format_diagnostics

LOGGER = logging.getLogger(__name__)


def state_file_path(base_dir: Path | str) -> Path:
    return Path(base_dir) / EXECUTION_STATE_FILENAME


def read_execution_state(base_dir: Path | str) -> Optional[ExecutionState]:
    """Return the current execution state, or None if absent or unreadable."""
    path = state_file_path(base_dir)
    try:
        data = read_json_object(path)
    except (OSError, ValueError) as exc:
        LOGGER.warning("Failed to read execution state %s: %s", path, exc)
        return None
    if data is None:
        return None
    try:
        return ExecutionState.from_dict(data)
    except PydanticValidationError as exc:
        LOGGER.warning(
            "Invalid execution state %s: %s", path, format_diagnostics(diagnostics_from_error(exc))
        )
        return None


def write_execution_state(
    base_dir: Path | str,
    state: Union[ExecutionState, Mapping[str, Any]],
) -> Path:
    """Validate and atomically write the execution state.

    Raises:
        ValidationError: If ``state`` is not a valid execution state
    """
    if not isinstance(state, ExecutionState):
        try:
            state = ExecutionState.from_dict(dict(state))
        except PydanticValidationError as exc:
            diagnostics = diagnostics_from_error(exc)
            raise ValidationError(
                f"Invalid execution state: {format_diagnostics(diagnostics)}", diagnostics
            ) from exc
    path = state_file_path(base_dir)
    write_json_object(path, state.to_dict())
    return path


def clear_execution_state(base_dir: Path | str) -> bool:
    """Remove the execution state file.

    Returns:
        True if a file was removed, False if none existed
    """
    path = state_file_path(base_dir)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def running_task_id(base_dir: Path | str | None) -> Optional[int]:
    if base_dir is None:
        return None
    state = read_execution_state(base_dir)
    return state.task_id if state else None


__all__ = [
    "clear_execution_state",
    "read_execution_state",
    "running_task_id",
    "state_file_path",
    "write_execution_state",
]
