"""Record codec for the active and archive task stores.

Each store is a JSON Lines file: one compact JSON object per task, in list
order. Writes replace the whole file atomically (temp file + rename); there
is no append path at this layer.
"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List

from pydantic import ValidationError as PydanticValidationError

from taskrepo.errors import CorruptStore
from taskrepo.models import Task
from taskrepo.validation import diagnostics_from_error, format_diagnostics

TASKS_FILENAME = "tasks.jsonl"
ARCHIVE_FILENAME = "complete.jsonl"


def dump_task(task: Task) -> str:
    """Encode a single task as one line of JSON (without the newline)."""
    return json.dumps(task.to_dict(), ensure_ascii=False, separators=(",", ":"))


def load_task(line: str) -> Task:
    """Decode a single record line.

    Raises:
        json.JSONDecodeError: If the line is not JSON
        ValueError: If the line is not a JSON object
        pydantic.ValidationError: If the object is not a valid task
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"record must be a JSON object, got {type(data).__name__}")
    return Task.from_dict(data)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write text to path atomically (temp file + fsync + rename)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=".tmp_tasks_",
        suffix=target.suffix or ".jsonl",
        text=True,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())

        os.replace(temp_path, target)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def read_tasks(path: Path | str) -> List[Task]:
    """Read every task from a store file, preserving order.

    Missing files read as an empty list. Blank lines are ignored. Any other
    unreadable line fails the whole read.

    Raises:
        CorruptStore: If the file cannot be decoded or a line is not a valid
            task record
    """
    target = Path(path)
    if not target.exists():
        return []

    try:
        with target.open("r", encoding="utf-8") as handle:
            content = handle.read()
    except (UnicodeDecodeError, OSError) as exc:
        raise CorruptStore(f"Unreadable store {target}: {exc}", file=str(target)) from exc

    tasks: List[Task] = []
    # splitlines() would also break on U+2028 inside unescaped record strings.
    for line_number, line in enumerate(content.split("\n"), start=1):
        if not line.strip():
            continue
        try:
            tasks.append(load_task(line))
        except json.JSONDecodeError as exc:
            raise CorruptStore(
                f"Malformed JSON at {target}:{line_number}: {exc.msg}",
                file=str(target),
                line=line_number,
            ) from exc
        except PydanticValidationError as exc:
            diagnostics = diagnostics_from_error(exc)
            raise CorruptStore(
                f"Invalid task at {target}:{line_number}: {format_diagnostics(diagnostics)}",
                file=str(target),
                line=line_number,
                diagnostics=diagnostics,
            ) from exc
        except ValueError as exc:
            raise CorruptStore(
                f"Invalid record at {target}:{line_number}: {exc}",
                file=str(target),
                line=line_number,
            ) from exc
    return tasks


def write_tasks(path: Path | str, tasks: Iterable[Task]) -> Path:
    """Replace a store file with the given tasks, one per line.

    Returns:
        The path written
    """
    target = Path(path)
    content = "".join(f"{dump_task(task)}\n" for task in tasks)
    _atomic_write_text(target, content)
    return target


def read_json_object(path: Path) -> Dict[str, Any] | None:
    """Load a single JSON object file, or None when the file is absent."""
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return data


def write_json_object(path: Path, payload: Dict[str, Any]) -> None:
    """Write a single JSON object atomically."""
    _atomic_write_text(path, json.dumps(payload, indent=2, sort_keys=True) + "\n")


__all__ = [
    "ARCHIVE_FILENAME",
    "TASKS_FILENAME",
    "dump_task",
    "load_task",
    "read_json_object",
    "read_tasks",
    "write_json_object",
    "write_tasks",
]
