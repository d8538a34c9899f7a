"""Task operations over the active and archive stores.

Each operation reads both stores, applies its change in memory, validates the
result and only then writes. Any failure raised before the write step leaves
both files byte-for-byte unchanged.

Operations take explicit file paths and do no locking or syncing of their
own; callers hold the project lock (see ``taskrepo.repository``).
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from itertools import chain
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from taskrepo.errors import (
    AmbiguousMatch,
    SizeLimitExceeded,
    TaskNotFound,
    ValidationError,
)
from taskrepo.execution_state import clear_execution_state, running_task_id
from taskrepo.ids import children_of, find_task, index_of, next_id, validate_parent
from taskrepo.models import (
    ARCHIVED_STATUSES,
    BLOCKING_STATUSES,
    SHARED_CONTEXT_LIMIT_BYTES,
    Task,
    TaskStatus,
    TaskType,
)
from taskrepo.persistence import read_tasks, write_tasks
from taskrepo.validation import validate_session_event, validate_task

UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "design",
        "parent_id",
        "status",
        "category",
        "type",
        "meta",
        "relations",
        "shared_context",
        "session_events",
        "code_reviewed",
        "pr_num",
    }
)

STATUS_ANY = "any"
COMMIT_TITLE_MAX = 50


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a mutating operation.

    Attributes:
        task: The task as written
        modified_files: Store files rewritten by the operation
        message: Human-readable summary
        commit_message: Suggested message when committing the change
        git_result: Commit outcome, attached by callers that commit
    """

    task: Task
    modified_files: List[Path]
    message: str
    commit_message: str
    git_result: Optional[Any] = None

    def with_git_result(self, git_result: Any) -> "OperationResult":
        return replace(self, git_result=git_result)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "task": self.task.to_dict(),
            "modified_files": [str(path) for path in self.modified_files],
            "message": self.message,
        }
        if self.git_result is not None:
            payload["git"] = self.git_result.to_dict()
        return payload


@dataclass(frozen=True)
class SelectResult:
    """Outcome of ``select_tasks``.

    ``parent_shared_context`` is only populated when exactly one child task
    is returned; it is derived from the parent and never stored.
    ``completed_task_count`` counts closed tasks under ``parent_id`` in both
    stores and is only set when filtering by parent.
    """

    tasks: List[Task] = field(default_factory=list)
    total_matches: int = 0
    limited: bool = False
    parent_shared_context: Optional[List[str]] = None
    completed_task_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "tasks": [task.to_dict() for task in self.tasks],
            "total_matches": self.total_matches,
            "limited": self.limited,
        }
        if self.parent_shared_context is not None:
            payload["parent_shared_context"] = list(self.parent_shared_context)
        if self.completed_task_count is not None:
            payload["completed_task_count"] = self.completed_task_count
        return payload


def truncate_title(title: str, max_length: int = COMMIT_TITLE_MAX) -> str:
    if len(title) > max_length:
        return title[: max_length - 3] + "..."
    return title


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _load(tasks_file: Path | str, archive_file: Path | str) -> Tuple[List[Task], List[Task]]:
    return read_tasks(tasks_file), read_tasks(archive_file)


def _rebuild(task: Task, **changes: Any) -> Task:
    """Return a validated copy of ``task`` with ``changes`` applied."""
    data = task.to_dict()
    data.update(changes)
    return validate_task(data)


def _serialized_size(entries: Sequence[Any]) -> int:
    return len(json.dumps(list(entries), ensure_ascii=False, separators=(",", ":")).encode("utf-8"))


def _check_size(field_name: str, entries: Sequence[Any], task_id: int) -> None:
    size = _serialized_size(entries)
    if size > SHARED_CONTEXT_LIMIT_BYTES:
        raise SizeLimitExceeded(
            f"{field_name} for task {task_id} would be {size} bytes, exceeding the "
            f"{SHARED_CONTEXT_LIMIT_BYTES // 1024}KB limit",
            size_bytes=size,
            limit_bytes=SHARED_CONTEXT_LIMIT_BYTES,
            task_id=task_id,
            field=field_name,
        )


def _lookup(
    active: Sequence[Task],
    archive: Sequence[Task],
    task_id: Optional[int],
    title: Optional[str],
) -> Tuple[Task, bool]:
    """Find one task by id and/or exact title.

    The active store is searched first; the archive only when nothing active
    matches.

    Returns:
        (task, archived) where ``archived`` tells which store held it

    Raises:
        ValidationError: Neither key given, or id and title disagree
        TaskNotFound: No match
        AmbiguousMatch: Several tasks share the title
    """
    if task_id is None and not title:
        raise ValidationError("Either task_id or title must be provided")

    for store, archived in ((active, False), (archive, True)):
        if task_id is not None:
            task = find_task(store, task_id)
            if task is None:
                continue
            if title and task.title != title:
                raise ValidationError(
                    f"Task {task_id} has title {task.title!r}, not {title!r}",
                    task_id=task_id,
                    title=title,
                )
            return task, archived

        matches = [task for task in store if task.title == title]
        if len(matches) > 1:
            raise AmbiguousMatch(
                f"Multiple tasks titled {title!r}: {', '.join(str(t.id) for t in matches)}",
                title=title,
                task_ids=[t.id for t in matches],
            )
        if matches:
            return matches[0], archived

    if task_id is not None:
        raise TaskNotFound(f"Task not found: {task_id}", task_id=task_id)
    raise TaskNotFound(f"No task titled {title!r}", title=title)


def _insert_position(active: Sequence[Task], parent_id: Optional[int], prepend: bool) -> int:
    parent_idx = index_of(active, parent_id) if parent_id is not None else None
    if parent_idx is None:
        return 0 if prepend else len(active)
    if prepend:
        return parent_idx + 1
    position = parent_idx + 1
    for idx, task in enumerate(active):
        if task.parent_id == parent_id:
            position = max(position, idx + 1)
    return position


def add_task(
    tasks_file: Path | str,
    archive_file: Path | str,
    category: str,
    title: str,
    description: str = "",
    parent_id: Optional[int] = None,
    prepend: bool = False,
    type: str = TaskType.TASK.value,
    relations: Optional[Iterable[Any]] = None,
    design: str = "",
) -> OperationResult:
    """Create a task with a freshly allocated id.

    Without a parent the task goes to the end of the active store (front
    with ``prepend``). With a parent it is placed after the parent's last
    active child, or right after the parent when it has none; ``prepend``
    places it first among the children. A parent that is only archived is
    treated as absent for placement.

    Raises:
        ParentNotFound: ``parent_id`` names no task in either store
        ValidationError: The resulting record is invalid
    """
    tasks_path = Path(tasks_file)
    active, archive = _load(tasks_path, archive_file)

    if parent_id is not None:
        validate_parent(parent_id, active, archive)

    task = validate_task(
        {
            "id": next_id(active, archive),
            "parent_id": parent_id,
            "status": TaskStatus.OPEN.value,
            "title": title,
            "description": description,
            "design": design,
            "category": category,
            "type": type,
            "meta": {},
            "relations": list(relations or []),
        }
    )

    position = _insert_position(active, parent_id, prepend)
    updated = [*active[:position], task, *active[position:]]
    write_tasks(tasks_path, updated)

    return OperationResult(
        task=task,
        modified_files=[tasks_path],
        message=f"Task {task.id} added to {tasks_path}",
        commit_message=f"Add task #{task.id}: {truncate_title(task.title)}",
    )


def _validate_code_reviewed(value: Any) -> None:
    if value is None:
        return
    expected = "ISO-8601 UTC format, e.g. 2025-01-15T10:30:00Z"
    if not isinstance(value, str):
        raise ValidationError(f"Invalid code_reviewed: expected {expected}", field="code_reviewed")
    if not value.endswith("Z"):
        raise ValidationError(
            "Invalid code_reviewed format: must use UTC timezone (Z suffix)",
            field="code_reviewed",
            value=value,
            expected=expected,
        )
    try:
        parsed = datetime.fromisoformat(value[:-1])
    except ValueError as exc:
        raise ValidationError(
            f"Invalid code_reviewed: {value!r} is not ISO-8601",
            field="code_reviewed",
            value=value,
            expected=expected,
        ) from exc
    # Date-only values and a second offset before the Z are rejected.
    if "T" not in value or parsed.tzinfo is not None:
        raise ValidationError(
            f"Invalid code_reviewed: {value!r} must be a UTC date and time",
            field="code_reviewed",
            value=value,
            expected=expected,
        )


def _shared_context_entries(value: Any, base_dir: Path | str | None) -> List[str]:
    if value is None or value == "":
        return []
    entries = [value] if isinstance(value, str) else value
    if not isinstance(entries, list) or not all(isinstance(entry, str) for entry in entries):
        raise ValidationError(
            "shared_context must be a string or a list of strings",
            field="shared_context",
        )
    running = running_task_id(base_dir)
    if running is not None:
        entries = [f"Task {running}: {entry}" for entry in entries]
    return entries


def _session_event_entries(value: Any) -> List[Dict[str, Any]]:
    if value is None:
        return []
    raw = [value] if isinstance(value, Mapping) else value
    if not isinstance(raw, list):
        raise ValidationError(
            "session_events must be an event object or a list of event objects",
            field="session_events",
        )
    events: List[Dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise ValidationError("Each session event must be an object", field="session_events")
        data = dict(item)
        if not data.get("timestamp"):
            data["timestamp"] = _utc_now()
        event = validate_session_event(data)
        events.append(event.model_dump(mode="json", exclude_none=True))
    return events


def update_task(
    tasks_file: Path | str,
    archive_file: Path | str,
    base_dir: Path | str | None,
    task_id: int,
    **fields: Any,
) -> OperationResult:
    """Update fields of an active task.

    Fields are replaced wholesale except ``shared_context`` and
    ``session_events``, which are appended to. ``parent_id``, ``meta``,
    ``relations``, ``code_reviewed`` and ``pr_num`` accept None to clear.

    Shared-context entries are prefixed with ``Task <id>: `` naming the task
    recorded in the execution state under ``base_dir``, when there is one.

    Raises:
        ValidationError: No fields, unknown fields, or an invalid result
        TaskNotFound: ``task_id`` is not in the active store
        ParentNotFound: The new parent does not exist
        SizeLimitExceeded: An appended collection would exceed 50KB
    """
    if not fields:
        raise ValidationError("No fields to update", task_id=task_id)
    unknown = sorted(set(fields) - UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown field(s) for update: {', '.join(unknown)}",
            task_id=task_id,
            fields=unknown,
        )

    tasks_path = Path(tasks_file)
    active, archive = _load(tasks_path, archive_file)
    position = index_of(active, task_id)
    if position is None:
        archived = find_task(archive, task_id) is not None
        raise TaskNotFound(
            f"Task {task_id} is archived and cannot be updated" if archived else f"Task not found: {task_id}",
            task_id=task_id,
            archived=archived or None,
        )
    task = active[position]

    changes: Dict[str, Any] = {}
    for name in ("title", "description", "design", "status", "category", "type", "pr_num"):
        if name in fields:
            changes[name] = fields[name]

    if "parent_id" in fields:
        parent_id = fields["parent_id"]
        if parent_id is not None:
            if parent_id == task_id:
                raise ValidationError("A task cannot be its own parent", task_id=task_id)
            if isinstance(parent_id, int) and not isinstance(parent_id, bool):
                validate_parent(parent_id, active, archive)
        changes["parent_id"] = parent_id

    if "meta" in fields:
        changes["meta"] = fields["meta"] if fields["meta"] is not None else {}
    if "relations" in fields:
        relations = fields["relations"]
        changes["relations"] = list(relations) if relations is not None else []

    if "code_reviewed" in fields:
        _validate_code_reviewed(fields["code_reviewed"])
        changes["code_reviewed"] = fields["code_reviewed"]

    if "shared_context" in fields:
        entries = _shared_context_entries(fields["shared_context"], base_dir)
        if entries:
            combined = [*task.shared_context, *entries]
            _check_size("shared_context", combined, task_id)
            changes["shared_context"] = combined

    if "session_events" in fields:
        events = _session_event_entries(fields["session_events"])
        if events:
            existing = [event.model_dump(mode="json", exclude_none=True) for event in task.session_events]
            combined_events = [*existing, *events]
            _check_size("session_events", combined_events, task_id)
            changes["session_events"] = combined_events

    updated_task = _rebuild(task, **changes)
    updated = list(active)
    updated[position] = updated_task
    write_tasks(tasks_path, updated)

    return OperationResult(
        task=updated_task,
        modified_files=[tasks_path],
        message=f"Task {task_id} updated in {tasks_path}",
        commit_message=f"Update task #{task_id}: {truncate_title(updated_task.title)}",
    )


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def complete_task(
    tasks_file: Path | str,
    archive_file: Path | str,
    task_id: Optional[int] = None,
    title: Optional[str] = None,
    completion_comment: Optional[str] = None,
    base_dir: Path | str | None = None,
) -> OperationResult:
    """Close a task and move it to the archive store.

    Completing a story also archives its closed children; a story with
    children still open, in progress or blocked cannot be completed. The
    execution state under ``base_dir`` is cleared afterwards.

    Raises:
        TaskNotFound: No task matches
        AmbiguousMatch: Several tasks share ``title``
        ValidationError: Already completed, or a story with unfinished children
    """
    tasks_path = Path(tasks_file)
    archive_path = Path(archive_file)
    active, archive = _load(tasks_path, archive_path)
    task, archived = _lookup(active, archive, task_id, title)

    if archived:
        raise ValidationError(
            f"Task {task.id} is already {task.status.value}",
            task_id=task.id,
            status=task.status.value,
        )

    children: List[Task] = []
    if task.is_story:
        children = children_of(active, task.id)
        unfinished = [child for child in children if child.status in BLOCKING_STATUSES]
        if unfinished:
            raise ValidationError(
                f"Cannot complete story {task.id}: {_plural(len(unfinished), 'child task')} not closed "
                f"({', '.join(str(child.id) for child in unfinished)})",
                task_id=task.id,
                unfinished_task_ids=[child.id for child in unfinished],
            )
        children = [child for child in children if child.status == TaskStatus.CLOSED]

    description = task.description
    if completion_comment and completion_comment.strip():
        description = f"{description}\n\nCompleted: {completion_comment}"
    completed = _rebuild(task, status=TaskStatus.CLOSED.value, description=description)

    moved_ids = {task.id, *(child.id for child in children)}
    write_tasks(archive_path, [*archive, completed, *children])
    write_tasks(tasks_path, [t for t in active if t.id not in moved_ids])

    if base_dir is not None:
        clear_execution_state(base_dir)

    if task.is_story:
        suffix = f" with {_plural(len(children), 'child task')}" if children else ""
        message = f"Story {task.id} completed and archived{suffix}"
        commit_suffix = f" (with {_plural(len(children), 'task')})" if children else ""
        commit_message = f"Complete story #{task.id}: {task.title}{commit_suffix}"
    else:
        message = f"Task {task.id} completed and moved to {archive_path}"
        commit_message = f"Complete task #{task.id}: {task.title}"

    return OperationResult(
        task=completed,
        modified_files=[tasks_path, archive_path],
        message=message,
        commit_message=commit_message,
    )


def delete_task(
    tasks_file: Path | str,
    archive_file: Path | str,
    task_id: Optional[int] = None,
    title: Optional[str] = None,
) -> OperationResult:
    """Mark a task deleted and move it to the archive store.

    Raises:
        TaskNotFound: No task matches
        AmbiguousMatch: Several tasks share ``title``
        ValidationError: Already archived, or unfinished children remain
    """
    tasks_path = Path(tasks_file)
    archive_path = Path(archive_file)
    active, archive = _load(tasks_path, archive_path)
    task, archived = _lookup(active, archive, task_id, title)

    if archived:
        raise ValidationError(
            f"Task {task.id} is already {task.status.value}",
            task_id=task.id,
            status=task.status.value,
        )

    unfinished = [child for child in children_of(active, task.id) if child.status in BLOCKING_STATUSES]
    if unfinished:
        raise ValidationError(
            f"Cannot delete task {task.id}: {_plural(len(unfinished), 'child task')} not closed "
            f"({', '.join(str(child.id) for child in unfinished)})",
            task_id=task.id,
            unfinished_task_ids=[child.id for child in unfinished],
        )

    deleted = _rebuild(task, status=TaskStatus.DELETED.value)
    write_tasks(archive_path, [*archive, deleted])
    write_tasks(tasks_path, [t for t in active if t.id != task.id])

    return OperationResult(
        task=deleted,
        modified_files=[tasks_path, archive_path],
        message=f"Task {task.id} deleted and moved to {archive_path}",
        commit_message=f"Delete task #{task.id}: {task.title}",
    )


def reopen_task(
    tasks_file: Path | str,
    archive_file: Path | str,
    task_id: Optional[int] = None,
    title: Optional[str] = None,
) -> OperationResult:
    """Reopen a closed task.

    An archived task is moved back to the end of the active store; a closed
    task still in the active store is reopened in place.

    Raises:
        TaskNotFound: No task matches
        AmbiguousMatch: Several tasks share ``title``
        ValidationError: The task is not closed
    """
    tasks_path = Path(tasks_file)
    archive_path = Path(archive_file)
    active, archive = _load(tasks_path, archive_path)
    task, archived = _lookup(active, archive, task_id, title)

    if task.status != TaskStatus.CLOSED:
        raise ValidationError(
            f"Task {task.id} is not closed (status: {task.status.value})",
            task_id=task.id,
            status=task.status.value,
        )

    reopened = _rebuild(task, status=TaskStatus.OPEN.value)
    if archived:
        write_tasks(tasks_path, [*active, reopened])
        write_tasks(archive_path, [t for t in archive if t.id != task.id])
        modified = [tasks_path, archive_path]
        message = f"Task {task.id} reopened and moved back to {tasks_path}"
    else:
        write_tasks(tasks_path, [reopened if t.id == task.id else t for t in active])
        modified = [tasks_path]
        message = f"Task {task.id} reopened"

    return OperationResult(
        task=reopened,
        modified_files=modified,
        message=message,
        commit_message=f"Reopen task #{task.id}: {task.title}",
    )


def _title_matcher(pattern: str) -> Callable[[str], bool]:
    try:
        compiled = re.compile(pattern)
    except re.error:
        return lambda title: pattern in title
    return lambda title: compiled.search(title) is not None


def _enum_value(name: str, value: Any, enum_type: Any) -> str:
    raw = value.value if isinstance(value, enum_type) else value
    allowed = [member.value for member in enum_type]
    if raw not in allowed:
        raise ValidationError(
            f"{name} has invalid value {raw!r} (expected one of: {', '.join(allowed)})",
            field=name,
            value=raw,
        )
    return raw


def select_tasks(
    tasks_file: Path | str,
    archive_file: Path | str,
    task_id: Optional[int] = None,
    status: Optional[str] = None,
    type: Optional[str] = None,
    parent_id: Optional[int] = None,
    category: Optional[str] = None,
    title_pattern: Optional[str] = None,
    include_archive: bool = False,
    limit: Optional[int] = None,
    unique: bool = False,
) -> SelectResult:
    """Filter tasks in store order, active store first.

    Closed tasks are excluded unless ``status`` asks for them; ``status="any"``
    disables the status filter. The archive is searched when
    ``include_archive`` is set or ``status`` is closed, deleted or any.

    Raises:
        ValidationError: Bad filter values, non-positive ``limit``, or
            ``unique`` combined with ``limit`` above 1
        AmbiguousMatch: ``unique`` and several matches
        TaskNotFound: ``unique`` with ``task_id`` and no match
    """
    if limit is not None and limit <= 0:
        raise ValidationError("limit must be a positive integer (> 0)", limit=limit)
    if unique and limit is not None and limit > 1:
        raise ValidationError("limit must be 1 when unique is set (or omit limit)", limit=limit)

    status_value = None
    if status is not None and status != STATUS_ANY:
        status_value = _enum_value("status", status, TaskStatus)
    type_value = _enum_value("type", type, TaskType) if type is not None else None

    search_archive = (
        include_archive
        or status == STATUS_ANY
        or status_value in ARCHIVED_STATUSES
    )
    active = read_tasks(tasks_file)
    archive = read_tasks(archive_file)
    candidates: Iterable[Task] = chain(active, archive) if search_archive else active
    matches_title = _title_matcher(title_pattern) if title_pattern else None

    def matches_filters(task: Task) -> bool:
        if task_id is not None and task.id != task_id:
            return False
        if type_value is not None and task.type.value != type_value:
            return False
        if parent_id is not None and task.parent_id != parent_id:
            return False
        if category is not None and task.category != category:
            return False
        return matches_title is None or matches_title(task.title)

    matches: List[Task] = []
    for task in candidates:
        if not matches_filters(task):
            continue
        if status is None:
            if task.status == TaskStatus.CLOSED:
                continue
        elif status_value is not None and task.status.value != status_value:
            continue
        matches.append(task)

    completed_count: Optional[int] = None
    if parent_id is not None:
        completed_count = sum(
            1 for task in chain(active, archive) if task.status == TaskStatus.CLOSED and matches_filters(task)
        )

    total = len(matches)
    if unique:
        if total > 1:
            raise AmbiguousMatch(
                f"Multiple tasks matched but unique was requested ({total} matches)",
                total_matches=total,
                task_ids=[task.id for task in matches],
            )
        if total == 0 and task_id is not None:
            raise TaskNotFound(f"Task not found: {task_id}", task_id=task_id)

    effective_limit = 1 if unique else limit
    selected = matches[:effective_limit] if effective_limit is not None else matches

    parent_context: Optional[List[str]] = None
    if len(selected) == 1 and selected[0].parent_id is not None:
        parent = find_task(chain(active, archive), selected[0].parent_id)
        parent_context = list(parent.shared_context) if parent is not None else []

    return SelectResult(
        tasks=selected,
        total_matches=total,
        limited=total > len(selected),
        parent_shared_context=parent_context,
        completed_task_count=completed_count,
    )


__all__ = [
    "OperationResult",
    "SelectResult",
    "UPDATABLE_FIELDS",
    "add_task",
    "complete_task",
    "delete_task",
    "reopen_task",
    "select_tasks",
    "truncate_title",
    "update_task",
]
