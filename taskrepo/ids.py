"""Id allocation and parent/child lookups across the active and archive stores."""
from __future__ import annotations

from itertools import chain
from typing import Iterable, List, Optional, Sequence

from taskrepo.errors import ParentNotFound
from taskrepo.models import Task


def next_id(active: Iterable[Task], archive: Iterable[Task]) -> int:
    """Return one more than the highest id in either store.

    Archived ids count too, so an id is never handed out twice even after
    every active task has been completed.
    """
    return 1 + max((task.id for task in chain(active, archive)), default=0)


def find_task(tasks: Iterable[Task], task_id: int) -> Optional[Task]:
    for task in tasks:
        if task.id == task_id:
            return task
    return None


def index_of(tasks: Sequence[Task], task_id: int) -> Optional[int]:
    for idx, task in enumerate(tasks):
        if task.id == task_id:
            return idx
    return None


def children_of(tasks: Iterable[Task], parent_id: int) -> List[Task]:
    return [task for task in tasks if task.parent_id == parent_id]


def validate_parent(parent_id: int, active: Iterable[Task], archive: Iterable[Task]) -> Task:
    """Ensure ``parent_id`` names a task in either store.

    A parent may already be completed, so the archive is searched as well.

    Returns:
        The parent task

    Raises:
        ParentNotFound: If no task with that id exists
    """
    parent = find_task(chain(active, archive), parent_id)
    if parent is None:
        raise ParentNotFound(f"Parent task not found: {parent_id}", parent_id=parent_id)
    return parent


__all__ = ["children_of", "find_task", "index_of", "next_id", "validate_parent"]
