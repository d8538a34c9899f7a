"""Repository facade tying config, lock, sync, operations and commit together.

Every mutation follows the same sequence:

    with TaskLock:
        sync_and_resolve_path()   # pull remote history
        <operation>               # read, validate, write
    commit_task_changes()         # only when use_git, after the lock is released

Reads (``select``) do not take the lock and may observe stale data.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from taskrepo import execution_state
from taskrepo.config import TaskConfig, load_config
from taskrepo.git_sync import CommitResult, commit_task_changes, sync_and_resolve_path
from taskrepo.lock import TaskLock
from taskrepo.logger import event_timer, log_event
from taskrepo.models import ExecutionState
from taskrepo.operations import (
    OperationResult,
    SelectResult,
    add_task,
    complete_task,
    delete_task,
    reopen_task,
    select_tasks,
    update_task,
)

COMPONENT = "repository"


class TaskRepository:
    """Task operations for one project, serialized through its lock."""

    def __init__(self, config: TaskConfig) -> None:
        self.config = config

    @classmethod
    def discover(cls, start_dir: Path | str | None = None) -> "TaskRepository":
        return cls(load_config(start_dir))

    def _lock(self) -> TaskLock:
        return TaskLock(self.config.lock_path, timeout=self.config.lock_timeout)

    def _mutate(self, operation: str, apply: Callable[[Path], OperationResult]) -> OperationResult:
        with event_timer(event=operation, component=COMPONENT, tasks_dir=str(self.config.tasks_dir)) as finalize:
            with self._lock():
                tasks_file = sync_and_resolve_path(self.config)
                result = apply(tasks_file)
            finalize({"task_id": result.task.id})

        if self.config.use_git:
            git_result = self._commit(result)
            result = result.with_git_result(git_result)
        return result

    def _commit(self, result: OperationResult) -> CommitResult:
        git_result = commit_task_changes(self.config.tasks_dir, result.modified_files, result.commit_message)
        if git_result.success:
            log_event(
                event="git_commit",
                component=COMPONENT,
                task_id=result.task.id,
                commit_sha=git_result.commit_sha,
            )
        else:
            log_event(
                event="git_commit_failed",
                component=COMPONENT,
                level="warn",
                task_id=result.task.id,
                error=git_result.error,
            )
        return git_result

    def add(
        self,
        category: str,
        title: str,
        description: str = "",
        parent_id: Optional[int] = None,
        prepend: bool = False,
        type: str = "task",
        relations: Optional[list] = None,
        design: str = "",
    ) -> OperationResult:
        return self._mutate(
            "add_task",
            lambda tasks_file: add_task(
                tasks_file,
                self.config.archive_file,
                category,
                title,
                description=description,
                parent_id=parent_id,
                prepend=prepend,
                type=type,
                relations=relations,
                design=design,
            ),
        )

    def update(self, task_id: int, **fields: Any) -> OperationResult:
        return self._mutate(
            "update_task",
            lambda tasks_file: update_task(
                tasks_file, self.config.archive_file, self.config.base_dir, task_id, **fields
            ),
        )

    def complete(
        self,
        task_id: Optional[int] = None,
        title: Optional[str] = None,
        completion_comment: Optional[str] = None,
    ) -> OperationResult:
        return self._mutate(
            "complete_task",
            lambda tasks_file: complete_task(
                tasks_file,
                self.config.archive_file,
                task_id=task_id,
                title=title,
                completion_comment=completion_comment,
                base_dir=self.config.base_dir,
            ),
        )

    def delete(self, task_id: Optional[int] = None, title: Optional[str] = None) -> OperationResult:
        return self._mutate(
            "delete_task",
            lambda tasks_file: delete_task(tasks_file, self.config.archive_file, task_id=task_id, title=title),
        )

    def reopen(self, task_id: Optional[int] = None, title: Optional[str] = None) -> OperationResult:
        return self._mutate(
            "reopen_task",
            lambda tasks_file: reopen_task(tasks_file, self.config.archive_file, task_id=task_id, title=title),
        )

    def select(self, **filters: Any) -> SelectResult:
        with event_timer(event="select_tasks", component=COMPONENT, level="debug") as finalize:
            result = select_tasks(self.config.tasks_file, self.config.archive_file, **filters)
            finalize({"total_matches": result.total_matches})
        return result

    def read_execution_state(self) -> Optional[ExecutionState]:
        return execution_state.read_execution_state(self.config.base_dir)

    def write_execution_state(self, state: Union[ExecutionState, Mapping[str, Any]]) -> Path:
        path = execution_state.write_execution_state(self.config.base_dir, state)
        log_event(event="execution_state_written", component=COMPONENT, path=str(path))
        return path

    def clear_execution_state(self) -> bool:
        cleared = execution_state.clear_execution_state(self.config.base_dir)
        if cleared:
            log_event(event="execution_state_cleared", component=COMPONENT)
        return cleared


__all__ = ["TaskRepository"]
