"""Persistent, git-synchronized task repository."""
from taskrepo.config import TaskConfig, load_config, resolve_project_root
from taskrepo.errors import (
    AmbiguousMatch,
    ConfigError,
    CorruptStore,
    LockTimeout,
    ParentNotFound,
    SizeLimitExceeded,
    SyncConflict,
    SyncError,
    TaskNotFound,
    TaskRepoError,
    ValidationError,
)
from taskrepo.lock import TaskLock, with_lock
from taskrepo.logger import event_timer, log_event
from taskrepo.models import (
    ExecutionState,
    Relation,
    RelationType,
    SessionEvent,
    SessionEventType,
    Task,
    TaskStatus,
    TaskType,
)
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
from taskrepo.persistence import read_tasks, write_tasks
from taskrepo.repository import TaskRepository
from taskrepo.validation import explain_task, is_valid_task, validate_task

__all__ = [
    "Task",
    "TaskStatus",
    "TaskType",
    "Relation",
    "RelationType",
    "SessionEvent",
    "SessionEventType",
    "ExecutionState",
    "read_tasks",
    "write_tasks",
    "validate_task",
    "is_valid_task",
    "explain_task",
    "add_task",
    "update_task",
    "complete_task",
    "delete_task",
    "reopen_task",
    "select_tasks",
    "OperationResult",
    "SelectResult",
    "TaskRepository",
    "TaskConfig",
    "load_config",
    "resolve_project_root",
    "TaskLock",
    "with_lock",
    "log_event",
    "event_timer",
    "TaskRepoError",
    "ValidationError",
    "TaskNotFound",
    "ParentNotFound",
    "AmbiguousMatch",
    "SizeLimitExceeded",
    "LockTimeout",
    "SyncError",
    "SyncConflict",
    "CorruptStore",
    "ConfigError",
]
