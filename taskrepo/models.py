"""Data models for task repository records.

This module defines the pydantic models persisted in the active and archive
stores plus the execution-state side channel.

Design principles:
- Frozen instances (frozen=True); produce updated records by validating a new
  payload, never by assigning attributes
- Optional collections (shared_context, session_events) normalized to empty
  lists at the read boundary so older records load unchanged
- meta keys and values coerced to strings before validation
- Integers and strings are strict: "5" is not an id and True is not an int
- to_dict/from_dict helpers for JSON serialization with deterministic key order

Critical: frozen=True alone does NOT prevent mutation of nested collections.
Treat lists and dicts on a Task as read-only.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

SHARED_CONTEXT_LIMIT_BYTES = 50 * 1024

# Omitted from the serialized record when empty so records written before these
# fields existed round-trip byte for byte.
OPTIONAL_COLLECTIONS = ("shared_context", "session_events")
OPTIONAL_FIELDS = ("parent_id", "code_reviewed", "pr_num")


class TaskStatus(str, Enum):
    """Task lifecycle states.

    Attributes:
        OPEN: Not started
        IN_PROGRESS: Being worked on
        BLOCKED: Waiting on another task
        CLOSED: Completed and archived
        DELETED: Removed and archived
    """

    OPEN = "open"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    CLOSED = "closed"
    DELETED = "deleted"


class TaskType(str, Enum):
    TASK = "task"
    BUG = "bug"
    FEATURE = "feature"
    STORY = "story"
    CHORE = "chore"


class RelationType(str, Enum):
    BLOCKED_BY = "blocked-by"
    RELATED = "related"
    DISCOVERED_DURING = "discovered-during"


class SessionEventType(str, Enum):
    USER_PROMPT = "user-prompt"
    COMPACTION = "compaction"
    SESSION_START = "session-start"


# Statuses that still count as outstanding work for parent/child checks.
BLOCKING_STATUSES = frozenset({TaskStatus.OPEN, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED})

# Statuses that only occur on archived records.
ARCHIVED_STATUSES = frozenset({TaskStatus.CLOSED, TaskStatus.DELETED})


class Relation(BaseModel):
    """Typed edge from the owning task to another task.

    ``relates_to`` is not checked for existence; relations may point at
    archived tasks or tasks outside the current store.

    Attributes:
        id: Caller-assigned relation identifier (not globally unique)
        relates_to: Id of the related task
        as_type: Kind of relationship
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: StrictInt
    relates_to: StrictInt
    as_type: RelationType


class SessionEvent(BaseModel):
    """Timestamped occurrence recorded on a story during execution.

    Attributes:
        timestamp: ISO 8601 timestamp of the event
        event_type: Kind of event
        content: Prompt text (user-prompt events)
        trigger: What caused the event (compaction/session-start events)
        session_id: Agent session identifier (session-start events)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: StrictStr
    event_type: SessionEventType
    content: Optional[StrictStr] = None
    trigger: Optional[StrictStr] = None
    session_id: Optional[StrictStr] = None


class Task(BaseModel):
    """A work item stored in the active or archive store.

    Unknown keys are kept as extra fields and written back after the known
    ones, so records produced by newer tooling survive a rewrite.

    Attributes:
        id: Positive identifier, unique across active and archive stores
        parent_id: Id of the owning story (None when top level)
        status: Lifecycle state
        title: Short human-readable title
        description: Free-form description (may be empty)
        design: Design notes (may be empty)
        category: Prompt template governing execution (non-blank)
        type: Kind of work item
        meta: Caller-defined string flags
        relations: Ordered typed edges to other tasks
        shared_context: Append-only notes shared with a story's children
        session_events: Append-only audit trail of a story's execution
        code_reviewed: Timestamp of the last code review
        pr_num: Pull request number
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: StrictInt = Field(gt=0)
    parent_id: Optional[StrictInt] = None
    status: TaskStatus
    title: StrictStr
    description: StrictStr = ""
    design: StrictStr = ""
    category: StrictStr
    type: TaskType
    meta: Dict[StrictStr, StrictStr] = Field(default_factory=dict)
    relations: List[Relation] = Field(default_factory=list)
    shared_context: List[StrictStr] = Field(default_factory=list)
    session_events: List[SessionEvent] = Field(default_factory=list)
    code_reviewed: Optional[StrictStr] = None
    pr_num: Optional[StrictInt] = None

    @field_validator("meta", mode="before")
    @classmethod
    def _coerce_meta(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @field_validator("relations", "shared_context", "session_events", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("category")
    @classmethod
    def _category_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("category must not be blank")
        return value

    @property
    def is_story(self) -> bool:
        return self.type == TaskType.STORY

    def to_dict(self) -> Dict[str, Any]:
        """Convert task to dict for JSON serialization.

        None-valued optional fields and empty optional collections are
        omitted. Unknown keys are kept as read, null values included.

        Returns:
            Dictionary with keys in field declaration order, extras last
        """
        data = self.model_dump(mode="json")
        data["session_events"] = [event.model_dump(mode="json", exclude_none=True) for event in self.session_events]
        for key in OPTIONAL_FIELDS:
            if data.get(key) is None:
                data.pop(key, None)
        for key in OPTIONAL_COLLECTIONS:
            if not data.get(key):
                data.pop(key, None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Reconstruct a task from dict.

        Args:
            data: Dictionary containing task fields

        Returns:
            Task instance

        Raises:
            pydantic.ValidationError: If the payload violates the schema
        """
        return cls.model_validate(data)


class ExecutionState(BaseModel):
    """The task an agent is currently executing.

    Attributes:
        task_id: Id of the running task
        story_id: Id of the story the task belongs to (None for standalone tasks)
        task_start_time: ISO 8601 timestamp when execution started
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    task_id: StrictInt
    story_id: Optional[StrictInt] = None
    task_start_time: StrictStr

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionState":
        return cls.model_validate(data)


__all__ = [
    "ARCHIVED_STATUSES",
    "BLOCKING_STATUSES",
    "ExecutionState",
    "OPTIONAL_COLLECTIONS",
    "OPTIONAL_FIELDS",
    "Relation",
    "RelationType",
    "SHARED_CONTEXT_LIMIT_BYTES",
    "SessionEvent",
    "SessionEventType",
    "Task",
    "TaskStatus",
    "TaskType",
]
