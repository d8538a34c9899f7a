"""Error taxonomy for task repository operations.

Every error carries an ``error_type`` string and a metadata mapping so the
protocol layer can render it without inspecting the exception class.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional


class TaskRepoError(RuntimeError):
    """Base class for all structured repository failures."""

    error_type = "error"

    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message)
        self.message = message
        self.metadata: Dict[str, Any] = {k: v for k, v in metadata.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_type": self.error_type,
            "metadata": dict(self.metadata),
        }


class ValidationError(TaskRepoError):
    """Raised when a record or request violates the task schema."""

    error_type = "validation"

    def __init__(
        self,
        message: str,
        diagnostics: Optional[List[Mapping[str, Any]]] = None,
        **metadata: Any,
    ) -> None:
        super().__init__(message, **metadata)
        self.diagnostics: List[Dict[str, Any]] = [dict(d) for d in diagnostics or ()]

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.diagnostics:
            payload["diagnostics"] = list(self.diagnostics)
        return payload


class TaskNotFound(TaskRepoError):
    error_type = "task-not-found"


class ParentNotFound(TaskRepoError):
    error_type = "parent-not-found"


class AmbiguousMatch(TaskRepoError):
    """Raised when a lookup that needs exactly one task matches several."""

    error_type = "ambiguous-match"


class SizeLimitExceeded(TaskRepoError):
    error_type = "size-limit-exceeded"

    def __init__(self, message: str, *, size_bytes: int, limit_bytes: int, **metadata: Any) -> None:
        super().__init__(message, size_bytes=size_bytes, limit_bytes=limit_bytes, **metadata)
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class LockTimeout(TaskRepoError):
    """Raised when the project lock cannot be acquired within the bounded wait."""

    error_type = "lock-timeout"


class SyncError(TaskRepoError):
    """Raised when pulling remote history fails.

    ``error_type`` is set per instance: ``network`` or ``other``.
    """

    error_type = "other"

    def __init__(self, message: str, *, error_type: Optional[str] = None, details: str = "", **metadata: Any) -> None:
        super().__init__(message, error_details=details or None, **metadata)
        if error_type:
            self.error_type = error_type
        self.details = details


class SyncConflict(SyncError):
    """Raised when the pull diverged or conflicted with local history."""

    error_type = "merge-conflict"


class CorruptStore(TaskRepoError):
    """Raised when a record file cannot be parsed."""

    error_type = "corrupt-store"


class ConfigError(TaskRepoError):
    error_type = "invalid-config"


__all__ = [
    "AmbiguousMatch",
    "ConfigError",
    "CorruptStore",
    "LockTimeout",
    "ParentNotFound",
    "SizeLimitExceeded",
    "SyncConflict",
    "SyncError",
    "TaskNotFound",
    "TaskRepoError",
    "ValidationError",
]
