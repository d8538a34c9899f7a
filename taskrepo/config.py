"""Project root discovery and configuration for the task repository.

Configuration lives in ``.taskrepo.json`` at the project root:

    {
      "tasks_dir": ".tasks",
      "use_git": true,
      "lock_timeout_ms": 30000
    }

Every key is optional. ``TASKREPO_PROJECT_DIR`` overrides root discovery.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from taskrepo.errors import ConfigError
from taskrepo.lock import lock_path_for
from taskrepo.persistence import ARCHIVE_FILENAME, TASKS_FILENAME

CONFIG_FILENAME = ".taskrepo.json"
DEFAULT_TASKS_DIR = ".tasks"
DEFAULT_LOCK_TIMEOUT_MS = 30_000
EXECUTION_STATE_FILENAME = ".taskrepo-current.json"


@dataclass(frozen=True)
class TaskConfig:
    """Resolved configuration for one project.

    Attributes:
        base_dir: Project root (directory holding the config file)
        tasks_dir: Absolute directory holding the task stores
        use_git: Whether tasks_dir is synchronized through git
        lock_timeout_ms: Bounded wait for the project lock
    """

    base_dir: Path
    tasks_dir: Path
    use_git: bool = False
    lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS

    @property
    def tasks_file(self) -> Path:
        return self.tasks_dir / TASKS_FILENAME

    @property
    def archive_file(self) -> Path:
        return self.tasks_dir / ARCHIVE_FILENAME

    @property
    def lock_path(self) -> Path:
        return lock_path_for(self.tasks_dir)

    @property
    def lock_timeout(self) -> float:
        return self.lock_timeout_ms / 1000.0

    @property
    def execution_state_file(self) -> Path:
        return self.base_dir / EXECUTION_STATE_FILENAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_dir": str(self.base_dir),
            "tasks_dir": str(self.tasks_dir),
            "use_git": self.use_git,
            "lock_timeout_ms": self.lock_timeout_ms,
        }


def find_config_file(start_dir: Path | str | None = None) -> Optional[Path]:
    """Walk up from ``start_dir`` (default cwd) looking for the config file."""
    current = Path(start_dir or Path.cwd()).expanduser().resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def resolve_project_root(start_dir: Path | str | None = None) -> Path:
    """Locate the project root from TASKREPO_PROJECT_DIR or the filesystem.

    Falls back to ``start_dir`` (or cwd) when no config file exists, which
    is a valid unconfigured project.
    """
    env_root = os.environ.get("TASKREPO_PROJECT_DIR")
    if env_root:
        return Path(env_root).expanduser().resolve()
    config_file = find_config_file(start_dir)
    if config_file is not None:
        return config_file.parent
    return Path(start_dir or Path.cwd()).expanduser().resolve()


def validate_config(raw: Any) -> Dict[str, Any]:
    """Check config value types.

    Raises:
        ConfigError: Naming the offending key
    """
    if not isinstance(raw, dict):
        raise ConfigError("Config must be a JSON object", value=repr(raw))

    tasks_dir = raw.get("tasks_dir")
    if tasks_dir is not None and not isinstance(tasks_dir, str):
        raise ConfigError(f"Expected string for tasks_dir, got {type(tasks_dir).__name__}", key="tasks_dir")

    use_git = raw.get("use_git")
    if use_git is not None and not isinstance(use_git, bool):
        raise ConfigError(f"Expected boolean for use_git, got {type(use_git).__name__}", key="use_git")

    timeout = raw.get("lock_timeout_ms")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, int):
            raise ConfigError(
                f"Expected integer for lock_timeout_ms, got {type(timeout).__name__}", key="lock_timeout_ms"
            )
        if timeout <= 0:
            raise ConfigError("Value for lock_timeout_ms must be positive", key="lock_timeout_ms", value=timeout)
    return raw


def read_config(config_file: Path) -> Dict[str, Any]:
    try:
        raw = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse {config_file}: {exc.msg}", file=str(config_file)) from exc
    return validate_config(raw)


def resolve_tasks_dir(base_dir: Path, raw: Dict[str, Any]) -> Path:
    """Resolve ``tasks_dir`` against the project root.

    An explicitly configured directory must exist; the default one is
    created lazily on first write.
    """
    configured = raw.get("tasks_dir")
    candidate = Path(configured or DEFAULT_TASKS_DIR).expanduser()
    resolved = candidate if candidate.is_absolute() else base_dir / candidate
    if configured is not None and not resolved.exists():
        raise ConfigError(
            f"Configured tasks_dir does not exist: {configured} (resolved to {resolved}; "
            "relative paths are resolved from the config file directory, not the cwd)",
            key="tasks_dir",
            value=configured,
            resolved_path=str(resolved),
        )
    return resolved.resolve()


def load_config(start_dir: Path | str | None = None) -> TaskConfig:
    """Discover and resolve the project configuration.

    ``use_git`` defaults to whether the tasks directory is itself a git
    repository.
    """
    base_dir = resolve_project_root(start_dir)
    config_file = base_dir / CONFIG_FILENAME
    raw = read_config(config_file) if config_file.is_file() else {}

    tasks_dir = resolve_tasks_dir(base_dir, raw)
    use_git = raw.get("use_git")
    if use_git is None:
        use_git = (tasks_dir / ".git").exists()
    lock_timeout_ms = raw.get("lock_timeout_ms")
    if lock_timeout_ms is None:
        lock_timeout_ms = DEFAULT_LOCK_TIMEOUT_MS

    return TaskConfig(
        base_dir=base_dir,
        tasks_dir=tasks_dir,
        use_git=use_git,
        lock_timeout_ms=lock_timeout_ms,
    )


__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_LOCK_TIMEOUT_MS",
    "DEFAULT_TASKS_DIR",
    "EXECUTION_STATE_FILENAME",
    "TaskConfig",
    "find_config_file",
    "load_config",
    "read_config",
    "resolve_project_root",
    "resolve_tasks_dir",
    "validate_config",
]
