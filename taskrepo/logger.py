"""Structured JSON-lines event log for repository operations.

Every entry is one compact JSON object with ``ts``, ``level``, ``component``
and ``event`` keys plus caller-supplied fields. Entries are mirrored to the
stdlib ``taskrepo`` logger so host applications can route them as usual.

Environment:
    TASKREPO_LOG_PATH: log file (default ~/.cache/taskrepo/taskrepo.log)
    TASKREPO_LOG_LEVEL: minimum level written (default info)
    TASKREPO_LOG_MAX_BYTES: rotate when the file reaches this size (0 disables)
    TASKREPO_LOG_MAX_BACKUPS: rotated files to keep
"""
from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, MutableMapping

LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_BACKUPS = 3

LOGGER = logging.getLogger("taskrepo")


@dataclass(frozen=True)
class LogSettings:
    path: Path
    min_level: int
    max_bytes: int
    max_backups: int


def _resolve_level_name(value: str | None) -> str:
    if not value:
        return "info"
    lowered = value.lower()
    return lowered if lowered in LOG_LEVELS else "info"


def _int_env(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(int(raw), minimum)
    except ValueError:
        return default


def resolve_log_path() -> Path:
    """Return the configured log path."""
    env_path = os.getenv("TASKREPO_LOG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".cache" / "taskrepo" / "taskrepo.log"


def current_settings() -> LogSettings:
    """Read logging settings from the environment on every call."""
    return LogSettings(
        path=resolve_log_path(),
        min_level=LOG_LEVELS[_resolve_level_name(os.getenv("TASKREPO_LOG_LEVEL", "info"))],
        max_bytes=_int_env("TASKREPO_LOG_MAX_BYTES", DEFAULT_MAX_BYTES, 0),
        max_backups=_int_env("TASKREPO_LOG_MAX_BACKUPS", DEFAULT_MAX_BACKUPS, 1),
    )


def _rotate(settings: LogSettings) -> None:
    if settings.max_bytes == 0:
        return
    log_path = settings.path
    try:
        if log_path.stat().st_size < settings.max_bytes:
            return
    except FileNotFoundError:
        return

    oldest = log_path.with_name(f"{log_path.name}.{settings.max_backups}")
    oldest.unlink(missing_ok=True)
    for idx in range(settings.max_backups - 1, 0, -1):
        src = log_path.with_name(f"{log_path.name}.{idx}")
        if src.exists():
            src.replace(log_path.with_name(f"{log_path.name}.{idx + 1}"))
    try:
        log_path.replace(log_path.with_name(f"{log_path.name}.1"))
    except FileNotFoundError:
        return


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def log_event(
    *,
    event: str,
    component: str,
    level: str = "info",
    **fields: Any,
) -> Dict[str, Any] | None:
    """Persist a structured event entry.

    None-valued fields are dropped. ``latency_ms`` is rounded to microseconds.

    Returns:
        The entry written, or None when filtered out by level
    """
    level_name = _resolve_level_name(level)
    settings = current_settings()
    if LOG_LEVELS[level_name] < settings.min_level:
        return None

    payload: Dict[str, Any] = {
        "ts": _timestamp(),
        "level": level_name,
        "component": component,
        "event": event,
    }
    for key, value in fields.items():
        if value is None:
            continue
        if key == "latency_ms":
            try:
                payload[key] = round(float(value), 3)
            except (TypeError, ValueError):
                continue
        else:
            payload[key] = value

    line = json.dumps(payload, separators=(",", ":"), default=str)
    LOGGER.log(LOG_LEVELS[level_name], line)

    settings.path.parent.mkdir(parents=True, exist_ok=True)
    _rotate(settings)
    with settings.path.open("a", encoding="utf-8") as handle:
        handle.write(line)
        handle.write("\n")
    return payload


@contextmanager
def event_timer(
    *,
    event: str,
    component: str,
    level: str = "info",
    **base_fields: Any,
) -> Iterator[Callable[[MutableMapping[str, Any] | None], None]]:
    """Log ``event`` with ``latency_ms`` once the block exits.

    The yielded callable adds fields to the entry. If the block raises, an
    error-level entry carrying ``error`` (and ``error_type`` when the
    exception has one) is written and the exception propagates.
    """
    start = time.perf_counter()
    captured: Dict[str, Any] = {}

    def finalize(extra: MutableMapping[str, Any] | None = None) -> None:
        if extra:
            captured.update(extra)

    try:
        yield finalize
    except Exception as exc:
        payload = {**base_fields, **captured}
        payload["latency_ms"] = (time.perf_counter() - start) * 1000
        payload["error"] = str(exc)
        payload["error_type"] = getattr(exc, "error_type", type(exc).__name__)
        log_event(event=event, component=component, level="error", **payload)
        raise
    else:
        payload = {**base_fields, **captured}
        payload["latency_ms"] = (time.perf_counter() - start) * 1000
        log_event(event=event, component=component, level=level, **payload)


__all__ = [
    "LogSettings",
    "current_settings",
    "event_timer",
    "log_event",
    "resolve_log_path",
]
