"""
Tests for project root discovery and config loading.

Relative tasks_dir values resolve against the directory holding the config
file, not the current working directory.
"""

from __future__ import annotations

import json

import pytest

from taskrepo.config import (
    CONFIG_FILENAME,
    DEFAULT_LOCK_TIMEOUT_MS,
    find_config_file,
    load_config,
    resolve_project_root,
)
from taskrepo.errors import ConfigError


def write_config(directory, payload):
    path = directory / CONFIG_FILENAME
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
    return path


def test_defaults_without_config(tmp_path):
    config = load_config(tmp_path)
    assert config.base_dir == tmp_path.resolve()
    assert config.tasks_dir == tmp_path.resolve() / ".tasks"
    assert config.use_git is False
    assert config.lock_timeout_ms == DEFAULT_LOCK_TIMEOUT_MS
    assert config.lock_timeout == 30.0
    assert config.tasks_file.name == "tasks.jsonl"
    assert config.archive_file.name == "complete.jsonl"
    assert config.lock_path == config.tasks_dir / ".tasks.lock"
    assert config.execution_state_file == config.base_dir / ".taskrepo-current.json"


def test_config_found_from_subdirectory(tmp_path):
    write_config(tmp_path, {"lock_timeout_ms": 500})
    nested = tmp_path / "src" / "deep"
    nested.mkdir(parents=True)

    assert find_config_file(nested) == tmp_path.resolve() / CONFIG_FILENAME
    assert resolve_project_root(nested) == tmp_path.resolve()
    config = load_config(nested)
    assert config.base_dir == tmp_path.resolve()
    assert config.lock_timeout == 0.5


def test_env_override(tmp_path, monkeypatch):
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.setenv("TASKREPO_PROJECT_DIR", str(project))
    assert resolve_project_root(tmp_path) == project.resolve()


def test_relative_tasks_dir_resolves_from_config_dir(tmp_path, monkeypatch):
    (tmp_path / "shared-tasks").mkdir()
    write_config(tmp_path, {"tasks_dir": "shared-tasks"})
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    monkeypatch.chdir(elsewhere)
    assert load_config(tmp_path).tasks_dir == (tmp_path / "shared-tasks").resolve()


def test_explicit_tasks_dir_must_exist(tmp_path):
    write_config(tmp_path, {"tasks_dir": "missing"})
    with pytest.raises(ConfigError, match="does not exist") as excinfo:
        load_config(tmp_path)
    assert excinfo.value.metadata["key"] == "tasks_dir"


def test_use_git_detected_from_tasks_repo(tmp_path):
    (tmp_path / ".tasks" / ".git").mkdir(parents=True)
    assert load_config(tmp_path).use_git is True
    write_config(tmp_path, {"use_git": False})
    assert load_config(tmp_path).use_git is False


@pytest.mark.parametrize(
    "payload, key",
    [
        ({"tasks_dir": 5}, "tasks_dir"),
        ({"use_git": "yes"}, "use_git"),
        ({"lock_timeout_ms": "100"}, "lock_timeout_ms"),
        ({"lock_timeout_ms": True}, "lock_timeout_ms"),
        ({"lock_timeout_ms": 0}, "lock_timeout_ms"),
    ],
)
def test_wrong_types_rejected(tmp_path, payload, key):
    write_config(tmp_path, payload)
    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path)
    assert excinfo.value.metadata["key"] == key
    assert excinfo.value.error_type == "invalid-config"


def test_malformed_json_rejected(tmp_path):
    write_config(tmp_path, "{not json")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load_config(tmp_path)


def test_non_object_rejected(tmp_path):
    write_config(tmp_path, "[]")
    with pytest.raises(ConfigError, match="JSON object"):
        load_config(tmp_path)


def test_null_lock_timeout_uses_default(tmp_path):
    write_config(tmp_path, {"lock_timeout_ms": None})
    config = load_config(tmp_path)
    assert config.lock_timeout_ms == DEFAULT_LOCK_TIMEOUT_MS
    assert config.lock_timeout == DEFAULT_LOCK_TIMEOUT_MS / 1000.0
