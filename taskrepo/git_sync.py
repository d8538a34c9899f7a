"""Git synchronization for the tasks directory.

Before every mutation the tasks directory pulls its upstream branch so the
operation sees remote history. Pulls merge (never rebase) and never push;
committing is left to the caller once the project lock is released.

Outcomes of a pull:
- git disabled, not a repository, unborn/detached HEAD or no remote: nothing
  to do, the local files are used as-is
- clean pull: local files now include remote history
- conflict: the merge is aborted so local files are unchanged, then
  SyncConflict is raised
- anything else: SyncError carrying git's output
"""
from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from taskrepo.config import TaskConfig
from taskrepo.errors import SyncConflict, SyncError
from taskrepo.logger import log_event

LOGGER = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"
GIT_TIMEOUT_SECONDS = 120.0

ERROR_CONFLICT = "conflict"
ERROR_NO_REMOTE = "no-remote"
ERROR_NETWORK = "network"
ERROR_OTHER = "other"

_CONFLICT_MARKERS = (
    "CONFLICT",
    "Automatic merge failed",
    "fix conflicts",
    "unresolved conflict",
    "unmerged files",
)
_DIVERGENCE_MARKERS = (
    "divergent branches",
    "Not possible to fast-forward",
    "would be overwritten by merge",
)
_NO_REMOTE_MARKERS = (
    "does not appear to be a git repository",
    "No configured push destination",
    "No remote repository specified",
)
_NO_REMOTE_RE = re.compile(r"repository '.*' not found")
_NETWORK_MARKERS = (
    "Could not resolve host",
    "Connection refused",
    "Failed to connect",
    "timed out",
    "Network is unreachable",
    "unable to access",
    "The requested URL returned error",
)


@dataclass(frozen=True)
class PullResult:
    """Outcome of a single ``git pull``.

    Attributes:
        success: True for a clean pull or when there is no remote to pull
        pulled: True only when git actually ran the pull successfully
        error: Git's output for failed pulls
        error_type: One of conflict, no-remote, network, other (None on success)
    """

    success: bool
    pulled: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass(frozen=True)
class CommitResult:
    success: bool
    commit_sha: Optional[str] = None
    error: Optional[str] = None
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "commit_sha": self.commit_sha,
            "error": self.error,
        }


def _git(repo_dir: Path | str, *args: str, timeout: float = GIT_TIMEOUT_SECONDS) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    return subprocess.run(
        ["git", "-C", str(repo_dir), *args],
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
        check=False,
    )


def _output(proc: subprocess.CompletedProcess[str]) -> str:
    # Merge conflicts are reported on stdout, fatal errors on stderr.
    parts = [proc.stderr.strip(), proc.stdout.strip()]
    return "\n".join(part for part in parts if part)


def is_git_repo(path: Path | str) -> bool:
    """Return True when ``path`` is the root of a git working tree."""
    return (Path(path) / ".git").exists()


def current_branch(repo_dir: Path | str) -> Optional[str]:
    """Return the checked-out branch, or None when unborn or detached."""
    try:
        proc = _git(repo_dir, "rev-parse", "--abbrev-ref", "HEAD")
    except (OSError, subprocess.SubprocessError):
        return None
    branch = proc.stdout.strip()
    if proc.returncode != 0 or not branch or branch == "HEAD":
        return None
    return branch


def has_remote(repo_dir: Path | str, remote: str = DEFAULT_REMOTE) -> bool:
    try:
        proc = _git(repo_dir, "remote")
    except (OSError, subprocess.SubprocessError):
        return False
    return proc.returncode == 0 and remote in proc.stdout.split()


def _has_conflict(output: str) -> bool:
    return any(marker in output for marker in _CONFLICT_MARKERS)


def _has_divergence(output: str) -> bool:
    return any(marker in output for marker in _DIVERGENCE_MARKERS)


def _has_no_remote(output: str) -> bool:
    return any(marker in output for marker in _NO_REMOTE_MARKERS) or bool(_NO_REMOTE_RE.search(output))


def _has_network_issue(output: str) -> bool:
    return any(marker in output for marker in _NETWORK_MARKERS)


def classify_pull_error(exit_code: int, output: str) -> str:
    """Classify a failed pull from its exit code and output.

    Exit code 1 usually means a merge conflict; 128 is git's fatal exit
    (missing remote, network trouble, divergent branches). Other codes fall
    back to pattern matching alone.

    Returns:
        One of ``conflict``, ``no-remote``, ``network`` or ``other``
    """
    if exit_code == 128:
        if _has_no_remote(output):
            error_type = ERROR_NO_REMOTE
        elif _has_network_issue(output):
            error_type = ERROR_NETWORK
        elif _has_divergence(output):
            error_type = ERROR_CONFLICT
        else:
            error_type = ERROR_OTHER
    elif _has_conflict(output) or _has_divergence(output):
        error_type = ERROR_CONFLICT
    elif _has_no_remote(output):
        error_type = ERROR_NO_REMOTE
    elif _has_network_issue(output):
        error_type = ERROR_NETWORK
    else:
        error_type = ERROR_OTHER

    if error_type == ERROR_OTHER and output.strip():
        LOGGER.warning("Unrecognized git pull error (exit %s): %s", exit_code, output.strip())
    return error_type


def pull_latest(repo_dir: Path | str, branch: str, remote: str = DEFAULT_REMOTE) -> PullResult:
    """Merge ``remote/branch`` into the working tree.

    A missing remote counts as success with nothing pulled.
    """
    try:
        proc = _git(repo_dir, "pull", "--no-rebase", "--no-edit", remote, branch)
    except subprocess.TimeoutExpired as exc:
        return PullResult(success=False, error=f"git pull timed out after {exc.timeout}s", error_type=ERROR_NETWORK)
    except OSError as exc:
        return PullResult(success=False, error=str(exc), error_type=ERROR_OTHER)

    if proc.returncode == 0:
        return PullResult(success=True, pulled=True)

    output = _output(proc)
    error_type = classify_pull_error(proc.returncode, output)
    if error_type == ERROR_NO_REMOTE:
        return PullResult(success=True, error_type=ERROR_NO_REMOTE)
    return PullResult(success=False, error=output, error_type=error_type)


def abort_merge(repo_dir: Path | str) -> bool:
    """Abort an in-progress merge, restoring the pre-pull working tree."""
    try:
        proc = _git(repo_dir, "merge", "--abort")
    except (OSError, subprocess.SubprocessError) as exc:
        LOGGER.warning("git merge --abort failed in %s: %s", repo_dir, exc)
        return False
    if proc.returncode != 0:
        LOGGER.warning("git merge --abort failed in %s: %s", repo_dir, _output(proc))
        return False
    return True


def sync_and_resolve_path(config: TaskConfig) -> Path:
    """Pull remote history into the tasks directory and return the active store path.

    Raises:
        SyncConflict: If the pull conflicted (the merge has been aborted)
        SyncError: For any other pull failure
    """
    tasks_file = config.tasks_file
    repo_dir = config.tasks_dir
    if not config.use_git or not is_git_repo(repo_dir):
        return tasks_file

    branch = current_branch(repo_dir)
    if branch is None or not has_remote(repo_dir):
        log_event(event="git_pull_skipped", component="git_sync", level="debug", repo=str(repo_dir), branch=branch)
        return tasks_file

    result = pull_latest(repo_dir, branch)
    if result.success:
        log_event(
            event="git_pull",
            component="git_sync",
            repo=str(repo_dir),
            branch=branch,
            pulled=result.pulled,
            error_type=result.error_type,
        )
        return tasks_file

    log_event(
        event="git_pull_failed",
        component="git_sync",
        level="warn",
        repo=str(repo_dir),
        branch=branch,
        error_type=result.error_type,
    )
    if result.error_type == ERROR_CONFLICT:
        abort_merge(repo_dir)
        raise SyncConflict(
            f"Pulling {branch} into {repo_dir} conflicted with local changes; the merge was aborted. "
            "Resolve the conflict manually in the tasks repository.",
            details=result.error or "",
            repo=str(repo_dir),
            branch=branch,
        )
    raise SyncError(
        f"Failed to pull {branch} into {repo_dir}",
        error_type=result.error_type,
        details=result.error or "",
        repo=str(repo_dir),
        branch=branch,
    )


def _relative_paths(repo_dir: Path, files: Iterable[Path | str]) -> List[str]:
    root = repo_dir.resolve()
    relative: List[str] = []
    for item in files:
        path = Path(item)
        if path.is_absolute():
            try:
                path = path.resolve().relative_to(root)
            except ValueError:
                pass
        relative.append(str(path))
    return relative


def commit_task_changes(repo_dir: Path | str, files: Sequence[Path | str], message: str) -> CommitResult:
    """Stage ``files`` and commit them.

    Never raises: failures are reported on the returned CommitResult.
    """
    root = Path(repo_dir)
    paths = _relative_paths(root, files)
    try:
        add = _git(root, "add", "--", *paths)
        if add.returncode != 0:
            return CommitResult(success=False, error=_output(add), files=paths)
        commit = _git(root, "commit", "-m", message)
        if commit.returncode != 0:
            return CommitResult(success=False, error=_output(commit), files=paths)
        sha = _git(root, "rev-parse", "HEAD").stdout.strip()
    except (OSError, subprocess.SubprocessError) as exc:
        return CommitResult(success=False, error=str(exc), files=paths)
    return CommitResult(success=True, commit_sha=sha or None, files=paths)


__all__ = [
    "CommitResult",
    "PullResult",
    "abort_merge",
    "classify_pull_error",
    "commit_task_changes",
    "current_branch",
    "has_remote",
    "is_git_repo",
    "pull_latest",
    "sync_and_resolve_path",
]
