"""Version-control backend used by the sync engine.

``SyncBackend`` is the contract the coordinator depends on; ``GitBackend``
implements it in-process with GitPython. Every git failure surfaces as
``GitBackendError`` carrying git's own message, because the engine
classifies failures by their text.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from .observability import log_debug

CONFLICT_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})
PULL_STRATEGIES = {"merge": "--no-rebase", "rebase": "--rebase"}
CHECKOUT_SIDES = ("ours", "theirs")


class GitSyncError(Exception):
    """Base exception for git sync operations."""
    pass


class GitBackendError(GitSyncError):
    """A git command failed; the message is git's output."""
    pass


@dataclass(frozen=True)
class RepoStatus:
    modified: Tuple[str, ...] = ()
    created: Tuple[str, ...] = ()
    deleted: Tuple[str, ...] = ()
    untracked: Tuple[str, ...] = ()
    conflicted: Tuple[str, ...] = ()
    behind: int = 0

    @property
    def change_count(self) -> int:
        return len(self.modified) + len(self.created) + len(self.deleted) + len(self.untracked)

    @property
    def has_changes(self) -> bool:
        return self.change_count > 0


def parse_porcelain_status(output: str, behind: int = 0) -> RepoStatus:
    """Parse ``git status --porcelain=v1 -z`` output."""
    modified: List[str] = []
    created: List[str] = []
    deleted: List[str] = []
    untracked: List[str] = []
    conflicted: List[str] = []

    tokens = output.split("\0")
    i = 0
    while i < len(tokens):
        entry = tokens[i]
        i += 1
        if len(entry) < 4:
            continue
        xy, path = entry[:2], entry[3:]
        if xy[0] in "RC":
            # Renames and copies are followed by their source path
            i += 1
        if xy in CONFLICT_CODES:
            conflicted.append(path)
        elif xy == "??":
            untracked.append(path)
        elif "D" in xy:
            deleted.append(path)
        elif xy[0] == "A":
            created.append(path)
        elif xy != "!!":
            modified.append(path)

    return RepoStatus(
        modified=tuple(modified),
        created=tuple(created),
        deleted=tuple(deleted),
        untracked=tuple(untracked),
        conflicted=tuple(conflicted),
        behind=behind,
    )


class SyncBackend(Protocol):
    """Operations the sync engine issues against version control."""

    repo_path: Path

    def check_is_repo(self) -> bool: ...

    def init(self) -> None: ...

    def list_remotes(self) -> List[str]: ...

    def status(self, remote: Optional[str] = None, branch: Optional[str] = None) -> RepoStatus: ...

    def add_all(self) -> None: ...

    def add(self, path: str) -> None: ...

    def commit(self, message: str) -> str: ...

    def fetch(self, remote: str) -> None: ...

    def pull(self, remote: str, branch: str, strategy: str = "merge") -> int: ...

    def push(self, remote: str, branch: str) -> None: ...

    def checkout_side(self, path: str, side: str) -> None: ...


class GitBackend:
    """GitPython implementation of ``SyncBackend``.

    Not thread-safe on its own; the coordinator runs one pipeline at a time.
    """

    def __init__(
        self,
        repo_path: Path,
        *,
        author_name: str = "Scheduler App",
        author_email: str = "scheduler@localhost",
    ):
        self.repo_path = Path(repo_path)
        self.author_name = author_name
        self.author_email = author_email

        self._env = os.environ.copy()
        # Fail fast instead of hanging on credential prompts
        self._env.setdefault("GIT_TERMINAL_PROMPT", "0")
        self._env.setdefault("GCM_INTERACTIVE", "never")
        self._env.setdefault("GIT_HTTP_LOW_SPEED_LIMIT", "1")
        self._env.setdefault("GIT_HTTP_LOW_SPEED_TIME", "30")
        self._env["GIT_AUTHOR_NAME"] = author_name
        self._env["GIT_AUTHOR_EMAIL"] = author_email
        self._env["GIT_COMMITTER_NAME"] = author_name
        self._env["GIT_COMMITTER_EMAIL"] = author_email

    @property
    def _repo(self) -> Repo:
        try:
            return Repo(self.repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitBackendError(f"Not a git repository: {self.repo_path}")

    def _git(self, command: str, *args: str) -> str:
        repo = self._repo
        log_debug(f"GIT_OP_START: {command} {' '.join(args)}".rstrip())
        try:
            output = getattr(repo.git, command)(*args, env=self._env)
        except GitCommandError as e:
            log_debug(f"GIT_OP_FAIL: {command}", status=e.status)
            raise GitBackendError(str(e)) from e
        log_debug(f"GIT_OP_END: {command}")
        return output

    def check_is_repo(self) -> bool:
        try:
            Repo(self.repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return False
        return True

    def init(self) -> None:
        self.repo_path.mkdir(parents=True, exist_ok=True)
        try:
            Repo.init(self.repo_path)
        except GitCommandError as e:
            raise GitBackendError(str(e)) from e

    def list_remotes(self) -> List[str]:
        return [remote.name for remote in self._repo.remotes]

    def _count_behind(self, remote: str, branch: str) -> int:
        try:
            return int(self._repo.git.rev_list("--count", f"HEAD..{remote}/{branch}", env=self._env))
        except (GitCommandError, ValueError):
            # Remote branch not fetched yet, or no local commit
            return 0

    def status(self, remote: Optional[str] = None, branch: Optional[str] = None) -> RepoStatus:
        output = self._git("status", "--porcelain=v1", "-z", "--untracked-files=all")
        behind = self._count_behind(remote, branch) if remote and branch else 0
        return parse_porcelain_status(output, behind=behind)

    def add_all(self) -> None:
        self._git("add", "-A")

    def add(self, path: str) -> None:
        self._git("add", "--", path)

    def commit(self, message: str) -> str:
        self._git("commit", "-m", message)
        return self._repo.head.commit.hexsha

    def fetch(self, remote: str) -> None:
        self._git("fetch", remote)

    def pull(self, remote: str, branch: str, strategy: str = "merge") -> int:
        """Pull ``remote``/``branch`` and return the number of files it changed."""
        if strategy not in PULL_STRATEGIES:
            raise ValueError(f"Unknown pull strategy: {strategy!r}")
        before = self._repo.head.commit.hexsha
        self._git("pull", PULL_STRATEGIES[strategy], "--no-edit", remote, branch)
        changed = self._git("diff", "--name-only", before, "HEAD")
        return len([line for line in changed.splitlines() if line.strip()])

    def push(self, remote: str, branch: str) -> None:
        self._git("push", remote, f"HEAD:refs/heads/{branch}")

    def checkout_side(self, path: str, side: str) -> None:
        if side not in CHECKOUT_SIDES:
            raise ValueError(f"Unknown checkout side: {side!r}")
        self._git("checkout", f"--{side}", "--", path)
