from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from scheduler_sync.backend import RepoStatus
from scheduler_sync.config_schema import SchedulerSyncConfig, SyncConfig
from scheduler_sync.git_sync import GitSyncService


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))


@pytest.fixture(autouse=True)
def _isolated_logging(monkeypatch, tmp_path):
    """Keep log files out of the user's home directory."""
    import scheduler_sync.observability as obs

    monkeypatch.setenv("SCHEDULER_SYNC_LOG_DISABLE_FILE", "1")
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_LEVEL", "INFO")
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_MAX_BYTES", "1048576")
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_BACKUP_COUNT", "1")
    monkeypatch.setattr(obs, "_logger_initialized", False)


class FakeTimer:
    """Manually fired stand-in for threading.Timer."""

    def __init__(self, interval: float, function: Callable[[], None]):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        self.fired = False
        self.daemon = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Expire normally; a cancelled timer does nothing."""
        if self.started and not self.cancelled and not self.fired:
            self.fired = True
            self.function()

    def expire_anyway(self) -> None:
        """Run the callback even if cancelled, like a timer that lost the race."""
        self.function()


class TimerRegistry:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_all(self) -> None:
        for timer in self.active:
            timer.fire()


class FakeBackend:
    """In-memory repository: dirty files, remote divergence and conflicts."""

    def __init__(self, repo_path: Path):
        self.repo_path = repo_path
        self.is_repo = True
        self.remotes: List[str] = ["origin"]
        self.dirty: List[str] = []
        self.conflicted: List[str] = []
        self.behind = 0

        self.commits: List[str] = []
        self.pushes = 0
        self.pulls = 0
        self.fetches = 0
        self.inits = 0
        self.added: List[str] = []
        self.checkouts: List[tuple] = []

        self.status_error: Optional[Exception] = None
        self.commit_error: Optional[Exception] = None
        self.pull_error: Optional[Exception] = None
        self.pull_conflicts: List[str] = []
        self.push_errors: List[Exception] = []

    def check_is_repo(self) -> bool:
        return self.is_repo

    def init(self) -> None:
        self.inits += 1
        self.is_repo = True

    def list_remotes(self) -> List[str]:
        return list(self.remotes)

    def status(self, remote=None, branch=None) -> RepoStatus:
        if self.status_error is not None:
            raise self.status_error
        return RepoStatus(
            modified=tuple(self.dirty),
            conflicted=tuple(self.conflicted),
            behind=self.behind if remote and branch else 0,
        )

    def add_all(self) -> None:
        self.added.append("-A")

    def add(self, path: str) -> None:
        self.added.append(path)
        if path in self.conflicted:
            self.conflicted.remove(path)

    def commit(self, message: str) -> str:
        if self.commit_error is not None:
            raise self.commit_error
        self.commits.append(message)
        self.dirty = []
        return f"{len(self.commits):040x}"

    def fetch(self, remote: str) -> None:
        self.fetches += 1

    def pull(self, remote: str, branch: str, strategy: str = "merge") -> int:
        self.pulls += 1
        if self.pull_error is not None:
            self.conflicted = list(self.pull_conflicts)
            raise self.pull_error
        pulled, self.behind = self.behind, 0
        return pulled

    def push(self, remote: str, branch: str) -> None:
        self.pushes += 1
        if self.push_errors:
            raise self.push_errors.pop(0)

    def checkout_side(self, path: str, side: str) -> None:
        self.checkouts.append((path, side))


@pytest.fixture
def timers() -> TimerRegistry:
    return TimerRegistry()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def backend(tmp_path) -> FakeBackend:
    return FakeBackend(tmp_path)


@pytest.fixture
def make_service(tmp_path, backend, timers, sleeps):
    """Build a GitSyncService over the fake backend; kwargs override SyncConfig."""

    def factory(**sync_overrides) -> GitSyncService:
        config = SchedulerSyncConfig(sync=SyncConfig(**sync_overrides))
        return GitSyncService(
            tmp_path,
            config=config,
            backend=backend,
            timer_factory=timers,
            sleep=sleeps.append,
        )

    return factory
