"""Git-based synchronization of the scheduler data directory.

``GitSyncService`` keeps a working directory in sync with one branch on one
remote:

- changes reported through ``schedule_commit`` are debounced into a batch
- a batch (or ``sync_now``) runs the pipeline: status -> stage -> commit ->
  fetch/pull -> push with retry
- merge conflicts park the engine in ``conflict`` until every file is
  resolved through ``resolve_conflict``, which then pushes the merge

The service is the only writer of ``SyncState``; observers get every
transition through ``subscribe``. Failures never propagate to callers, they
come back as ``SyncResult(success=False, error=...)``.

Thread safety:
    State and the single-run guard are protected by an RLock. Git I/O runs
    outside the lock; the guard guarantees only one pipeline at a time.
"""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from .backend import GitBackend, GitSyncError, SyncBackend
from .batcher import ChangeBatcher, TimerFactory
from .commit_message import generate_commit_message
from .config_schema import SchedulerSyncConfig
from .conflicts import has_conflict_markers, parse_conflict_markers
from .hub import Listener, SubscriptionHub, SyncHistory
from .models import (
    ChangeInfo,
    ConflictInfo,
    SyncLogEntry,
    SyncResult,
    SyncState,
    SyncStatus,
    now_iso,
)
from .observability import log_action, log_debug, log_error, log_info, log_warning, timeit
from .retry import run_with_retry

RESOLUTION_CHOICES = ("local", "remote", "merge")
RESOLVE_COMMIT_MESSAGE = "Resolve merge conflicts"
CONFLICT_MARKERS = ("CONFLICT", "Merge conflict")

SYNC_IN_PROGRESS = "Sync already in progress"


def _looks_like_conflict(message: str) -> bool:
    return any(marker in message for marker in CONFLICT_MARKERS)


class GitSyncService:
    """Debounced commit/pull/push engine for one repository.

    Attributes:
        repo_path: Working directory being synchronized
        branch: Branch pulled from and pushed to (fixed for the lifetime)
        remote: Remote pulled from and pushed to (fixed for the lifetime)
    """

    def __init__(
        self,
        repo_path: Optional[Path] = None,
        *,
        config: Optional[SchedulerSyncConfig] = None,
        backend: Optional[SyncBackend] = None,
        timer_factory: TimerFactory = threading.Timer,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.config = config or SchedulerSyncConfig.default()
        sync_cfg = self.config.sync

        self.repo_path = Path(repo_path or sync_cfg.repo_path or Path.cwd()).expanduser()
        self.branch = sync_cfg.branch
        self.remote = sync_cfg.remote
        self.max_retries = sync_cfg.max_retries
        self.base_retry_delay = sync_cfg.base_retry_delay
        self.max_backoff = sync_cfg.max_backoff

        self._backend: SyncBackend = backend or GitBackend(
            self.repo_path,
            author_name=self.config.git.author,
            author_email=self.config.git.email,
        )
        self._sleep = sleep

        self._lock = threading.RLock()
        self._state = SyncState()
        self._busy = False
        self._inflight = 0

        self._hub = SubscriptionHub()
        history_file = Path(sync_cfg.history_file).expanduser() if sync_cfg.history_file else None
        self._history = SyncHistory(limit=sync_cfg.history_limit, path=history_file)
        self._batcher = ChangeBatcher(
            sync_cfg.debounce_seconds,
            self._on_batch_ready,
            timer_factory=timer_factory,
        )

        log_info(f"Configured for {self.remote}/{self.branch}", repo=str(self.repo_path))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """Make sure the directory is a repository and seed the state from it.

        Returns False (and logs) instead of raising when git is unusable.
        """
        try:
            if not self._backend.check_is_repo():
                log_info("Not a Git repository, initializing", repo=str(self.repo_path))
                self._backend.init()

            remotes = self._backend.list_remotes()
            if self.remote not in remotes:
                log_warning(
                    f"No remote '{self.remote}' configured. Push operations will be skipped.",
                    remotes=remotes,
                )

            status = self._backend.status()
        except (GitSyncError, OSError) as exc:
            log_error(f"Initialization failed: {exc}", repo=str(self.repo_path))
            return False

        with self._lock:
            if status.conflicted:
                # Unfinished merge from a previous process
                self._update_state(
                    status=SyncStatus.CONFLICT,
                    conflict_files=tuple(status.conflicted),
                    pending_changes=status.change_count,
                )
            else:
                self._update_state(pending_changes=status.change_count)
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; it is called at once with the current state."""
        with self._lock:
            return self._hub.subscribe(listener, self._state)

    def get_state(self) -> SyncState:
        with self._lock:
            return self._state

    def get_history(self) -> List[SyncLogEntry]:
        return self._history.entries()

    def schedule_commit(self, change: ChangeInfo) -> None:
        """Queue a change and (re)start the debounce window."""
        with self._lock:
            self._batcher.enqueue(change)
            self._update_state(pending_changes=self._pending_count_locked())

    def cancel_pending(self) -> None:
        """Stop the debounce timer; queued changes are kept for the next sync."""
        self._batcher.cancel_pending()

    def sync_now(self) -> SyncResult:
        """Run the pipeline immediately with everything queued so far."""
        return self._perform_sync(self._batcher.take_all())

    def get_conflicts(self) -> List[ConflictInfo]:
        """Describe every conflicted file, parsed from its current content."""
        try:
            conflicted = self._backend.status().conflicted
        except GitSyncError as exc:
            log_error(f"Failed to get conflicts: {exc}")
            return []

        conflicts: List[ConflictInfo] = []
        for file in conflicted:
            try:
                content = (self.repo_path / file).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                log_warning(f"Cannot read conflicted file {file}: {exc}")
                continue
            if not has_conflict_markers(content):
                log_info(f"Conflicted file has no markers left: {file}")
            region = parse_conflict_markers(content)
            conflicts.append(
                ConflictInfo(
                    file=file,
                    local_content=region.local,
                    remote_content=region.remote,
                    base_content=region.base,
                )
            )
        return conflicts

    def resolve_conflict(
        self,
        file: str,
        choice: str,
        merged_content: Optional[str] = None,
    ) -> SyncResult:
        """Resolve one conflicted file by keeping a side or writing merged content.

        Once the last conflicted file is staged, the merge is committed, the
        state returns to ``idle`` and the merge commit is pushed.
        """
        if choice not in RESOLUTION_CHOICES:
            return SyncResult(False, f"Unknown resolution {choice!r}; expected one of {', '.join(RESOLUTION_CHOICES)}")
        if choice == "merge" and merged_content is None:
            return SyncResult(False, 'Merged content is required when resolution is "merge"')

        target = (self.repo_path / file).resolve()
        if not target.is_relative_to(self.repo_path.resolve()):
            return SyncResult(False, f"Path is outside the repository: {file}")

        with self._lock:
            if self._busy:
                return SyncResult(False, SYNC_IN_PROGRESS)
            self._busy = True

        try:
            return self._resolve(file, choice, merged_content, target)
        finally:
            with self._lock:
                self._busy = False

    def shutdown(self) -> None:
        """Cancel the debounce timer. A run already in progress finishes on its own."""
        self._batcher.shutdown()

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _update_state(self, **changes: Any) -> None:
        with self._lock:
            state = replace(self._state, **changes)
            if state.status is not SyncStatus.CONFLICT and state.conflict_files:
                state = replace(state, conflict_files=())
            self._state = state
            self._hub.publish(state)

    def _pending_count_locked(self) -> int:
        return self._batcher.pending_count + self._inflight

    def _log_entry(
        self,
        operation: str,
        outcome: str,
        message: str,
        *,
        details: Optional[str] = None,
        commit_ref: Optional[str] = None,
    ) -> SyncLogEntry:
        entry = SyncLogEntry(
            operation=operation,
            outcome=outcome,
            message=message,
            details=details,
            commit_ref=commit_ref,
        )
        log_action(f"sync.{operation}", outcome=outcome, message=message, commit=commit_ref)
        return self._history.append(entry)

    def _finish_synced(self) -> SyncResult:
        with self._lock:
            self._inflight = 0
            self._update_state(
                status=SyncStatus.SYNCED,
                last_sync_time=now_iso(),
                pending_changes=self._pending_count_locked(),
                error=None,
                conflict_files=(),
            )
        return SyncResult(True)

    def _fail(self, operation: str, message: str, error: Any) -> SyncResult:
        error_text = str(error)
        log_error(f"Sync failed: {error_text}", operation=operation)
        with self._lock:
            self._update_state(
                status=SyncStatus.ERROR,
                error=error_text,
                pending_changes=self._pending_count_locked(),
            )
        self._log_entry(operation, "error", message, details=error_text)
        return SyncResult(False, error_text)

    def _fail_before_commit(
        self,
        batch: Sequence[ChangeInfo],
        message: str,
        error: Any,
    ) -> SyncResult:
        # Nothing was committed: keep the changes for the next commit message
        with self._lock:
            self._inflight = 0
            self._batcher.restore(batch)
        return self._fail("commit", message, error)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _on_batch_ready(self, batch: List[ChangeInfo]) -> None:
        result = self._perform_sync(batch)
        if not result.success:
            log_warning(f"Scheduled sync did not complete: {result.error}")

    def _perform_sync(self, batch: List[ChangeInfo]) -> SyncResult:
        with self._lock:
            if self._busy:
                # Keep the changes and try again after another quiet period
                self._batcher.restore(batch, rearm=True)
                return SyncResult(False, SYNC_IN_PROGRESS)
            self._busy = True
            self._inflight = len(batch)
            self._update_state(status=SyncStatus.SYNCING, error=None)

        try:
            with timeit("sync.pipeline", changes=len(batch)):
                return self._run_pipeline(batch)
        except Exception as exc:
            return self._fail("push", "Sync failed", exc)
        finally:
            with self._lock:
                self._busy = False

    def _run_pipeline(self, batch: List[ChangeInfo]) -> SyncResult:
        try:
            with timeit("git.status"):
                status = self._backend.status()
        except GitSyncError as exc:
            return self._fail_before_commit(batch, "Failed to read repository status", exc)

        if status.conflicted:
            with self._lock:
                self._inflight = 0
                self._batcher.restore(batch)
            return self._enter_conflict(status.conflicted, "Unresolved merge conflicts")

        if not status.has_changes:
            log_info("No changes to commit")
            return self._finish_synced()

        message = generate_commit_message(batch)
        try:
            with timeit("git.commit", changes=len(batch)) as info:
                self._backend.add_all()
                commit_ref = self._backend.commit(message)
                info["commit"] = commit_ref
        except GitSyncError as exc:
            return self._fail_before_commit(batch, "Commit failed", exc)

        with self._lock:
            self._inflight = 0
            self._update_state(pending_changes=self._pending_count_locked())
        self._log_entry("commit", "success", message, commit_ref=commit_ref)

        try:
            remotes = self._backend.list_remotes()
        except GitSyncError as exc:
            return self._fail("pull", "Failed to list remotes", exc)
        if self.remote not in remotes:
            log_info(f"No remote '{self.remote}' configured, skipping pull and push")
            self._log_entry("push", "success", "Push skipped: no remote configured")
            return self._finish_synced()

        pull_failure = self._pull_with_conflict_check()
        if pull_failure is not None:
            return pull_failure

        push_error = self._push_with_retry()
        if push_error is not None:
            return self._fail("push", "Push failed", push_error)
        self._log_entry("push", "success", "Changes pushed to remote")
        return self._finish_synced()

    def _enter_conflict(self, files: Sequence[str], message: str) -> SyncResult:
        with self._lock:
            self._update_state(
                status=SyncStatus.CONFLICT,
                conflict_files=tuple(files),
                pending_changes=self._pending_count_locked(),
            )
        self._log_entry("pull", "conflict", message, details=", ".join(files))
        return SyncResult(False, "Merge conflicts detected")

    def _pull_with_conflict_check(self) -> Optional[SyncResult]:
        """Fetch, and merge the remote branch if it has unseen commits.

        Returns None when the pipeline may continue to the push stage.
        """
        try:
            with timeit("git.fetch", remote=self.remote):
                self._backend.fetch(self.remote)
            status = self._backend.status(self.remote, self.branch)
            if status.behind == 0:
                log_debug("Remote has no unseen commits, skipping pull")
                return None
            with timeit("git.pull", remote=self.remote, branch=self.branch, behind=status.behind):
                changed = self._backend.pull(self.remote, self.branch, strategy="merge")
        except GitSyncError as exc:
            return self._handle_pull_failure(exc)

        self._log_entry("pull", "success", f"Pulled {changed} changes")
        return None

    def _handle_pull_failure(self, error: GitSyncError) -> SyncResult:
        conflicted: Sequence[str] = ()
        try:
            conflicted = self._backend.status().conflicted
        except GitSyncError as status_exc:
            log_warning(f"Could not read status after failed pull: {status_exc}")

        if conflicted or _looks_like_conflict(str(error)):
            log_warning("Merge conflicts detected", files=list(conflicted))
            return self._enter_conflict(conflicted, "Merge conflicts detected")
        return self._fail("pull", "Pull failed", error)

    def _push_with_retry(self) -> Optional[str]:
        """Push with exponential backoff. Returns the error text on failure."""

        def push_once() -> None:
            with timeit("git.push", remote=self.remote, branch=self.branch):
                self._backend.push(self.remote, self.branch)

        outcome = run_with_retry(
            push_once,
            max_attempts=self.max_retries,
            base_delay=self.base_retry_delay,
            max_delay=self.max_backoff,
            sleep=self._sleep,
            label="Push",
        )
        if outcome.success:
            return None
        return outcome.error

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    def _resolve(
        self,
        file: str,
        choice: str,
        merged_content: Optional[str],
        target: Path,
    ) -> SyncResult:
        try:
            with timeit("sync.resolve", file=file, choice=choice):
                if file not in self._backend.status().conflicted:
                    return SyncResult(False, f"File is not in conflict: {file}")
                if choice == "local":
                    self._backend.checkout_side(file, "ours")
                elif choice == "remote":
                    self._backend.checkout_side(file, "theirs")
                else:
                    target.write_text(merged_content or "", encoding="utf-8")
                self._backend.add(file)
                remaining = self._backend.status().conflicted
        except (GitSyncError, OSError) as exc:
            log_error(f"Failed to resolve {file}: {exc}")
            self._log_entry("resolve", "error", f"Failed to resolve {file}", details=str(exc))
            return SyncResult(False, str(exc))

        if remaining:
            with self._lock:
                self._update_state(status=SyncStatus.CONFLICT, conflict_files=tuple(remaining))
            return SyncResult(True)

        try:
            commit_ref = self._backend.commit(RESOLVE_COMMIT_MESSAGE)
        except GitSyncError as exc:
            return self._fail("resolve", "Failed to commit conflict resolution", exc)

        with self._lock:
            self._update_state(status=SyncStatus.IDLE, conflict_files=(), error=None)
        self._log_entry("resolve", "success", "All conflicts resolved", commit_ref=commit_ref)
        return self._push_after_resolve()

    def _push_after_resolve(self) -> SyncResult:
        try:
            remotes = self._backend.list_remotes()
        except GitSyncError as exc:
            return self._fail("push", "Failed to list remotes", exc)
        if self.remote not in remotes:
            self._log_entry("push", "success", "Push skipped: no remote configured")
            return SyncResult(True)

        push_error = self._push_with_retry()
        if push_error is not None:
            return self._fail("push", "Push failed", push_error)

        self._log_entry("push", "success", "Merge resolution pushed to remote")
        with self._lock:
            self._update_state(last_sync_time=now_iso())
        return SyncResult(True)
