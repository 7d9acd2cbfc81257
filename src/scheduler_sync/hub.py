"""State observers and the sync history log."""

from __future__ import annotations

import hashlib
import json
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional

from .models import SyncLogEntry, SyncState
from .observability import log_error, log_warning

Listener = Callable[[SyncState], None]

DEFAULT_HISTORY_LIMIT = 50


class SubscriptionHub:
    """Ordered observer registry.

    Listeners are called synchronously, in subscription order, with the full
    state record. Publishing iterates over a copy of the registry so a
    listener may unsubscribe itself or others mid-notification.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def subscribe(self, listener: Listener, current: SyncState) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)
        self._notify(listener, current)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    def publish(self, state: SyncState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            with self._lock:
                still_subscribed = listener in self._listeners
            if still_subscribed:
                self._notify(listener, state)

    def _notify(self, listener: Listener, state: SyncState) -> None:
        try:
            listener(state)
        except Exception as exc:
            log_error(f"State listener failed: {exc}", listener=repr(listener))


def _checksum_payload(payload: dict) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class SyncHistory:
    """Newest-first log of pipeline outcomes, capped at ``limit`` entries.

    When ``path`` is given every entry is also appended to a JSONL file with
    a checksum per line, and the file is reloaded on construction.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT, path: Optional[Path] = None):
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._entries: Deque[SyncLogEntry] = deque(maxlen=limit)
        self._lines_on_disk = 0
        if self.path is not None:
            self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        with self._lock:
            self._entries.appendleft(entry)
            if self.path is not None:
                self._append_to_file_locked(entry)
        return entry

    def entries(self) -> List[SyncLogEntry]:
        with self._lock:
            return list(self._entries)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if not self.path.exists():
            return
        loaded: List[SyncLogEntry] = []
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                for line in fh:
                    line = line.strip()
                    if not line:
                        continue
                    payload = json.loads(line)
                    checksum = payload.pop("checksum", "")
                    if checksum and checksum != _checksum_payload(payload):
                        log_warning("Skipping corrupt history line (checksum mismatch)", path=str(self.path))
                        continue
                    loaded.append(SyncLogEntry.from_payload(payload))
        except (OSError, ValueError, KeyError) as exc:
            log_error(f"Failed to load sync history: {exc}", path=str(self.path))
            try:
                self.path.rename(self.path.with_suffix(".corrupt"))
            except OSError as rename_exc:
                log_warning(f"Could not set aside corrupt history file: {rename_exc}")
            return
        # File is oldest first
        for entry in loaded[-self.limit:]:
            self._entries.appendleft(entry)
        self._lines_on_disk = len(loaded)

    def _append_to_file_locked(self, entry: SyncLogEntry) -> None:
        if self._lines_on_disk >= self.limit * 2:
            self._rewrite_file_locked()
        payload = entry.to_payload()
        payload["checksum"] = _checksum_payload(payload)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(payload, ensure_ascii=False) + "\n")
            self._lines_on_disk += 1
        except OSError as exc:
            log_error(f"Failed to append sync history entry: {exc}", path=str(self.path))

    def _rewrite_file_locked(self) -> None:
        """Compact the file to the entries currently kept in memory.

        Called before appending, so the newest in-memory entry is the one
        being added and is skipped here.
        """
        kept = list(self._entries)[1:]
        tmp = self.path.with_suffix(".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as fh:
                for entry in reversed(kept):
                    payload = entry.to_payload()
                    payload["checksum"] = _checksum_payload(payload)
                    fh.write(json.dumps(payload, ensure_ascii=False) + "\n")
            tmp.replace(self.path)
            self._lines_on_disk = len(kept)
        except OSError as exc:
            log_error(f"Failed to compact sync history: {exc}", path=str(self.path))
            if tmp.exists():
                tmp.unlink()
