"""Data records shared by the sync engine and its callers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ulid import ULID


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    CONFLICT = "conflict"


CHANGE_KINDS = ("add", "update", "delete")
LOG_OPERATIONS = ("commit", "push", "pull", "resolve")
LOG_OUTCOMES = ("success", "error", "conflict")


@dataclass(frozen=True)
class SyncState:
    """Snapshot of the engine state.

    Instances are immutable; the coordinator replaces the whole record on
    every transition so snapshots handed to callers never change under them.
    """

    status: SyncStatus = SyncStatus.IDLE
    last_sync_time: Optional[str] = None
    pending_changes: int = 0
    error: Optional[str] = None
    conflict_files: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "last_sync_time": self.last_sync_time,
            "pending_changes": self.pending_changes,
            "error": self.error,
            "conflict_files": list(self.conflict_files),
        }


@dataclass(frozen=True)
class ChangeInfo:
    """A single local mutation reported by the application."""

    kind: str
    entity: str
    title: str

    def __post_init__(self) -> None:
        if self.kind not in CHANGE_KINDS:
            raise ValueError(f"Unknown change kind: {self.kind!r} (expected one of {', '.join(CHANGE_KINDS)})")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChangeInfo":
        return cls(
            kind=payload.get("type") or payload.get("kind") or "update",
            entity=payload.get("entity") or "task",
            title=payload.get("title") or "Unknown",
        )


@dataclass(frozen=True)
class SyncLogEntry:
    operation: str
    outcome: str
    message: str
    details: Optional[str] = None
    commit_ref: Optional[str] = None
    id: str = field(default_factory=lambda: f"log-{ULID()}")
    timestamp: str = field(default_factory=now_iso)

    def __post_init__(self) -> None:
        if self.operation not in LOG_OPERATIONS:
            raise ValueError(f"Unknown log operation: {self.operation!r}")
        if self.outcome not in LOG_OUTCOMES:
            raise ValueError(f"Unknown log outcome: {self.outcome!r}")

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SyncLogEntry":
        return cls(
            id=str(payload["id"]),
            timestamp=str(payload["timestamp"]),
            operation=payload["operation"],
            outcome=payload["outcome"],
            message=payload.get("message", ""),
            details=payload.get("details"),
            commit_ref=payload.get("commit_ref"),
        )


@dataclass(frozen=True)
class ConflictInfo:
    """View over a conflicted file, rebuilt from disk on every query."""

    file: str
    local_content: str
    remote_content: str
    base_content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SyncResult:
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            payload["error"] = self.error
        return payload
