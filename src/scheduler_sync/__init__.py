"""scheduler-sync: Git-backed synchronization for scheduler data."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("scheduler-sync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .backend import GitBackend, GitBackendError, GitSyncError, RepoStatus  # noqa: F401
from .git_sync import GitSyncService  # noqa: F401
from .models import (  # noqa: F401
    ChangeInfo,
    ConflictInfo,
    SyncLogEntry,
    SyncResult,
    SyncState,
    SyncStatus,
)

__all__ = [
    "ChangeInfo",
    "ConflictInfo",
    "GitBackend",
    "GitBackendError",
    "GitSyncError",
    "GitSyncService",
    "RepoStatus",
    "SyncLogEntry",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "__version__",
]
