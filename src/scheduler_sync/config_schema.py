"""Configuration schema for scheduler-sync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class SyncConfig(BaseModel):
    """Synchronization engine settings."""

    repo_path: str = Field(
        default="",
        description="Working directory kept in sync (empty = current directory)",
    )
    branch: str = Field(
        default="main",
        description="Branch pulled from and pushed to",
    )
    remote: str = Field(
        default="origin",
        description="Remote pulled from and pushed to",
    )
    debounce_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Quiet period after the last change before a batch is committed",
    )
    max_retries: int = Field(
        default=5,
        ge=1,
        description="Maximum push attempts (including the first one)",
    )
    base_retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the first push retry, doubled on every retry",
    )
    max_backoff: float = Field(
        default=300.0,
        ge=0,
        description="Upper bound for a single retry delay in seconds",
    )
    history_limit: int = Field(
        default=50,
        ge=1,
        description="Number of sync log entries kept (newest first)",
    )
    history_file: str = Field(
        default="",
        description="JSONL file the sync log is persisted to (empty = memory only)",
    )

    @field_validator("branch", "remote")
    @classmethod
    def validate_ref_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        if any(ch.isspace() for ch in v):
            raise ValueError(f"must not contain whitespace: {v!r}")
        return v

    @field_validator("repo_path")
    @classmethod
    def validate_repo_path(cls, v: str) -> str:
        """Warn if the repository path points at a file."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Repository path is not a directory: {v}",
                    UserWarning,
                )
        return v


class GitConfig(BaseModel):
    """Commit identity used for automated commits."""

    author: str = Field(
        default="Scheduler App",
        description="Git commit author name",
    )
    email: str = Field(
        default="scheduler@localhost",
        description="Git commit author email",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.scheduler-sync/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log directory doesn't exist (will be created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class SchedulerSyncConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    sync: SyncConfig = Field(default_factory=SyncConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "SchedulerSyncConfig":
        """Create config with all defaults."""
        return cls()
