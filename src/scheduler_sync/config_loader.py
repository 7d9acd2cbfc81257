"""Configuration loading and merging for scheduler-sync.

Handles TOML loading, config discovery, deep merging, and environment overlay.
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

# TOML loading: tomllib (3.11+) with tomli fallback
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from .config_schema import SchedulerSyncConfig


CONFIG_FILENAME = "config.toml"

USER_CONFIG_DIR = ".scheduler-sync"
PROJECT_CONFIG_DIR = ".scheduler-sync"

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    # Names kept from the scheduler server
    "GIT_SYNC_BRANCH": (["sync"], "branch"),
    "GIT_SYNC_REMOTE": (["sync"], "remote"),
    # Sync
    "SCHEDULER_SYNC_REPO": (["sync"], "repo_path"),
    "SCHEDULER_SYNC_DEBOUNCE": (["sync"], "debounce_seconds"),
    "SCHEDULER_SYNC_MAX_RETRIES": (["sync"], "max_retries"),
    "SCHEDULER_SYNC_RETRY_DELAY": (["sync"], "base_retry_delay"),
    "SCHEDULER_SYNC_MAX_BACKOFF": (["sync"], "max_backoff"),
    "SCHEDULER_SYNC_HISTORY_FILE": (["sync"], "history_file"),
    # Git identity
    "SCHEDULER_SYNC_GIT_AUTHOR": (["git"], "author"),
    "SCHEDULER_SYNC_GIT_EMAIL": (["git"], "email"),
    # Logging
    "SCHEDULER_SYNC_LOG_LEVEL": (["logging"], "level"),
    "SCHEDULER_SYNC_LOG_DIR": (["logging"], "dir"),
    "SCHEDULER_SYNC_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "SCHEDULER_SYNC_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "SCHEDULER_SYNC_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.scheduler-sync/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Get project-level config directory (.scheduler-sync/).

    Searches upward from project_path to find the directory.
    """
    if project_path is None:
        project_path = Path.cwd()

    if not project_path.is_absolute():
        project_path = project_path.resolve()

    current = project_path
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir():
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _env_to_config_key(env_var: str) -> tuple[list[str], str]:
    """Map environment variable to config path.

    Examples:
        GIT_SYNC_BRANCH -> (["sync"], "branch")
        SCHEDULER_SYNC_GIT_EMAIL -> (["git"], "email")
    """
    return ENV_MAPPING.get(env_var, ([], env_var))


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict."""
    result = _deep_merge({}, config_dict)

    for env_var in ENV_MAPPING:
        value = os.getenv(env_var)
        if value is None:
            continue

        section_path, key_name = _env_to_config_key(env_var)
        current = result
        for section in section_path:
            current = current.setdefault(section, {})

        # Type conversion happens during Pydantic validation
        current[key_name] = value

    return result


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> SchedulerSyncConfig:
    """Load and merge scheduler-sync configuration.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. User config (~/.scheduler-sync/config.toml)
    3. Project config (.scheduler-sync/config.toml)
    4. Environment variables (unless skip_env=True)

    Raises:
        ConfigError: If config files are invalid
    """
    config_dict: Dict[str, Any] = {}

    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(user_config_path))
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    project_config_dir = _get_project_config_dir(project_path)
    if project_config_dir:
        project_config_path = project_config_dir / CONFIG_FILENAME
        if project_config_path.exists():
            try:
                config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
            except ConfigError as e:
                raise ConfigError(f"Invalid project config: {e}")

    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    try:
        return SchedulerSyncConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Get paths to the user and project config files."""
    project_dir = _get_project_config_dir(project_path)
    return {
        "user_config": _get_user_config_dir() / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir else None,
    }


# Global cached config (thread-safe)
_cached_config: Optional[SchedulerSyncConfig] = None
_cached_project_path: Optional[Path] = None
_config_lock = threading.Lock()


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> SchedulerSyncConfig:
    """Get cached config, loading if necessary."""
    global _cached_config, _cached_project_path

    normalized_path = project_path.resolve() if project_path and str(project_path) else None

    with _config_lock:
        if (
            force_reload
            or _cached_config is None
            or _cached_project_path != normalized_path
        ):
            _cached_config = load_config(project_path)
            _cached_project_path = normalized_path

        return _cached_config


def clear_config_cache() -> None:
    """Clear cached config (thread-safe)."""
    global _cached_config, _cached_project_path
    with _config_lock:
        _cached_config = None
        _cached_project_path = None
