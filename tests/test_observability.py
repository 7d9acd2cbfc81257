import json
import logging

import pytest

import scheduler_sync.observability as obs
from scheduler_sync.config_schema import LoggingConfig

log_action = obs.log_action
log_debug = obs.log_debug
log_warning = obs.log_warning
log_error = obs.log_error
timeit = obs.timeit
LOGGER_NAME = obs.LOGGER_NAME


@pytest.fixture(autouse=True)
def reset_logger():
    """Reset logger state between tests."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    obs._logger_initialized = False
    obs._session_start = None
    yield
    logger.handlers.clear()
    obs._logger_initialized = False
    obs._session_start = None


def test_log_action_emits_json(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    log_action("git.push", outcome="ok", duration_ms=12.345, remote="origin", branch="main")
    data = json.loads(caplog.records[-1].message)
    assert data["action"] == "git.push"
    assert data["outcome"] == "ok"
    assert data["duration_ms"] == 12.35
    assert data["remote"] == "origin"
    assert data["branch"] == "main"


def test_timeit_success_logs_extra_fields(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    with timeit("git.commit", changes=3) as info:
        info["commit"] = "abc123"
    data = json.loads(caplog.records[-1].message)
    assert data["action"] == "git.commit"
    assert data["outcome"] == "ok"
    assert data["changes"] == 3
    assert data["commit"] == "abc123"
    assert isinstance(data["duration_ms"], (int, float))


def test_timeit_error_logs_and_reraises(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    with pytest.raises(RuntimeError):
        with timeit("git.pull", remote="origin"):
            raise RuntimeError("boom")
    data = json.loads(caplog.records[-1].message)
    assert data["outcome"] == "error"
    assert data["error"] == "boom"
    assert data["remote"] == "origin"


def test_log_debug_with_fields(caplog, monkeypatch):
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_LEVEL", "DEBUG")
    caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
    log_debug("Commit scheduled", pending=2)
    msg = caplog.records[-1].message
    assert msg.startswith("Commit scheduled ")
    assert '"pending":2' in msg


def test_log_debug_not_emitted_at_info(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    log_debug("should not appear")
    assert [r for r in caplog.records if r.levelno == logging.DEBUG] == []


def test_warning_and_error_levels(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER_NAME)
    log_warning("retrying")
    log_error("gave up")
    assert [r.levelno for r in caplog.records[-2:]] == [logging.WARNING, logging.ERROR]


def test_log_level_from_env(monkeypatch):
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_LEVEL", "warning")
    assert obs._get_log_level() == logging.WARNING
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_LEVEL", "nonsense")
    assert obs._get_log_level() == logging.INFO


def test_disable_file_logging(monkeypatch):
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_DISABLE_FILE", "1")
    assert obs._get_log_file_path() is None


def test_custom_log_dir(monkeypatch, tmp_path):
    monkeypatch.delenv("SCHEDULER_SYNC_LOG_DISABLE_FILE", raising=False)
    custom_dir = tmp_path / "custom_logs"
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_DIR", str(custom_dir))
    path = obs._get_log_file_path()
    assert path is not None
    assert path.parent == custom_dir
    assert path.name.startswith("scheduler-sync_")
    assert custom_dir.exists()


def test_apply_logging_config_respects_explicit_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SCHEDULER_SYNC_LOG_LEVEL", "ERROR")
    for name in ("SCHEDULER_SYNC_LOG_MAX_BYTES", "SCHEDULER_SYNC_LOG_BACKUP_COUNT"):
        # setenv first so the variable is restored to its original state afterwards
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)

    obs.apply_logging_config(LoggingConfig(level="DEBUG", max_bytes=1024, backup_count=2))

    assert obs._get_log_level() == logging.ERROR
    assert obs.os.environ["SCHEDULER_SYNC_LOG_MAX_BYTES"] == "1024"
    assert obs.os.environ["SCHEDULER_SYNC_LOG_BACKUP_COUNT"] == "2"
