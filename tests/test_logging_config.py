"""Tests for logging setup and failure tracking."""

import logging

import pytest

from sdnredirect.logging_config import ErrorTracker, setup_logging
from sdnredirect.redirection import BackendFailure, PortNotFoundError


def test_setup_logging_console_only() -> None:
    logger = setup_logging(level="WARNING")

    assert logger.name == "sdnredirect"
    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
    assert not logger.propagate


def test_setup_logging_twice_does_not_duplicate_handlers() -> None:
    setup_logging(level="INFO")
    logger = setup_logging(level="INFO")

    assert len(logger.handlers) == 1


def test_setup_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="Unknown log level"):
        setup_logging(level="LOUD")


def test_log_file_records_debug_with_location(tmp_path) -> None:
    log_file = tmp_path / "logs" / "redirect.log"
    logger = setup_logging(level="ERROR", log_file=str(log_file), console=False)

    logging.getLogger("sdnredirect.redirection.hooks").debug("hook h-1 already absent")
    for handler in logger.handlers:
        handler.flush()

    line = log_file.read_text().strip()
    assert "hook h-1 already absent" in line
    assert "| DEBUG" in line
    assert "sdnredirect.redirection.hooks:" in line


def test_console_level_still_applies_with_file(tmp_path) -> None:
    logger = setup_logging(level="WARNING", log_dir=str(tmp_path))

    console, rotating = logger.handlers
    assert console.level == logging.WARNING
    assert rotating.level == logging.DEBUG
    assert (tmp_path / "sdnredirect.log").exists()


def test_tracker_counts_and_keeps_recent(caplog) -> None:
    tracker = ErrorTracker(keep=2)

    with caplog.at_level(logging.INFO, logger="sdnredirect.redirection"):
        tracker.record("install_inspection_hook", PortNotFoundError("ghost"))
        tracker.record("create_hook", BackendFailure("rejected"), severe=True)
        tracker.record("delete_port", BackendFailure("busy"), severe=True)

    assert tracker.counts() == {"PortNotFoundError": 1, "BackendFailure": 2}
    assert [r.operation for r in tracker.recent()] == ["create_hook", "delete_port"]
    assert tracker.last.message == "busy"
    assert [r.levelname for r in caplog.records] == ["INFO", "ERROR", "ERROR"]

    tracker.reset()
    assert tracker.counts() == {}
    assert tracker.last is None


def test_failure_record_to_dict() -> None:
    record = ErrorTracker().record("reconcile", BackendFailure("timeout"), severe=True)

    data = record.to_dict()
    assert data["operation"] == "reconcile"
    assert data["error_type"] == "BackendFailure"
    assert data["occurred_at"].endswith("+00:00")
