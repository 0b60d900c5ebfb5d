"""
Logging configuration for SDN Redirect.

All modules log through children of the "sdnredirect" logger. The CLI
calls setup_logging() once; library users can attach their own handlers
instead.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import sys
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "sdnredirect"
LOG_FILE_NAME = "sdnredirect.log"

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | "
    "%(threadName)s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_dir: str | None = None,
    console: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Configure the package logger.

    Console output goes to stderr so JSON printed by the CLI stays clean.
    A rotating file handler is added when `log_file` or `log_dir` is set;
    it always records DEBUG so rollbacks and no-op removals are kept.

    Args:
        level: Console level (DEBUG, INFO, WARNING, ERROR)
        log_file: Log file path
        log_dir: Directory for sdnredirect.log, used when log_file is unset
        console: Attach the stderr handler
        max_bytes: Rotate after this many bytes
        backup_count: Rotated files to keep

    Returns:
        The "sdnredirect" logger
    """
    console_level = _parse_level(level)
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(console_level)
        stream.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
        logger.addHandler(stream)

    log_path = None
    if log_file:
        log_path = Path(log_file).expanduser()
    elif log_dir:
        log_path = Path(log_dir).expanduser() / LOG_FILE_NAME

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        rotating.setLevel(logging.DEBUG)
        rotating.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
        logger.addHandler(rotating)

    logger.setLevel(logging.DEBUG if log_path is not None else console_level)
    logger.propagate = False
    return logger


@dataclass
class FailureRecord:
    """One failed controller operation."""

    operation: str
    error_type: str
    message: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        return {
            "operation": self.operation,
            "error_type": self.error_type,
            "message": self.message,
            "occurred_at": self.occurred_at.isoformat(),
        }


class ErrorTracker:
    """Counts failed controller operations by error type.

    Severe failures (the backend rejected or failed a request) are logged
    at ERROR with the traceback; the rest, such as lookups that found
    nothing, only at INFO.
    """

    def __init__(self, logger_name: str = "sdnredirect.redirection", keep: int = 20):
        self.logger = logging.getLogger(logger_name)
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()
        self._recent: deque[FailureRecord] = deque(maxlen=keep)

    def record(self, operation: str, error: Exception, severe: bool = False) -> FailureRecord:
        """Count `error` raised by `operation` and log it."""
        record = FailureRecord(
            operation=operation,
            error_type=type(error).__name__,
            message=str(error),
        )
        with self._lock:
            self._counts[record.error_type] += 1
            self._recent.append(record)

        if severe:
            self.logger.error(f"{operation} failed: {record.error_type}: {error}", exc_info=error)
        else:
            self.logger.info(f"{operation}: {record.error_type}: {error}")
        return record

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def recent(self) -> list[FailureRecord]:
        """Most recent failures, oldest first."""
        with self._lock:
            return list(self._recent)

    @property
    def last(self) -> FailureRecord | None:
        with self._lock:
            return self._recent[-1] if self._recent else None

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._recent.clear()
