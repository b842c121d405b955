"""Logging setup for the CLI and the long-running manager.

Everything logs under the ``devharbor`` logger. Records pass through
:class:`RedactingFilter` so credentials that appear in child command lines,
git URLs or AI prompts never reach the terminal or the log file. The file
handler rotates because ``watch`` and foreground ``start`` can run for days.
"""

from __future__ import annotations

import logging as py_logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from devharbor.sanitize import sanitize_log_text

ROOT_LOGGER = "devharbor"
LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
DEFAULT_LOG_PATH = Path("~/.config/devharbor/logs/devharbor.log")
_FALLBACK_LOG_PATH = Path(".devharbor/logs/devharbor.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"
LOG_FILE_MAX_BYTES = 2 * 1024 * 1024
LOG_FILE_BACKUPS = 3
# Records carry whole output chunks; keep them readable but bounded.
MAX_RECORD_LENGTH = 4000


class RedactingFilter(py_logging.Filter):
    def filter(self, record: py_logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = sanitize_log_text(message, limit=MAX_RECORD_LENGTH)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def resolve_level(level: str) -> int:
    normalized = level.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    return LOG_LEVELS.get(normalized, py_logging.INFO)


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        return (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    return resolved if resolved.is_absolute() else resolved.resolve()


def _open_file_handler(log_file: str | Path) -> py_logging.Handler | None:
    try:
        log_path = Path(log_file).expanduser()
    except RuntimeError:
        log_path = Path(log_file)
    try:
        log_path = log_path.resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            log_path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"devharbor: file logging disabled ({exc})", file=sys.stderr)
        return None


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """Reset the ``devharbor`` logger to one console handler plus an optional DEBUG file."""
    resolved = resolve_level(level)
    logger = py_logging.getLogger(ROOT_LOGGER)
    logger.setLevel(py_logging.DEBUG if log_file else resolved)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    formatter = py_logging.Formatter(_FORMAT)
    redactor = RedactingFilter()

    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(resolved)
    console.setFormatter(formatter)
    console.addFilter(redactor)
    logger.addHandler(console)

    if log_file:
        file_handler = _open_file_handler(log_file)
        if file_handler is not None:
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(redactor)
            logger.addHandler(file_handler)
        else:
            logger.setLevel(resolved)

    logger.propagate = False
    return logger
