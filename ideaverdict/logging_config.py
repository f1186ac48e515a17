"""Structured logging configuration for IdeaVerdict.

This module provides centralized logging configuration with support for:
- Structured JSON logging for production
- Pretty console logging for development
- Log rotation and file output
- Request ID tracking
- Redaction of credentials before anything is written

Example:
    >>> from ideaverdict.logging_config import setup_logging, get_logger
    >>> setup_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("Request handled", extra={"capability": "evaluate"})

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

# Default configuration
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_DIR = "logs"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

REDACTED = "[REDACTED]"

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
}

# Global state
_logging_initialized = False
_log_context: ContextVar[dict[str, Any]] = ContextVar("ideaverdict_log_context", default={})


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for easy parsing by log
    aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                try:
                    json.dumps(value)  # Check if serializable
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        return json.dumps(log_data)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None):
        super().__init__(fmt or DEFAULT_LOG_FORMAT, datefmt or DEFAULT_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        original = record.levelname
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class SecretRedactionFilter(logging.Filter):
    """Masks credentials in log messages.

    Covers Google API keys, bearer tokens and ``key=`` query parameters.
    Additional literal secrets (e.g. the configured API keys) can be
    registered so they are masked wherever they appear.
    """

    PATTERNS = (
        re.compile(r"AIza[0-9A-Za-z_\-]{20,}"),
        re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-~+/]+=*"),
        re.compile(r"(?i)([?&]key=)[^&\s]+"),
    )

    def __init__(self, name: str = "", secrets: list[str] | None = None):
        super().__init__(name)
        self.secrets = [s for s in (secrets or []) if s]

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        for pattern in self.PATTERNS:
            if pattern.groups:
                text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
            else:
                text = pattern.sub(REDACTED, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    level: str | int = DEFAULT_LOG_LEVEL,
    json_format: bool = False,
    log_file: str | Path | None = None,
    log_dir: str | Path = DEFAULT_LOG_DIR,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    capture_warnings: bool = True,
    secrets: list[str] | None = None,
) -> None:
    """Configure logging for the application.

    Sets up console and optional file handlers with appropriate formatters.
    Call this once at application startup.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: If True, use JSON structured logging.
        log_file: Optional log file name. If provided, logs to file.
        log_dir: Directory for log files.
        max_bytes: Maximum size of log file before rotation.
        backup_count: Number of backup files to keep.
        capture_warnings: If True, capture Python warnings to logging.
        secrets: Literal values to mask in every log line.
    """
    global _logging_initialized

    if _logging_initialized:
        return

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    redaction = SecretRedactionFilter(secrets=secrets)
    context = ContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.addFilter(context)
    console_handler.addFilter(redaction)

    if json_format:
        console_handler.setFormatter(StructuredFormatter())
    elif sys.stdout.isatty():
        console_handler.setFormatter(ColoredFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT))

    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir) / log_file
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setLevel(level)
        file_handler.addFilter(context)
        file_handler.addFilter(redaction)

        # Always use structured format for file logs
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    if capture_warnings:
        logging.captureWarnings(True)

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _logging_initialized = True


def reset_logging() -> None:
    """Allow ``setup_logging`` to run again. For tests."""
    global _logging_initialized
    _logging_initialized = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class ContextFilter(logging.Filter):
    """Copies the active ``LogContext`` fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class LogContext:
    """Context manager for adding temporary context to logs.

    Context lives in a ``ContextVar``, so concurrent requests on one event
    loop each see only their own fields.

    Example:
        >>> with LogContext(request_id="abc123", capability="chat"):
        ...     logger.info("Processing request")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs
        self._token = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def current_context() -> dict[str, Any]:
    """Fields of the innermost active ``LogContext``."""
    return dict(_log_context.get())


# Environment-based configuration
def setup_from_env(secrets: list[str] | None = None) -> None:
    """Configure logging from environment variables.

    Environment variables:
        IDEAVERDICT_LOG_LEVEL: Log level (default: INFO)
        IDEAVERDICT_LOG_JSON: Use JSON format (default: false)
        IDEAVERDICT_LOG_FILE: Log file name (default: None)
        IDEAVERDICT_LOG_DIR: Log directory (default: logs)
    """
    level = os.environ.get("IDEAVERDICT_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    json_format = os.environ.get("IDEAVERDICT_LOG_JSON", "false").lower() == "true"
    log_file = os.environ.get("IDEAVERDICT_LOG_FILE")
    log_dir = os.environ.get("IDEAVERDICT_LOG_DIR", DEFAULT_LOG_DIR)

    setup_logging(
        level=level,
        json_format=json_format,
        log_file=log_file,
        log_dir=log_dir,
        secrets=secrets,
    )
