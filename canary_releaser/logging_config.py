"""
Centralized logging configuration for canary-releaser.

Console output is structured JSON by default, one object per event, each
tagged with the host name. Optional rotating log files mirror the console
and keep a separate stream of rollout decisions.
"""

import json
import logging
import logging.handlers
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from canary_releaser.errors import ConfigError

DECISION_LOGGER = "canary_releaser.decisions"

# Record attributes copied into structured output when present
_CONTEXT_FIELDS = ("host", "event", "tag", "command", "lock", "outcome", "phase")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class HostFilter(logging.Filter):
    """Stamp every record with the host name."""

    def __init__(self, host: str):
        super().__init__()
        self.host = host

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "host"):
            record.host = self.host
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON for better parsing."""
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_obj[field] = getattr(record, field)

        details = getattr(record, "details", None)
        if isinstance(details, dict):
            for key, value in details.items():
                log_obj.setdefault(key, value)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for console and file logs."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False):
        self.use_colors = use_colors
        super().__init__(
            fmt="%(asctime)s - %(host)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "host"):
            record.host = "-"
        message = super().format(record)
        if self.use_colors and record.levelname in self.COLORS:
            message = message.replace(
                record.levelname, f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}", 1
            )
        details = getattr(record, "details", None)
        if details:
            message += f" {json.dumps(details, default=str)}"
        return message


def level_from_name(level: str) -> int:
    """Translate a configured level name, rejecting unknown names."""
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ConfigError(f"invalid log level: {level}")


def setup_logging(
    level: str = "info",
    log_dir: Optional[str] = None,
    use_json: bool = True,
    host: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 10,
) -> logging.Logger:
    """
    Configure logging for the daemon.

    Args:
        level: Minimum level for console and files (debug/info/warning/error)
        log_dir: Directory for rotating log files, or None for console only
        use_json: Use JSON formatting instead of human-readable lines
        host: Host name stamped on every record (defaults to this host)
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        The configured root logger
    """
    log_level = level_from_name(level)
    host_filter = HostFilter(host or socket.gethostname())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    formatter: logging.Formatter = (
        StructuredFormatter() if use_json else HumanReadableFormatter(use_colors=sys.stdout.isatty())
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(host_filter)
    root_logger.addHandler(console_handler)

    decision_logger = logging.getLogger(DECISION_LOGGER)
    decision_logger.handlers.clear()

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_formatter = StructuredFormatter() if use_json else HumanReadableFormatter()

        main_handler = logging.handlers.RotatingFileHandler(
            log_path / "releaser.log", maxBytes=max_bytes, backupCount=backup_count
        )
        main_handler.setLevel(log_level)
        main_handler.setFormatter(file_formatter)
        main_handler.addFilter(host_filter)
        root_logger.addHandler(main_handler)

        # Error-only log for monitoring
        error_handler = logging.handlers.RotatingFileHandler(
            log_path / "error.log", maxBytes=max_bytes, backupCount=backup_count
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        error_handler.addFilter(host_filter)
        root_logger.addHandler(error_handler)

        # Rollout decisions also go to their own file
        decision_handler = logging.handlers.RotatingFileHandler(
            log_path / "decisions.log", maxBytes=max_bytes, backupCount=backup_count
        )
        decision_handler.setFormatter(StructuredFormatter())
        decision_handler.addFilter(host_filter)
        decision_logger.addHandler(decision_handler)

    # Set third-party loggers to WARNING to reduce noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)

    root_logger.debug(f"Logging initialized - level: {level}, directory: {log_dir}, JSON: {use_json}")
    return root_logger


def log_decision(
    event: str,
    tag: Optional[str] = None,
    level: str = "INFO",
    **details: Any,
) -> None:
    """
    Log one rollout decision point.

    Args:
        event: What happened (skip, phase, promoted, rollback, ...)
        tag: Release tag the decision concerns
        level: Log level name
        **details: Extra structured fields (outcome, command, lock, reason, ...)
    """
    logger = logging.getLogger(DECISION_LOGGER)

    extra: Dict[str, Any] = {"event": event}
    if tag is not None:
        extra["tag"] = tag
    for field in ("command", "lock", "outcome", "phase"):
        if field in details:
            value = details.pop(field)
            extra[field] = getattr(value, "value", value)
    if details:
        extra["details"] = {k: getattr(v, "value", v) for k, v in details.items()}

    message = f"{event}" + (f" tag={tag}" if tag is not None else "")
    log_method = getattr(logger, level.lower())
    log_method(message, extra=extra)
