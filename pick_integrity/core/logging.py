"""
Structured logging with JSON formatting and request context.

This module provides:
- JSON log formatting for structured logging
- Correlation ID and acting-user tracking via context variables
- Logger factory for consistent logger creation

Every pick mutation is logged while the request context is bound, so a lock
rejection or an admin override can be traced back to the request and actor
that caused it.
"""
import logging
import json
import sys
from datetime import datetime
from typing import Any
from contextvars import ContextVar

# Context variables shared across the application
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")

# LogRecord attributes that are not "extra" context
_STANDARD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Fields: timestamp, level, logger, message, correlation_id, actor_id,
    exception (when present) and extra (anything passed via extra=).
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get(),
            "actor_id": actor_id_var.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Human-readable colored console formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "")
        base_msg = f"{level_color}[{record.levelname}]{self.RESET} {record.name}: {record.getMessage()}"

        correlation_id = correlation_id_var.get()
        if correlation_id:
            base_msg += f" | correlation_id={correlation_id}"

        actor_id = actor_id_var.get()
        if actor_id:
            base_msg += f" | actor={actor_id}"

        if record.exc_info:
            base_msg += "\n" + self.formatException(record.exc_info)

        return base_msg


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    handler: logging.Handler | None = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, use JSON formatter. If False, use colored console formatter.
        handler: Optional custom handler. If None, creates StreamHandler to stdout.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)

    handler.setFormatter(JSONFormatter() if json_output else ColoredFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically get_logger(__name__))."""
    return logging.getLogger(name)


def set_correlation_id(correlation_id: str) -> Any:
    """Bind the correlation ID; returns a token for clear_correlation_id()."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Current correlation ID or empty string if not set."""
    return correlation_id_var.get()


def clear_correlation_id(token: Any) -> None:
    """Restore the correlation ID bound before set_correlation_id()."""
    correlation_id_var.reset(token)


def set_actor_id(actor_id: str) -> Any:
    """Bind the acting user ID; returns a token for clear_actor_id()."""
    return actor_id_var.set(actor_id)


def clear_actor_id(token: Any) -> None:
    """Restore the actor ID bound before set_actor_id()."""
    actor_id_var.reset(token)
