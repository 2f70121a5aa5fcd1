"""Structured logging configuration for the governance layer.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from governor.app.core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems.

    Attributes:
        fields: List of fields to include in JSON output
    """

    # Standard fields always included
    STANDARD_FIELDS = ["name", "levelname", "message", "timestamp"]

    # Contextual fields for operation tracking
    CONTEXT_FIELDS = [
        "category",      # Rate limit bucket key
        "cache_key",     # Cache key of the operation
        "operation_id",  # Queue operation identifier
        "priority",      # Queue priority
        "attempt",       # Retry attempt (0-indexed)
        "delay_ms",      # Backoff delay in milliseconds
    ]

    _RESERVED = (
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "timestamp", "logger", "level", "source", "taskName",
    )

    def __init__(
        self,
        fields: Optional[list] = None,
        datefmt: Optional[str] = None,
    ):
        super().__init__(datefmt=datefmt)
        self.fields = fields or (self.STANDARD_FIELDS + self.CONTEXT_FIELDS)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: Dict[str, Any] = {}

        record.message = record.getMessage()

        log_data["timestamp"] = datetime.now().astimezone().isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.message

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Adds default values for category, cache_key and the other context
    fields if not already present, so format strings can reference them.
    """

    CONTEXT_DEFAULTS = {
        "category": None,
        "cache_key": None,
        "operation_id": None,
        "priority": None,
        "attempt": None,
        "delay_ms": None,
    }

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# log_format setting -> (formatter name, dictConfig formatter definition)
_FORMATTERS: Dict[str, tuple] = {
    "text": ("standard", {"format": _TEXT_FORMAT}),
    "structured": (
        "structured",
        {
            "format": _TEXT_FORMAT
            + " - category=%(category)s - cache_key=%(cache_key)s - attempt=%(attempt)s"
        },
    ),
    "json": ("json", {"()": "governor.app.core.logging.JSONFormatter"}),
}

# Third-party loggers kept at WARNING so request-level chatter stays out
_QUIET_LOGGERS = ("httpx", "httpcore", "redis")


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Governance records go to stderr through a single console handler, so
    an embedding application's stdout is left alone. Unknown ``log_format``
    values fall back to plain text.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()
    formatter_name, formatter = _FORMATTERS.get(log_format, _FORMATTERS["text"])

    loggers: Dict[str, Any] = {
        "governor": {
            "level": log_level,
            "handlers": ["console"],
            "propagate": False,
        },
    }
    for name in _QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {formatter_name: formatter},
        "filters": {
            "context": {"()": "governor.app.core.logging.ContextFilter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter_name,
                "stream": sys.stderr,
                "filters": ["context"],
            },
        },
        "loggers": loggers,
    }


def setup_logging() -> None:
    """Configure logging for the governance layer."""
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str = "governor") -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_log_context(
    category: Optional[str] = None,
    cache_key: Optional[str] = None,
    operation_id: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with the extra parameter.

    Args:
        category: Rate limit bucket key
        cache_key: Cache key of the operation
        operation_id: Queue operation identifier
        **extra: Additional custom fields (attempt, delay_ms, ...)

    Returns:
        Dictionary suitable for passing as extra= parameter to logging calls

    Example:
        >>> logger.warning(
        ...     "Rate limit exceeded",
        ...     extra=get_log_context(category="https://api.example.com", attempt=1)
        ... )
    """
    context = {
        "category": category,
        "cache_key": cache_key,
        "operation_id": operation_id,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
