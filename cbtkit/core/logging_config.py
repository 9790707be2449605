"""
Centralized logging configuration with structured logging support.
"""
import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from cbtkit.core.config import settings

# Structured fields that library modules attach through ``extra=...``.
_STRUCTURED_FIELDS = (
    "status",
    "n_forms",
    "n_items",
    "n_rows",
    "n_variables",
    "duration_ms",
    "session_id",
)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for machine-readable logging.

    Produces structured log entries with consistent fields for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in _STRUCTURED_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        # Add source location for error-level logs
        if record.levelno >= logging.ERROR:
            log_entry["source"] = f"{record.pathname}:{record.lineno}"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Configure logging for applications embedding cbtkit.

    Args:
        level: Log level name; defaults to ``settings.LOG_LEVEL``.
        fmt: ``"text"`` or ``"json"``; defaults to ``settings.LOG_FORMAT``.
    """
    log_level_name = level or settings.LOG_LEVEL
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    formatter = fmt or settings.LOG_FORMAT

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "json" if formatter == "json" else "default",
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
        "loggers": {
            "cbtkit": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            # HiGHS progress goes through scipy; keep it quiet unless asked
            "scipy": {
                "level": logging.WARNING,
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
