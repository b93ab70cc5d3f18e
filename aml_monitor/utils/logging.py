"""
Structured logging utilities for the AML velocity monitor.

The CLI configures logging once at start-up; every other module only asks for a
named logger. Console output is a single pipe-separated line per record. With
`JSON_LOGS=true` each record becomes one JSON object, and fields passed via
`extra=` (records, alerts, watermark, delta, ...) land as top-level keys so log
shippers can index them.

Usage:
    from aml_monitor.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("[PASS COMPLETE] aml_processing", extra={"records": 50, "alerts": 2})
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as a JSON string with extra fields promoted."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    payload.update(
        (key, value)
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and key != "extra"
    )
    # Older call sites pass `extra={"extra": {...}}`.
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        payload.update(nested)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def logging_config(level: str = "INFO", json_logs: bool = False) -> Dict[str, Any]:
    """
    Build the dictConfig mapping used by `configure_logging`.

    The connection pool logs every reconnect attempt at INFO; it is held at
    WARNING so the monitor's own lines stay readable.
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": CONSOLE_FORMAT, "datefmt": CONSOLE_DATEFMT},
            "json": {"()": JsonFormatter},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_logs else "console",
                "level": level,
            }
        },
        "root": {"handlers": ["default"], "level": level},
        "loggers": {
            "aml_monitor": {"level": level, "propagate": True},
            "psycopg.pool": {"level": "WARNING", "propagate": True},
        },
    }


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure root logging for the process.

    Parameters
    ----------
    level : str
        Logging level name (e.g., "DEBUG", "INFO", "WARNING").
    json_logs : bool
        Emit one JSON object per record instead of the console format.
    """
    logging.config.dictConfig(logging_config(level=level.upper(), json_logs=json_logs))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "logging_config", "JsonFormatter"]
