"""
Logging setup for the work-unit history store.

Console output is line-oriented and carries the thread name, since most of
the interesting traffic comes from concurrent writer threads. JSON output
(`LOG_JSON=true`) flattens every `extra=` field into the document so store
paths, natural keys and migration counters stay queryable.

Usage:
    from wuhistory.utils.logging import bind_logger, configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = bind_logger(get_logger(__name__), store="WuHistory.db3")
    log.info("Inserted work unit", extra={"project_id": 2669})
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, Tuple

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(name)s | %(message)s"

# Attributes every LogRecord has; anything else arrived through `extra=`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "extra"}


def record_payload(record: logging.LogRecord) -> Dict[str, Any]:
    """Flatten a record into a JSON-ready dict, custom fields included."""
    payload: Dict[str, Any] = {
        "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "thread": record.threadName,
        "message": record.getMessage(),
    }
    for key, value in vars(record).items():
        if key not in _STANDARD_ATTRS and not key.startswith("_"):
            payload[key] = value
    # `extra={"extra": {...}}` shows up as a nested dict on the record
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        payload.update(nested)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    return payload


class JsonFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return json.dumps(record_payload(record), default=str)


class ContextAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that merges its bound context into each call's `extra`.

    The stock adapter replaces a call's `extra` with its own; here the call
    wins on key clashes and both sets of fields are kept.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def bind_logger(logger: logging.Logger, **context: Any) -> ContextAdapter:
    """Return `logger` with `context` attached to every record it emits."""
    return ContextAdapter(logger, context)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Configure root logging.

    Parameters
    ----------
    level : str
        Level name such as "DEBUG" or "WARNING".
    json_logs : bool
        Emit JSON documents instead of console lines.
    force : bool
        Replace handlers that are already installed. With False an existing
        configuration (e.g. from a host application) is left alone.
    """
    if not force and logging.getLogger().handlers:
        return

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {"format": CONSOLE_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
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
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "ContextAdapter",
    "JsonFormatter",
    "bind_logger",
    "configure_logging",
    "get_logger",
    "record_payload",
]
