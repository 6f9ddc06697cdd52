from __future__ import annotations

import json
import logging
import sys
from typing import Any

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RECORD_ATTRIBUTES = frozenset(
    [
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
        "taskName",
        "message",
    ]
)


class StructuredJSONFormatter(logging.Formatter):
    """Render each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_"):
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_structured_logging(level: str = "INFO") -> None:
    """Route the root logger (and therefore kopf) through the JSON formatter."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJSONFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("kopf").setLevel(level)
    # The kubernetes client logs every request body at DEBUG
    logging.getLogger("kubernetes").setLevel(max(logging.getLevelName(level), logging.INFO))


class StructuredLogger:
    """Logger that attaches structured fields to every record.

    ``bind`` returns a child logger carrying default fields, which is how
    per-request context (controller, resource, uid) travels through a
    reconciliation without global state.
    """

    def __init__(self, name: str, fields: dict[str, Any] | None = None):
        self._logger = logging.getLogger(name)
        self._fields: dict[str, Any] = dict(fields or {})

    @property
    def fields(self) -> dict[str, Any]:
        return dict(self._fields)

    def bind(self, **fields: Any) -> StructuredLogger:
        child = StructuredLogger(self._logger.name, self._fields)
        child._fields.update({k: v for k, v in fields.items() if v is not None})
        return child

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        extra = dict(self._fields)
        extra.update({k: v for k, v in fields.items() if v is not None})
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)


# Global logger instance
logger = StructuredLogger("cji-operator")
