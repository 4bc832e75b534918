"""
Logging Configuration for the RBAC authority.

Every record leaving a handler installed here carries:
- ``request_id``: the X-Request-ID of the HTTP request being served
- ``actor_id``: the acting user from the X-User-Id header, when known
- any fields passed through ``extra=`` (user_id, role_name, ...)

Production uses one JSON object per line; development gets a coloured
single-line format.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
from pathlib import Path
from contextvars import ContextVar

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime"}

# Chatty third-party loggers capped at WARNING
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "celery.worker.strategy")


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields a caller attached to ``record`` beyond the standard ones."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class RequestContextFilter(logging.Filter):
    """Copy the current request id and acting user onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        if getattr(record, "actor_id", None) is None:
            record.actor_id = user_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, ``None`` context fields omitted."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            (key, value) for key, value in record_fields(record).items() if value is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter for development.

        12:00:01.123 INFO     [rbac.assignments] (req 9f2c) Role deactivated | user_id=42
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        fields = record_fields(record)
        request_id = fields.pop("request_id", None)
        fields.pop("actor_id", None)

        parts = [
            datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3],
            f"{color}{record.levelname:8s}{self.RESET}",
            f"[{record.name}]",
        ]
        if request_id:
            parts.append(f"(req {request_id[:8]})")
        parts.append(record.getMessage())

        line = " ".join(parts)
        if fields:
            line += " | " + " | ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())
    return handler


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Path] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: Root log level name
        json_output: JSON to stdout instead of the readable format
        log_file: Also append JSON records to this file
        quiet: Logger names capped at WARNING
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_formatter = JsonFormatter() if json_output else ReadableFormatter()
    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), console_formatter))

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_handler(logging.FileHandler(log_file), JsonFormatter()))

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
