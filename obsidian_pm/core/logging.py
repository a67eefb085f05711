"""
Structured logging for the Obsidian backend.

Everything logs under the "obsidian" logger. Records carry the current
request id (bound per request by RequestIdMiddleware) plus whatever
structured fields were passed through `extra`. Production emits one JSON
object per line; other environments emit `key=value` lines.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "obsidian"
MAX_FIELD_CHARS = 500

_request_id: ContextVar[Optional[str]] = ContextVar("obsidian_request_id", default=None)

# Attributes every LogRecord has; the rest arrived through `extra`
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def bind_request_id(request_id: str) -> Token:
    return _request_id.set(request_id)


def unbind_request_id(token: Token) -> None:
    _request_id.reset(token)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    """Request id bound to the current context, or `default`."""
    bound = _request_id.get()
    return default if bound is None else bound


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Structured fields attached to `record`, minus empty values."""
    return {
        name: value
        for name, value in vars(record).items()
        if name not in _STANDARD_ATTRS and value is not None
    }


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON lines when `as_json`, readable key=value lines otherwise."""

    def __init__(self, as_json: bool = False):
        super().__init__()
        self.as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created, timezone.utc)
        fields = record_fields(record)

        if self.as_json:
            entry = {
                "ts": when.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                "level": record.levelname.lower(),
                "logger": record.name,
                "message": record.getMessage(),
                **fields,
            }
            if record.exc_info:
                entry["exc_info"] = self.formatException(record.exc_info)
            return json.dumps(entry, default=str)

        pairs = " ".join(f"{key}={fields[key]}" for key in sorted(fields))
        line = f"{when:%H:%M:%S} {record.levelname:<7} {record.getMessage()}"
        if pairs:
            line = f"{line}  {pairs}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: Optional[str] = None) -> None:
    """Install the stdout handler on the "obsidian" logger (idempotent)."""
    logger = get_logger()
    logger.setLevel((level or os.getenv("LOG_LEVEL") or "INFO").upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(as_json=env.lower() == "production"))
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    # Keep propagating so pytest's caplog and host loggers still see records
    logger.propagate = True

    logging.getLogger("uvicorn.access").propagate = False


def _clip(value: Any) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unprintable>"
    if len(text) > MAX_FIELD_CHARS:
        return f"{text[:MAX_FIELD_CHARS]}...<truncated>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
    exc_info: bool = False,
) -> None:
    """
    Emit one structured record on the "obsidian" logger.

    `extra` values are stringified and clipped so arbitrary exception text or
    payload fragments cannot blow up a log line. Keys that collide with
    LogRecord attributes or the fixed fields are stored as `extra_<key>`.
    """
    logger = get_logger()
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "event_type": event_type,
        "error_code": error_code,
    }
    for key, value in (extra or {}).items():
        if key in _STANDARD_ATTRS or key in fields:
            key = f"extra_{key}"
        fields[key] = _clip(value)

    logger.log(logging.getLevelName(level.upper()), msg, extra=fields, exc_info=exc_info)
