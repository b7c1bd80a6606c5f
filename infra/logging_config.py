"""Centralized logging configuration.

The server supports both human-friendly text logs and structured JSON logs.
``setup_logging`` is defensive by default so it does not break environments
(gunicorn, pytest) that already configure root handlers.
"""

from __future__ import annotations

import json
import logging
import secrets
import sys
import time
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from infra.config import get_settings

# Per-request context merged into every JSON log line (request_id, client_ip...).
request_ctx: ContextVar[dict[str, Any] | None] = ContextVar("request_ctx", default=None)


def set_request_context(**kwargs: Any) -> None:
    """Set context values that will be included in all subsequent log entries."""
    current = request_ctx.get()
    if current is None:
        current = {}
    else:
        current = dict(current)
    current.update(kwargs)
    request_ctx.set(current)


def clear_request_context() -> None:
    """Clear the request context (typically at the start of a new request)."""
    request_ctx.set({})


def get_request_context() -> dict[str, Any]:
    """Get a copy of the current request context."""
    ctx = request_ctx.get()
    return dict(ctx) if ctx else {}


def new_request_id() -> str:
    """Return a short random id used to correlate the log lines of one request."""
    return secrets.token_hex(8)


def _utc_iso8601() -> str:
    # Example: 2026-01-24T18:03:12.123Z
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


_STANDARD_RECORD_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
    "relativeCreated", "thread", "threadName", "processName", "process", "taskName",
})


class JsonFormatter(logging.Formatter):
    """
    JSON formatter:
      - Always outputs valid JSON (message escaped via json.dumps)
      - Adds `extra={...}` fields and the request context
      - Includes exception info when present
    """

    def __init__(self, *, extra_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": _utc_iso8601(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
            "thread": record.thread,
        }

        for k, v in record.__dict__.items():
            if k not in _STANDARD_RECORD_ATTRS and k not in base:
                base[k] = v

        for k, v in self._extra_fields.items():
            base.setdefault(k, v)

        if record.exc_info:
            base["exception"] = self.formatException(record.exc_info)

        ctx = request_ctx.get()
        if ctx:
            for k, v in ctx.items():
                base.setdefault(k, v)

        return json.dumps(base, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """
    Human-friendly logs, but UTC timestamps.
    """
    converter = time.gmtime  # UTC

    def __init__(self) -> None:
        super().__init__("%(asctime)sZ | %(levelname)s | %(name)s | %(message)s")


class StructuredLogger:
    """
    Event-style logger: an event name plus key/value fields.

    Usage:
        logger = StructuredLogger(__name__)
        set_request_context(request_id="9f2c...")
        logger.info("snapshot_served", bytes=1234, cached=True)

    In text mode the fields are rendered as ``key=value`` after the event name;
    in JSON mode they become top-level keys.
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event: str, exc_info: bool = False, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        ctx = get_request_context()
        fields = " ".join(f"{k}={v}" for k, v in {**ctx, **kwargs}.items())
        message = f"{event} {fields}" if fields else event
        self._logger.log(level, message, exc_info=exc_info, extra={"event": event, **kwargs})

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, event, **kwargs)

    def exception(self, event: str, **kwargs: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, event, exc_info=True, **kwargs)


def _build_handler(*, json_logs: bool, extra_fields: Mapping[str, Any] | None) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    formatter: logging.Formatter = (
        JsonFormatter(extra_fields=extra_fields) if json_logs else TextFormatter()
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    *,
    level: str | None = None,
    json_logs: bool | None = None,
    override_root_handlers: bool | None = None,
    extra_fields: Mapping[str, Any] | None = None,
) -> None:
    """Configure the root logger from ``LoggingSettings``; arguments win over env.

    Env vars (flat or ``LOGGING__*`` nested names):
      - SNAPSHOT_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default INFO)
      - SNAPSHOT_LOG_JSON: 1/0 (default 0)
      - SNAPSHOT_LOG_OVERRIDE: 1/0 (default 0). When off, a root logger that
        already has handlers (gunicorn, pytest) is left alone.
    """
    settings = get_settings(reload=True).logging
    level_name = (level or settings.level).upper()
    use_json = settings.json_logs if json_logs is None else json_logs
    replace = settings.override_root_handlers if override_root_handlers is None else override_root_handlers

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if replace:
        for existing in list(root.handlers):
            root.removeHandler(existing)
    if replace or not root.handlers:
        root.addHandler(_build_handler(json_logs=bool(use_json), extra_fields=extra_fields))

    # Request lines are emitted by the app itself.
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
