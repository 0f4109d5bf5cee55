"""
Structured JSON logging for the closure kernel.

Every record is one JSON object per line.  Fields bound with
``LogContext.bind(...)`` (school, academic year, actor, closure, correlation
id) are merged into each record emitted inside the ``with`` block, so a
single day's closure can be followed across services:

    with LogContext.bind(school_id="school-1", closure_id=str(closure.id)):
        logger.info("closure_validated", extra={"variance": closure.variance})

    {"ts": "...", "level": "INFO", "logger": "closure_kernel.services.closure",
     "message": "closure_validated", "school_id": "school-1",
     "closure_id": "...", "variance": "500"}

Kernel errors logged with ``exc_info`` also carry their ``code`` and
structured attributes as ``exc_*`` keys.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

_CONTEXT_FIELDS = (
    "correlation_id",
    "school_id",
    "academic_year",
    "actor_id",
    "closure_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"closure_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """Context-local log fields; safe across threads and asyncio tasks."""

    fields = _CONTEXT_FIELDS

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set ``fields`` for the duration of the block, then restore them.

        None values leave the outer binding in place; unknown names raise
        ``KeyError``.
        """
        tokens = [
            (_context_vars[name], _context_vars[name].set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @staticmethod
    def get_all() -> dict[str, str]:
        values = {name: var.get() for name, var in _context_vars.items()}
        return {name: value for name, value in values.items() if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RESERVED_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_")
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON line per record: base fields, bound context, then ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_KEYS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------

_ROOT = "closure_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the closure_kernel namespace, e.g. ``get_logger("services.closure")``."""
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the closure_kernel logger.  Only the first call has an effect."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Undo ``configure_logging``.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
