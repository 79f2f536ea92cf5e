"""
Structured logging for the station ledger.

Every record leaves as one JSON object on one line::

    {"ts": "...", "level": "INFO", "logger": "station_ledger.services.settlement",
     "message": "batch_committed", "operation": "batch_commit",
     "correlation_id": "...", "batch_id": "...", "total_amount": "200.30"}

Messages are event names (``batch_committed``, ``check_cleared``); the
details travel in ``extra``.  Fields that belong to the whole operation
(correlation id, acting operator, operation name, batch id) are kept in
LogContext and merged into every record emitted while they are bound.
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
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

_LOGGER_PREFIX = "station_ledger"

# ---------------------------------------------------------------------------
# Operation context
# ---------------------------------------------------------------------------

_context: ContextVar[dict[str, str]] = ContextVar("station_ledger_log_context", default={})


class LogContext:
    """
    Operation-scoped fields merged into every log record.

    The whole context is one immutable mapping in a ContextVar, so a bind
    is a single set/reset pair and nested binds unwind in order.
    """

    FIELDS = ("correlation_id", "actor", "operation", "batch_id")

    @classmethod
    def _merged(cls, fields: dict[str, str | None]) -> dict[str, str]:
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise KeyError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set fields for the rest of the current context.  None leaves a field as is."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    # Money is emitted as a string so a log reader never sees a float.
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, then context, then extra."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key in payload:
                continue
            payload[key] = _jsonable(value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=str)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            # LedgerError subclasses carry their details as attributes
            fields["exc_code"] = code
            for name, value in vars(exc).items():
                if not name.startswith("_") and name not in ("args", "code"):
                    fields[f"exc_{name}"] = _jsonable(value)
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


# ---------------------------------------------------------------------------
# Loggers
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the station_ledger namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``station_ledger`` logger.

    Only the first call has an effect until reset_logging() is called.

    Args:
        level: Level as an int or a name such as ``"DEBUG"``.
        stream: Stream for the default handler (stderr when omitted).
        handler: Use this handler instead of a StreamHandler.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.setLevel(level)
    ledger_logger.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    ledger_logger.addHandler(target)


def reset_logging() -> None:
    """Undo configure_logging().  Tests only."""
    global _configured
    with _lock:
        _configured = False
    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.handlers.clear()
    ledger_logger.setLevel(logging.WARNING)
