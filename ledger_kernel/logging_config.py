"""
Module: ledger_kernel.logging_config
Responsibility: JSON-lines log output for every ledger_kernel.* logger, plus
    the operation context (company, actor, idempotency key) stamped on each
    line.
Architecture position: Kernel root.  Imported by every layer; imports
    nothing from the ledger.

Each line is one JSON object: ``ts``, ``level``, ``logger``, ``message``,
the bound context fields, then the record's ``extra``.  When a record
carries an exception, its type, ``code`` and public attributes are added
as ``exc_*`` keys.
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
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

_LOGGER_PREFIX = "ledger_kernel"

_CONTEXT_FIELDS = (
    "correlation_id",
    "company_id",
    "actor_id",
    "operation",
    "idempotency_key",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)


def _merged(fields: dict[str, Any]) -> Mapping[str, str]:
    current = dict(_context.get())
    for name, value in fields.items():
        if name in _CONTEXT_FIELDS and value is not None:
            current[name] = str(value)
    return MappingProxyType(current)


class LogContext:
    """
    Operation-scoped log fields, safe across threads and tasks.

    The context is an immutable mapping in a ContextVar; ``set`` and
    ``bind`` install a new mapping rather than mutating the old one, so a
    ``bind`` block restores exactly what was there before.  Unknown field
    names and ``None`` values are ignored.
    """

    @classmethod
    def set(cls, **fields: Any) -> None:
        _context.set(_merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """Context manager: fields apply inside the block only."""
        return _Binding(fields)


class _Binding:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set(_merged(self._fields))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


def _to_json(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        out.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and key not in out
        )

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            out["exc_type"] = type(exc).__name__
            out["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                out["exc_code"] = code
            out.update(
                (f"exc_{name}", value)
                for name, value in vars(exc).items()
                if not name.startswith("_") and name != "code"
            )
            out["traceback"] = self.formatException(record.exc_info)

        return json.dumps(out, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.ledger_engine")`` -> ``ledger_kernel.services.ledger_engine``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_config_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``ledger_kernel`` logger.

    Only the first call has an effect until ``reset_logging``.  Records do
    not propagate to the root logger.
    """
    global _configured
    with _config_lock:
        if _configured:
            return
        _configured = True

        ledger_logger = logging.getLogger(_LOGGER_PREFIX)
        ledger_logger.setLevel(level)
        ledger_logger.propagate = False
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        ledger_logger.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` again (tests)."""
    global _configured
    with _config_lock:
        _configured = False
        ledger_logger = logging.getLogger(_LOGGER_PREFIX)
        ledger_logger.handlers.clear()
        ledger_logger.setLevel(logging.WARNING)
