"""
Structured JSON logging for the settlement kernel.

Every record is one JSON object per line:

    {"ts": ..., "level": "INFO", "logger": "settlement_kernel.services.settlement",
     "message": "settlement_committed", "actor_id": ..., "invoices_paid": 2}

Messages are snake_case event names; details travel in ``extra={...}``.
Request-scoped fields (correlation id, acting user, company, gateway
transaction) live in ``LogContext`` and are stamped on every record emitted
while they are bound.
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

_NAMESPACE = "settlement_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "company_id",
    "transaction_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"settlement_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    @staticmethod
    def _var(name: str) -> ContextVar[str | None]:
        try:
            return _context_vars[name]
        except KeyError:
            raise TypeError(f"Unknown log context field {name!r}") from None

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set the given fields; None leaves a field unchanged."""
        for name, value in fields.items():
            if value is not None:
                cls._var(name).set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        values = {name: var.get() for name, var in _context_vars.items()}
        return {name: value for name, value in values.items() if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """
        Bind fields for the duration of a block, restoring prior values after.

        Usage:
            with LogContext.bind(actor_id=actor.user_id, transaction_id=ref):
                logger.info("settlement_started")
        """
        tokens = [
            (cls._var(name), cls._var(name).set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Kernel errors carry their details as public attributes
    for attr, value in vars(exc).items():
        if not attr.startswith("_") and attr != "code":
            fields[f"exc_{attr}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                entry.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger ``settlement_kernel.<name>``."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")


_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``settlement_kernel`` logger.

    Only the first call takes effect until ``reset_logging()``; the API, the
    scripts and the engine module all call this on startup.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(_NAMESPACE)
        kernel_logger.setLevel(level.upper() if isinstance(level, str) else level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(target)
        _installed_handler = target


def reset_logging() -> None:
    """Detach the handler installed by ``configure_logging``. Tests only."""
    global _installed_handler
    with _state_lock:
        kernel_logger = logging.getLogger(_NAMESPACE)
        for h in list(kernel_logger.handlers):
            kernel_logger.removeHandler(h)
        kernel_logger.setLevel(logging.NOTSET)
        kernel_logger.propagate = True
        _installed_handler = None
