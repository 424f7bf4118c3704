"""
Structured JSON logging for the care kernel and every care module.

Each record is one JSON line: ``ts``, ``level``, ``logger``, ``message``,
the request-scoped context from :class:`LogContext`, and every ``extra=``
key.  Personal identifiers (NHS and NI numbers, dates of birth, contact
and bank details) are replaced with ``[REDACTED]`` wherever they appear as
an extra key or as the offending value of a kernel error, so resident and
staff data never reaches log storage.
"""

__all__ = [
    "REDACTED",
    "SENSITIVE_FIELDS",
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
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS: frozenset[str] = frozenset({
    "nhs_number",
    "ni_number",
    "date_of_birth",
    "email",
    "phone",
    "contact_email",
    "contact_phone",
    "next_of_kin_phone",
    "bank_sort_code",
    "bank_account_number",
})

_CONTEXT_FIELDS = ("correlation_id", "request_id", "tenant_id", "actor_id")


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"log_{name}", default=None) for name in _CONTEXT_FIELDS
    }

    @classmethod
    def _var(cls, name: str) -> ContextVar[str | None]:
        try:
            return cls._vars[name]
        except KeyError:
            raise ValueError(f"Unknown log context field {name!r}") from None

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields.  None leaves a field unchanged."""
        for name, value in fields.items():
            if value is not None:
                cls._var(name).set(str(value))

    @classmethod
    def get(cls, name: str) -> str | None:
        return cls._var(name).get()

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {name: var.get() for name, var in cls._vars.items() if var.get() is not None}

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore them."""
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


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def _redact(key: str, value: Any) -> Any:
    if key in SENSITIVE_FIELDS and value not in (None, ""):
        return REDACTED
    return value


# LogRecord attributes that are not caller-supplied extras
_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # A kernel error naming a sensitive field carries the bad value
        hide_value = getattr(exc, "field", None) in SENSITIVE_FIELDS
        for key, value in vars(exc).items():
            if key.startswith("_") or key in ("args", "code"):
                continue
            fields[f"exc_{key}"] = REDACTED if hide_value and key == "value" else _redact(key, value)
        trace = self.formatException(record.exc_info)
        if hide_value:
            fields["exc_message"] = f"{type(exc).__name__} on {exc.field}"
            if str(exc):
                trace = trace.replace(str(exc), fields["exc_message"])
            secret = getattr(exc, "value", None)
            if secret not in (None, ""):
                trace = trace.replace(str(secret), REDACTED)
        fields["traceback"] = trace
        return fields

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_KEYS and key not in payload:
                payload[key] = _redact(key, value)
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, default=_json_default)


_ROOT = "care_kernel"
_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``care_kernel`` namespace, e.g. ``care_kernel.modules.billing``."""
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``care_kernel`` hierarchy.  Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and allow reconfiguration.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
