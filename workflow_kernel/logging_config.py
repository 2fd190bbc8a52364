"""
Structured JSON logging for the workflow kernel.

Every record is one JSON object per line.  Fields bound with
``LogContext.bind`` (the envelope being worked on, the acting user and
the correlation id of the current service call) are merged into each
record, followed by the ``extra`` dict passed at the call site.

    with LogContext.bind(envelope_id=str(envelope_id), actor_id=str(actor_id)):
        logger.info("stage_completed", extra={"stage_number": 2})
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

_LOGGER_PREFIX = "workflow_kernel"


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"workflow_log_{name}", default=None)
        for name in ("correlation_id", "envelope_id", "actor_id")
    }

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields, skipping unset ones."""
        return {
            name: value
            for name, var in cls._vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def correlation_id(cls) -> str | None:
        return cls._vars["correlation_id"].get()

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[None]:
        """Bind fields for the duration of a block; ``None`` values are ignored.

        Raises:
            KeyError: a field name is not a known context field.
        """
        tokens = [
            (cls._vars[name], cls._vars[name].set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @classmethod
    @contextmanager
    def operation(cls, **fields: str | None) -> Iterator[str]:
        """Bind ``fields`` plus a correlation id for one service call.

        An already bound correlation id (set by the caller, e.g. from a
        request header) is kept; otherwise a new one is generated.
        """
        correlation_id = cls.correlation_id() or str(uuid4())
        with cls.bind(correlation_id=correlation_id, **fields):
            yield correlation_id


_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON line per record: header, bound context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
            "traceback": self.formatException(record.exc_info),
        }
        # WorkflowKernelError subclasses carry a code and structured attributes
        if hasattr(exc, "code"):
            fields["exc_code"] = exc.code
        fields.update(
            (f"exc_{name}", value)
            for name, value in vars(exc).items()
            if not name.startswith("_")
        )
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``workflow_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``workflow_kernel`` logger once.

    ``level`` may be a level name such as ``"DEBUG"``, as found in the
    configuration set's ``settings.log_level``.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging``. Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
