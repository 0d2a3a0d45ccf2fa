"""
Structured logging with per-task context.

Every record emitted under the ``tsconsole`` logger carries the fields bound
with :func:`bind_context` in the current context (thread or asyncio task):
typically a ``request_id`` plus the ``collection`` and search ``generation``
the search session is working on. Concurrent searches on one event loop
therefore log under their own ids.

Usage::

    from tsconsole.logging import bind_context, configure_logging
    configure_logging(json_format=False)
    bind_context(collection="books", generation=3)
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

_context_var: ContextVar[dict[str, Any]] = ContextVar("tsconsole_log_context", default={})

_STDLIB_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())


def bind_context(**fields: Any) -> dict[str, Any]:
    """Merge *fields* into the log context of the current task; ``None`` unbinds."""
    merged = {**_context_var.get(), **fields}
    merged = {k: v for k, v in merged.items() if v is not None}
    _context_var.set(merged)
    return merged


def get_context() -> dict[str, Any]:
    return dict(_context_var.get())


def clear_context() -> None:
    _context_var.set({})


def bind_request_id(request_id: str | None = None) -> str:
    """Bind a request-id (a fresh 12-char hex id when *request_id* is ``None``)."""
    rid = request_id or uuid.uuid4().hex[:12]
    bind_context(request_id=rid)
    return rid


def get_request_id() -> str:
    return str(_context_var.get().get("request_id", ""))


class _ContextFilter(logging.Filter):
    """Copy the bound context onto each record; explicit ``extra`` keys win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context_var.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        if not hasattr(record, "request_id"):
            record.request_id = ""  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Fixed keys are ``timestamp``, ``level``, ``logger`` and ``message``.
    Context fields and ``extra={}`` keys are added at the top level; an empty
    ``request_id`` is left out.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = dict(_context_var.get())
        fields.update((k, v) for k, v in record.__dict__.items() if k not in _STDLIB_ATTRS)
        for key, val in fields.items():
            if key == "request_id" and not val:
                continue
            entry[key] = val

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_logging(level: int = logging.INFO, json_format: bool = True) -> None:
    """Send the ``tsconsole`` logger hierarchy to stderr.

    Args:
        level: Logging level (default ``logging.INFO``).
        json_format: JSON lines if ``True``, else a text line with the request-id.
    """
    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-5s [%(request_id)s] %(name)s - %(message)s",
                defaults={"request_id": ""},
            )
        )
    handler.addFilter(_ContextFilter())

    root = logging.getLogger("tsconsole")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
