"""Per-task log context.

Fields bound with ``log_context`` (the running job, the queue item being
delivered) are stamped onto every record emitted inside the block by
``ContextInjectingFilter``, which ``configure_logging`` attaches to the root
logger. The context lives in a ContextVar so concurrent tasks never see each
other's fields.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

_fields: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """Bind ``fields`` for the duration of the block, then restore the outer context.

    Example:
        with log_context(job="drain_queue"):
            logger.info("Draining")  # record carries job="drain_queue"
    """
    merged = {**_fields.get(), **fields}
    token = _fields.set(merged)
    try:
        yield merged
    finally:
        _fields.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_fields.get())


class ContextInjectingFilter(logging.Filter):
    """Copies bound context onto records; attributes already set on the record win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _fields.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


__all__ = ["ContextInjectingFilter", "current_log_context", "log_context"]
