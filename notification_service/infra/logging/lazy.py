"""Deferred log messages.

Debug lines on hot paths (repository calls, queue claims, audit writes) are
passed as callables and only built when the level is enabled:

    logger = get_lazy_logger(__name__)
    logger.debug(lambda: f"Claimed {len(items)} queue items: {[i.id for i in items]}")
"""

from __future__ import annotations

import logging
from typing import Any


class LazyLoggerAdapter(logging.LoggerAdapter):
    """Adapter that calls callable messages and args only when they will be emitted.

    Context bound at construction is merged with any per-call ``extra``; the
    per-call values win.
    """

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        if not self.isEnabledFor(level):
            return
        if callable(msg):
            msg = msg()
        args = tuple(arg() if callable(arg) else arg for arg in args)
        super().log(level, msg, *args, **kwargs)

    def debug(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)


def get_lazy_logger(name: str, **context: Any) -> LazyLoggerAdapter:
    """Lazy adapter over ``logging.getLogger(name)`` with optional bound context."""
    return LazyLoggerAdapter(logging.getLogger(name), context)


__all__ = ["LazyLoggerAdapter", "get_lazy_logger"]
