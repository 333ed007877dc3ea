"""Shared base for the notification services."""

from __future__ import annotations

import logging

from notification_service.infra.logging import get_lazy_logger


class BaseService:
    """Gives each service a logger named after its class.

    ``self.logger`` is a plain logger for INFO and above, where ``extra``
    fields are passed through as-is. ``self._lazy`` takes callables for DEBUG
    lines that are costly to build, e.g.
    ``self._lazy.debug(lambda: f"Claimed {[i.id for i in items]}")``.
    """

    def __init__(self) -> None:
        name = type(self).__name__
        self.logger = logging.getLogger(name)
        self._lazy = get_lazy_logger(name)


__all__ = ["BaseService"]
