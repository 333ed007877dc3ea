"""Structured logging: dictConfig setup, JSON formatter, task context and lazy loggers."""

from __future__ import annotations

from notification_service.infra.logging.config import configure_logging, setup_logging, shutdown
from notification_service.infra.logging.context import (
    ContextInjectingFilter,
    current_log_context,
    log_context,
)
from notification_service.infra.logging.formatters import JSONFormatter
from notification_service.infra.logging.lazy import LazyLoggerAdapter, get_lazy_logger

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "configure_logging",
    "current_log_context",
    "get_lazy_logger",
    "log_context",
    "setup_logging",
    "shutdown",
]
