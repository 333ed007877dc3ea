"""Logging configuration setup.

Configures the root logger with:
- dictConfig for formatters and filters
- QueueHandler + QueueListener so handlers never block the event loop
- ContextInjectingFilter for automatic context propagation
- JSONL format for machine parsing (or plain text for local development)
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING, Any

from notification_service.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from notification_service.core.settings.logs import LoggingSettings

_listener: QueueListener | None = None
_LOGGING_INITIALIZED = False

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def shutdown() -> None:
    """Stop the QueueListener and flush pending records.

    Registered with atexit, but can be called manually (e.g. in CLI commands).
    """
    global _listener

    if _listener is not None:
        _listener.stop()
        _listener = None


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Ensure logging is configured once across entrypoints.

    Args:
        log_settings: Optional logging settings instance. If omitted, settings
            are loaded via get_logging_settings().
        force: Reconfigure logging even if it was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    settings_obj = log_settings
    if settings_obj is None:
        from notification_service.core.settings import get_logging_settings

        settings_obj = get_logging_settings()

    log_config = {**settings_obj.to_logging_kwargs(), **configure_kwargs}
    configure_logging(**log_config)
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    file_path: str | Path | None = None,
    json_logs: bool = True,
    console_enabled: bool = True,
    include_context: bool = True,
    capture_warnings: bool = True,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
    service_name: str = "notification-service",
) -> None:
    """Configure logging with dictConfig and the QueueHandler pattern.

    All handlers are attached to a QueueListener; the root logger only
    carries a QueueHandler. Application loggers propagate up.

    Args:
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file_path: Path to log file. None disables file logging.
        json_logs: Enable JSONL (JSON Lines) structured logging.
        console_enabled: Enable console/stderr logging.
        include_context: Enable ContextInjectingFilter for auto context.
        capture_warnings: Forward Python warnings to logging system.
        file_max_bytes: Maximum log file size before rotation.
        file_backup_count: Number of rotated log files to keep.
        service_name: Static ``service`` field added to JSON records.

    Example:
        from notification_service.core.settings import get_logging_settings
        configure_logging(**get_logging_settings().to_logging_kwargs())
    """
    global _listener

    if capture_warnings:
        logging.captureWarnings(True)

    filters: dict[str, Any] = {}
    root_filters: list[str] = []
    if include_context:
        filters["context"] = {
            "()": "notification_service.infra.logging.context.ContextInjectingFilter",
        }
        root_filters.append("context")

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": filters,
            "root": {
                "level": log_level.upper(),
                "handlers": [],
                "filters": root_filters,
            },
        }
    )

    formatter: logging.Formatter
    if json_logs:
        formatter = JSONFormatter(static={"service": service_name})
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = []
    if console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=file_max_bytes,
            backupCount=file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Restart listener on reconfiguration
    shutdown()
    log_queue: Queue[logging.LogRecord] = Queue()
    _listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    _listener.start()

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(QueueHandler(log_queue))

    # Quiet noisy third-party loggers
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


atexit.register(shutdown)


__all__ = ["configure_logging", "setup_logging", "shutdown"]
