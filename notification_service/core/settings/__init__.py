"""Modular Pydantic Settings v2 configuration.

One frozen settings model per concern, each read from environment
variables (and an optional ``.env`` file) and exposed through an
LRU-cached loader:

    from notification_service.core.settings import get_notification_settings

    settings = get_notification_settings()
    print(settings.queue_batch_size)

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .app import AppSettings
from .database import DatabaseSettings
from .loader import (
    clear_settings_cache,
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_transport_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .transport import TransportSettings

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "NotificationSettings",
    "TransportSettings",
    "clear_settings_cache",
    "get_app_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_transport_settings",
]
