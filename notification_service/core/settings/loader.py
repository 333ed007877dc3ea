"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from notification_service.core.settings.loader import get_transport_settings

    settings = get_transport_settings()  # First call: loads and validates
    settings = get_transport_settings()  # Subsequent calls: cached instance

Testing:
    In tests, clear the cache to force reload:
    get_transport_settings.cache_clear()

    Or construct settings directly and pass them to ``build_container``:
    settings = TransportSettings(user="u", password="p")
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .database import DatabaseSettings
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .transport import TransportSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    """Get cached database settings.

    Returns:
        Validated and frozen DatabaseSettings instance.
    """
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_transport_settings() -> TransportSettings:
    """Get cached primary transport settings.

    Returns:
        Validated and frozen TransportSettings instance.
    """
    return TransportSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached notification pipeline settings.

    Returns:
        Validated and frozen NotificationSettings instance.
    """
    return NotificationSettings()


def clear_settings_cache() -> None:
    """Clear every cached settings instance (testing helper)."""
    get_app_settings.cache_clear()
    get_db_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_transport_settings.cache_clear()
    get_notification_settings.cache_clear()


__all__ = [
    "clear_settings_cache",
    "get_app_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_transport_settings",
]
