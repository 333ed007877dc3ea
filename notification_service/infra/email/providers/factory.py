"""Transport construction from settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .console import ConsoleTransport
from .file import FileTransport
from .smtp import SMTPTransport

if TYPE_CHECKING:
    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.core.settings.transport import TransportSettings

    from .base import BaseTransport


def build_primary_transport(
    transport_settings: TransportSettings,
    notification_settings: NotificationSettings,
) -> SMTPTransport:
    """Build the SMTP primary transport."""
    return SMTPTransport(transport_settings, from_header=notification_settings.from_header)


def build_fallback_transport(notification_settings: NotificationSettings) -> BaseTransport:
    """Build the configured fallback transport.

    Raises:
        ValueError: If the configured backend is unknown.
    """
    backend = notification_settings.fallback_backend
    if backend == "file":
        return FileTransport(notification_settings.fallback_dir)
    if backend == "console":
        return ConsoleTransport()
    msg = f"Unknown fallback backend: {backend}"
    raise ValueError(msg)


__all__ = ["build_fallback_transport", "build_primary_transport"]
