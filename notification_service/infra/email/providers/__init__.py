"""Delivery transports: SMTP primary plus file and console fallbacks."""

from __future__ import annotations

from .base import (
    ERROR_TIMEOUT,
    BaseTransport,
    OutboundMessage,
    Transport,
    TransportError,
    TransportResult,
    TransportTimeoutError,
)
from .console import ConsoleTransport
from .factory import build_fallback_transport, build_primary_transport
from .file import FileTransport
from .smtp import SMTPTransport

__all__ = [
    "ERROR_TIMEOUT",
    "BaseTransport",
    "ConsoleTransport",
    "FileTransport",
    "OutboundMessage",
    "SMTPTransport",
    "Transport",
    "TransportError",
    "TransportResult",
    "TransportTimeoutError",
    "build_fallback_transport",
    "build_primary_transport",
]
