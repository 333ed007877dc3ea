"""Database base classes and the generic repository."""

from __future__ import annotations

from notification_service.core.database.base import (
    NAMING_CONVENTION,
    Base,
    CreatedAtMixin,
    IntegerPKMixin,
    TimestampedBase,
)
from notification_service.core.database.repository import BaseRepository, SearchResult
from notification_service.core.database.types import UTCDateTime, utcnow

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "CreatedAtMixin",
    "IntegerPKMixin",
    "SearchResult",
    "TimestampedBase",
    "UTCDateTime",
    "utcnow",
]
