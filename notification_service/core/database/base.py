"""Declarative base and column mixins for the notification tables.

    class NotificationRecord(Base, IntegerPKMixin, CreatedAtMixin):
        __tablename__ = "notification_log"

    class Template(TimestampedBase):
        __tablename__ = "templates"
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

from notification_service.core.database.types import UTCDateTime, utcnow

# Deterministic constraint names so generated DDL is stable across databases
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Owns the metadata for the service's own tables (not the member directory)."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class IntegerPKMixin:
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)


class CreatedAtMixin:
    """Indexed creation time; the only timestamp on append-only tables."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        index=True,
    )


class TimestampedBase(Base, IntegerPKMixin, CreatedAtMixin):
    """Integer key plus created/updated timestamps for editable rows."""

    __abstract__ = True

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "CreatedAtMixin",
    "IntegerPKMixin",
    "TimestampedBase",
]
