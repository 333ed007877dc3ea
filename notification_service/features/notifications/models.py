"""Database models for the notification pipeline.

Models:
- Template: Message template (subject, html, text) keyed by type
- NotificationRecord: Append-only audit row, one per delivery attempt
- QueueItem: Durable queue entry for deferred and retryable sends
- NotificationAnalytics: Daily per-template rollup of audit rows
"""

from __future__ import annotations

import datetime as dt
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Boolean, Date, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import (
    Base,
    CreatedAtMixin,
    IntegerPKMixin,
    TimestampedBase,
    UTCDateTime,
)


class DeliveryStatus(StrEnum):
    """Audit status of one delivery attempt."""

    SENT = "sent"
    FAILED = "failed"
    LOGGED = "logged"


class DeliveryMethod(StrEnum):
    """How a delivery attempt was carried out."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
    QUEUED = "queued"


class Priority(StrEnum):
    """Queue priority. Higher ranks drain first."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK: dict[Priority, int] = {Priority.LOW: 1, Priority.NORMAL: 2, Priority.HIGH: 3}


class QueueStatus(StrEnum):
    """Durable queue item lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


# failed -> pending is reserved for the retry sweeper and bounded by max_retries.
# processing -> pending only recovers items whose drain never finished.
ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.PENDING: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.PROCESSING: frozenset({QueueStatus.SENT, QueueStatus.FAILED, QueueStatus.PENDING}),
    QueueStatus.SENT: frozenset(),
    QueueStatus.FAILED: frozenset({QueueStatus.PENDING}),
}


def can_transition(current: QueueStatus | str, target: QueueStatus | str) -> bool:
    """Whether ``current -> target`` is a legal queue transition."""
    return QueueStatus(target) in ALLOWED_TRANSITIONS[QueueStatus(current)]


class Template(TimestampedBase):
    """Message template keyed by notification type.

    The subject is always read from here. HTML and text may be overridden by
    file-backed content of the same type.
    """

    __tablename__ = "templates"

    type: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, comment="Template identifier (e.g., user_welcome)",
    )
    subject: Mapped[str] = mapped_column(
        String(500), nullable=False, comment="Subject line (template syntax allowed)",
    )
    html: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="HTML body template")
    text: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="Plain-text body template")
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, comment="Inactive templates are never resolved",
    )

    def __repr__(self) -> str:
        return f"<Template(type={self.type!r}, active={self.active})>"


class NotificationRecord(Base, IntegerPKMixin, CreatedAtMixin):
    """Audit log row. Never updated after insert."""

    __tablename__ = "notification_log"

    recipient: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    subject: Mapped[str | None] = mapped_column(String(500), comment="Rendered subject, if known")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, comment="sent | failed | logged",
    )
    method: Mapped[str | None] = mapped_column(
        String(20), comment="primary | fallback | queued",
    )
    message_id: Mapped[str | None] = mapped_column(String(255), comment="Transport message ID")
    error: Mapped[str | None] = mapped_column(Text, comment="Failure reason")
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, comment="Template data payload")

    __table_args__ = (Index("ix_notification_log_type_created", "type", "created_at"),)

    def __repr__(self) -> str:
        return f"<NotificationRecord(id={self.id}, recipient={self.recipient!r}, status={self.status!r})>"


class QueueItem(Base, IntegerPKMixin, CreatedAtMixin):
    """Durable queue entry holding fully rendered content."""

    __tablename__ = "notification_queue"

    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    html_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    text_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=Priority.NORMAL.value, comment="low | normal | high",
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), comment="Earliest send time; null means as soon as possible",
    )
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QueueStatus.PENDING.value,
        comment="pending | processing | sent | failed",
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), comment="Claim time of the current drain attempt",
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    error: Mapped[str | None] = mapped_column(Text, comment="Last failure reason")
    message_id: Mapped[str | None] = mapped_column(String(255))
    delivery_method: Mapped[str | None] = mapped_column(
        String(20), comment="primary | fallback once handed to a transport",
    )
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    __table_args__ = (
        Index("ix_notification_queue_status_scheduled", "status", "scheduled_for"),
    )

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def __repr__(self) -> str:
        return f"<QueueItem(id={self.id}, recipient={self.recipient!r}, status={self.status!r})>"


class NotificationAnalytics(Base, IntegerPKMixin):
    """Per-template daily counts written by the analytics rollup."""

    __tablename__ = "notification_analytics"

    template_type: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivered_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Handed to the primary transport",
    )
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("template_type", "date", name="uq_notification_analytics_type_date"),)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "PRIORITY_RANK",
    "DeliveryMethod",
    "DeliveryStatus",
    "NotificationAnalytics",
    "NotificationRecord",
    "Priority",
    "QueueItem",
    "QueueStatus",
    "Template",
    "can_transition",
]
