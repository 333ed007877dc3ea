"""Repositories for the notification models.

All methods take an explicit AsyncSession; transactions are owned by the
calling service.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, delete, func, or_, select, update

from notification_service.core.database import BaseRepository, SearchResult
from notification_service.features.notifications.models import (
    PRIORITY_RANK,
    NotificationAnalytics,
    NotificationRecord,
    QueueItem,
    QueueStatus,
    Template,
    can_transition,
)

if TYPE_CHECKING:
    import datetime as dt
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


class TemplateRepository(BaseRepository[Template]):
    """Template lookups by type."""

    def __init__(self) -> None:
        super().__init__(Template)

    async def get_by_type(self, session: AsyncSession, template_type: str) -> Template | None:
        return await self.get_by(session, Template.type, template_type)

    async def get_active(self, session: AsyncSession, template_type: str) -> Template | None:
        stmt = select(Template).where(Template.type == template_type, Template.active.is_(True))
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, session: AsyncSession) -> Sequence[Template]:
        result = await session.execute(select(Template).order_by(Template.type))
        return result.scalars().all()


class NotificationRecordRepository(BaseRepository[NotificationRecord]):
    """Audit log queries and aggregates."""

    def __init__(self) -> None:
        super().__init__(NotificationRecord)

    async def search_records(
        self,
        session: AsyncSession,
        *,
        status: str | None = None,
        template_type: str | None = None,
        recipient: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[NotificationRecord]:
        """Filtered, newest-first page of audit records."""
        stmt = select(NotificationRecord)
        if status:
            stmt = stmt.where(NotificationRecord.status == status)
        if template_type:
            stmt = stmt.where(NotificationRecord.type == template_type)
        if recipient:
            stmt = stmt.where(NotificationRecord.recipient.ilike(f"%{recipient}%"))
        stmt = stmt.order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
        return await self.search(session, stmt, limit=limit, offset=offset)

    async def count_by_status(self, session: AsyncSession, since: datetime) -> dict[str, int]:
        stmt = (
            select(NotificationRecord.status, func.count())
            .where(NotificationRecord.created_at >= since)
            .group_by(NotificationRecord.status)
        )
        result = await session.execute(stmt)
        return {status: count for status, count in result.all()}

    async def daily_counts_by_type(
        self,
        session: AsyncSession,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Per-type counts of sent, primary-delivered and failed records in [start, end)."""
        stmt = (
            select(
                NotificationRecord.type,
                func.sum(case((NotificationRecord.status == "sent", 1), else_=0)),
                func.sum(case((NotificationRecord.method == "primary", 1), else_=0)),
                func.sum(case((NotificationRecord.status == "failed", 1), else_=0)),
            )
            .where(NotificationRecord.created_at >= start, NotificationRecord.created_at < end)
            .group_by(NotificationRecord.type)
        )
        result = await session.execute(stmt)
        return [
            {
                "template_type": row[0],
                "sent_count": int(row[1] or 0),
                "delivered_count": int(row[2] or 0),
                "failed_count": int(row[3] or 0),
            }
            for row in result.all()
        ]

    async def delete_older_than(self, session: AsyncSession, cutoff: datetime) -> int:
        result = await session.execute(
            delete(NotificationRecord).where(NotificationRecord.created_at < cutoff)
        )
        self._lazy.debug(lambda: f"db.delete_older_than: notification_log < {cutoff} -> {result.rowcount}")
        return result.rowcount or 0


class QueueRepository(BaseRepository[QueueItem]):
    """Durable queue queries.

    Status changes go through single UPDATE statements guarded by the
    expected current status, so a row is never moved twice.
    """

    def __init__(self) -> None:
        super().__init__(QueueItem)

    @staticmethod
    def priority_rank():
        return case(
            {priority.value: rank for priority, rank in PRIORITY_RANK.items()},
            value=QueueItem.priority,
            else_=0,
        )

    async def due_pending(self, session: AsyncSession, now: datetime, limit: int) -> Sequence[QueueItem]:
        """Pending items whose schedule has passed, highest priority then oldest first."""
        stmt = (
            select(QueueItem)
            .where(
                QueueItem.status == QueueStatus.PENDING.value,
                (QueueItem.scheduled_for.is_(None)) | (QueueItem.scheduled_for <= now),
            )
            .order_by(self.priority_rank().desc(), QueueItem.created_at.asc(), QueueItem.id.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def transition(
        self,
        session: AsyncSession,
        item_id: int,
        expected: QueueStatus,
        target: QueueStatus,
        **values: Any,
    ) -> bool:
        """Move ``item_id`` from ``expected`` to ``target``; False if it was not in ``expected``.

        Raises:
            ValueError: ``expected -> target`` is not an allowed queue transition
        """
        if not can_transition(expected, target):
            msg = f"Illegal queue transition {expected} -> {target}"
            raise ValueError(msg)

        stmt = (
            update(QueueItem)
            .where(QueueItem.id == item_id, QueueItem.status == expected.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        moved = (result.rowcount or 0) == 1
        self._lazy.debug(lambda: f"db.transition: QueueItem({item_id}) {expected} -> {target}: {moved}")
        return moved

    async def rearm_stalled(self, session: AsyncSession, started_before: datetime) -> int:
        """Return items stuck in processing since ``started_before`` to pending.

        ``retry_count`` is left alone: the item never reached a delivery verdict.
        Rows without a claim time are treated as stalled.
        """
        stmt = (
            update(QueueItem)
            .where(
                QueueItem.status == QueueStatus.PROCESSING.value,
                or_(
                    QueueItem.processing_started_at.is_(None),
                    QueueItem.processing_started_at <= started_before,
                ),
            )
            .values(status=QueueStatus.PENDING.value, processing_started_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def rearm_failed(self, session: AsyncSession, failed_before: datetime) -> int:
        """Move eligible failed items back to pending, bumping retry_count."""
        stmt = (
            update(QueueItem)
            .where(
                QueueItem.status == QueueStatus.FAILED.value,
                QueueItem.retry_count < QueueItem.max_retries,
                QueueItem.failed_at.is_not(None),
                QueueItem.failed_at <= failed_before,
            )
            .values(
                status=QueueStatus.PENDING.value,
                retry_count=QueueItem.retry_count + 1,
                error=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def search_items(
        self,
        session: AsyncSession,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[QueueItem]:
        stmt = select(QueueItem)
        if status:
            stmt = stmt.where(QueueItem.status == status)
        stmt = stmt.order_by(QueueItem.created_at.desc(), QueueItem.id.desc())
        return await self.search(session, stmt, limit=limit, offset=offset)

    async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
        result = await session.execute(
            select(QueueItem.status, func.count()).group_by(QueueItem.status)
        )
        return {status: count for status, count in result.all()}

    async def delete_by_status(self, session: AsyncSession, status: str) -> int:
        result = await session.execute(delete(QueueItem).where(QueueItem.status == status))
        return result.rowcount or 0

    async def delete_finished_before(self, session: AsyncSession, cutoff: datetime) -> int:
        """Delete sent/failed items created before ``cutoff``."""
        stmt = delete(QueueItem).where(
            QueueItem.status.in_([QueueStatus.SENT.value, QueueStatus.FAILED.value]),
            QueueItem.created_at < cutoff,
        )
        result = await session.execute(stmt)
        return result.rowcount or 0


class AnalyticsRepository(BaseRepository[NotificationAnalytics]):
    """Daily analytics rows."""

    def __init__(self) -> None:
        super().__init__(NotificationAnalytics)

    async def upsert(
        self,
        session: AsyncSession,
        *,
        template_type: str,
        day: dt.date,
        sent_count: int,
        delivered_count: int,
        failed_count: int,
    ) -> NotificationAnalytics:
        """Insert or overwrite the row for (template_type, day)."""
        stmt = select(NotificationAnalytics).where(
            NotificationAnalytics.template_type == template_type,
            NotificationAnalytics.date == day,
        )
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            row = NotificationAnalytics(template_type=template_type, date=day)
            session.add(row)
        row.sent_count = sent_count
        row.delivered_count = delivered_count
        row.failed_count = failed_count
        await session.flush()
        return row

    async def for_day(self, session: AsyncSession, day: dt.date) -> Sequence[NotificationAnalytics]:
        stmt = (
            select(NotificationAnalytics)
            .where(NotificationAnalytics.date == day)
            .order_by(NotificationAnalytics.template_type)
        )
        return (await session.execute(stmt)).scalars().all()


__all__ = [
    "AnalyticsRepository",
    "NotificationRecordRepository",
    "QueueRepository",
    "TemplateRepository",
]
