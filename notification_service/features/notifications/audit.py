"""Audit Log: append-only record of every delivery attempt.

Writes are best effort. Each record is inserted in its own session; a failed
insert is logged as ``AuditWriteError`` and dropped so auditing can never
fail or retry a send.
"""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from notification_service.core.services.base import BaseService
from notification_service.features.notifications.exceptions import AuditWriteError
from notification_service.features.notifications.models import (
    DeliveryStatus,
    NotificationRecord,
    QueueStatus,
)
from notification_service.features.notifications.repository import (
    AnalyticsRepository,
    NotificationRecordRepository,
    QueueRepository,
)
from notification_service.infra.metrics.prometheus import audit_write_failures_total

if TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.database import SearchResult


class AuditLog(BaseService):
    """Writes and queries ``notification_log`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._records = NotificationRecordRepository()
        self._queue = QueueRepository()
        self._analytics = AnalyticsRepository()

    async def record(
        self,
        *,
        recipient: str,
        template_type: str,
        status: DeliveryStatus | str,
        subject: str | None = None,
        method: str | None = None,
        message_id: str | None = None,
        error: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> NotificationRecord | None:
        """Insert one audit record.

        Returns:
            The stored record, or None when the insert failed.
        """
        record = NotificationRecord(
            recipient=recipient,
            type=template_type,
            subject=subject,
            status=DeliveryStatus(status).value,
            method=method,
            message_id=message_id,
            error=error,
            data=json_safe(data),
        )
        try:
            async with self._session_factory() as session:
                await self._records.create(session, record)
                await session.commit()
        except SQLAlchemyError as exc:
            audit_write_failures_total.inc()
            err = AuditWriteError(recipient, template_type, str(exc))
            self.logger.error(
                err.detail,
                extra={"recipient": recipient, "template_type": template_type, "status": str(status)},
            )
            return None

        self._lazy.debug(lambda: f"Audit record {record.id}: {recipient} {template_type} {status}")
        return record

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def stats(self, days: int = 30) -> dict[str, Any]:
        """Counts over the trailing window plus the current pending queue size.

        ``success_rate`` is the share of ``sent`` (primary) records among all
        records in the window. ``failure_rate`` is the share of ``failed``
        records; fallback deliveries count toward neither. Both are
        percentages rounded to two decimals.
        """
        since = datetime.now(UTC) - timedelta(days=days)
        async with self._session_factory() as session:
            by_status = await self._records.count_by_status(session, since)
            queue_counts = await self._queue.count_by_status(session)

        total = sum(by_status.values())
        sent = by_status.get(DeliveryStatus.SENT.value, 0)
        failed = by_status.get(DeliveryStatus.FAILED.value, 0)
        return {
            "window_days": days,
            "total": total,
            "sent": sent,
            "failed": failed,
            "logged": by_status.get(DeliveryStatus.LOGGED.value, 0),
            "pending": queue_counts.get(QueueStatus.PENDING.value, 0),
            "success_rate": round(sent / total * 100, 2) if total else 0.0,
            "failure_rate": round(failed / total * 100, 2) if total else 0.0,
        }

    async def query(
        self,
        *,
        status: str | None = None,
        template_type: str | None = None,
        recipient: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> SearchResult[NotificationRecord]:
        """Filtered, newest-first page of records."""
        page = max(page, 1)
        async with self._session_factory() as session:
            return await self._records.search_records(
                session,
                status=status,
                template_type=template_type,
                recipient=recipient,
                limit=limit,
                offset=(page - 1) * limit,
            )

    async def cleanup(self, older_than_days: int) -> int:
        """Delete records older than ``older_than_days``."""
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        async with self._session_factory() as session:
            deleted = await self._records.delete_older_than(session, cutoff)
            await session.commit()
        self.logger.info("Audit log cleaned up", extra={"deleted": deleted, "older_than_days": older_than_days})
        return deleted

    async def rollup(self, day: dt.date) -> list[dict[str, Any]]:
        """Write per-template counts for ``day`` into notification_analytics.

        Re-running for the same day overwrites the previous rows.
        """
        start = datetime.combine(day, time.min, tzinfo=UTC)
        end = start + timedelta(days=1)
        async with self._session_factory() as session:
            rows = await self._records.daily_counts_by_type(session, start, end)
            for row in rows:
                await self._analytics.upsert(session, day=day, **row)
            await session.commit()
        self.logger.info("Analytics rolled up", extra={"day": day.isoformat(), "templates": len(rows)})
        return rows


def json_safe(data: dict[str, Any] | None) -> dict[str, Any] | None:
    """Coerce values the JSON column cannot store (datetimes, decimals) to strings."""
    if data is None:
        return None
    return {str(key): _coerce(value) for key, value in data.items()}


def _coerce(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _coerce(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_coerce(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


__all__ = ["AuditLog", "json_safe"]
