"""Durable Queue: relational write-ahead log for deferred and retryable sends.

Items hold fully rendered content so draining never depends on templates
still existing. Status moves only along
``pending -> processing -> {sent | failed}``; ``failed -> pending`` belongs to
the retry sweeper.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from notification_service.core.services.base import BaseService
from notification_service.features.notifications.audit import json_safe
from notification_service.features.notifications.exceptions import QueuePersistError
from notification_service.features.notifications.models import (
    Priority,
    QueueItem,
    QueueStatus,
)
from notification_service.features.notifications.repository import QueueRepository
from notification_service.features.notifications.templates.renderer import RenderedMessage
from notification_service.infra.logging import log_context
from notification_service.infra.metrics.prometheus import queue_items_processed_total

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.database import SearchResult
    from notification_service.features.notifications.audit import AuditLog
    from notification_service.features.notifications.channel import DeliveryChannel


class NotificationQueue(BaseService):
    """Writes and administers ``notification_queue`` rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        default_max_retries: int = 3,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._default_max_retries = default_max_retries
        self.repository = QueueRepository()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def enqueue(
        self,
        *,
        recipient: str,
        template_type: str,
        rendered: RenderedMessage,
        priority: Priority | str = Priority.NORMAL,
        scheduled_for: datetime | None = None,
        data: dict[str, Any] | None = None,
        max_retries: int | None = None,
    ) -> int:
        """Insert a pending item.

        Returns:
            The new queue item id.

        Raises:
            QueuePersistError: If the insert could not be committed.
        """
        item = QueueItem(
            recipient=recipient,
            type=template_type,
            subject=rendered.subject,
            html_content=rendered.html,
            text_content=rendered.text,
            priority=Priority(priority).value,
            scheduled_for=scheduled_for,
            data=json_safe(data),
            status=QueueStatus.PENDING.value,
            retry_count=0,
            max_retries=self._default_max_retries if max_retries is None else max_retries,
        )
        try:
            async with self._session_factory() as session:
                await self.repository.create(session, item)
                await session.commit()
        except SQLAlchemyError as exc:
            self.logger.exception(
                "Failed to enqueue notification",
                extra={"recipient": recipient, "template_type": template_type},
            )
            raise QueuePersistError(recipient, template_type, str(exc)) from exc

        self.logger.info(
            "Notification queued",
            extra={
                "queue_id": item.id,
                "recipient": recipient,
                "template_type": template_type,
                "priority": item.priority,
                "scheduled_for": scheduled_for.isoformat() if scheduled_for else None,
            },
        )
        return item.id

    async def get(self, item_id: int) -> QueueItem | None:
        async with self._session_factory() as session:
            return await self.repository.get(session, item_id)

    async def list_items(
        self,
        *,
        status: QueueStatus | str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> SearchResult[QueueItem]:
        """Newest-first page of queue items, optionally filtered by status."""
        page = max(page, 1)
        async with self._session_factory() as session:
            return await self.repository.search_items(
                session,
                status=QueueStatus(status).value if status else None,
                limit=limit,
                offset=(page - 1) * limit,
            )

    async def counts(self) -> dict[str, int]:
        """Item count per status (every status present, zero when empty)."""
        async with self._session_factory() as session:
            found = await self.repository.count_by_status(session)
        return {status.value: found.get(status.value, 0) for status in QueueStatus}

    async def clear(self, status: QueueStatus | str = QueueStatus.FAILED) -> int:
        """Delete every item in ``status``."""
        status = QueueStatus(status)
        async with self._session_factory() as session:
            deleted = await self.repository.delete_by_status(session, status.value)
            await session.commit()
        self.logger.info("Queue cleared", extra={"status": status.value, "deleted": deleted})
        return deleted

    async def cleanup(self, older_than_days: int) -> int:
        """Delete sent and failed items older than ``older_than_days``."""
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        async with self._session_factory() as session:
            deleted = await self.repository.delete_finished_before(session, cutoff)
            await session.commit()
        self.logger.info("Queue cleaned up", extra={"deleted": deleted, "older_than_days": older_than_days})
        return deleted


# =============================================================================
# Processor
# =============================================================================


@dataclass
class DrainSummary:
    """Outcome of one ``QueueProcessor.drain`` call."""

    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: bool = False
    item_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "item_ids": list(self.item_ids),
        }


class QueueProcessor(BaseService):
    """Drains due pending items through the delivery channel.

    Only one drain runs at a time per processor; an overlapping call returns
    an empty, ``skipped`` summary without touching the queue.
    """

    def __init__(
        self,
        queue: NotificationQueue,
        channel: DeliveryChannel,
        audit: AuditLog,
        *,
        batch_size: int = 5,
    ) -> None:
        super().__init__()
        self._queue = queue
        self._channel = channel
        self._audit = audit
        self._batch_size = batch_size
        self._lock = asyncio.Lock()

    @property
    def is_draining(self) -> bool:
        return self._lock.locked()

    async def drain(self, batch_size: int | None = None) -> DrainSummary:
        """Process up to ``batch_size`` due items, highest priority then oldest first."""
        if self._lock.locked():
            self.logger.warning("Queue drain already in progress, skipping")
            return DrainSummary(skipped=True)

        async with self._lock:
            limit = batch_size or self._batch_size
            now = datetime.now(UTC)
            async with self._queue.session_factory() as session:
                items = await self._queue.repository.due_pending(session, now, limit)

            summary = DrainSummary()
            for item in items:
                with log_context(queue_item_id=item.id):
                    outcome = await self._process_item(item)
                if outcome is None:
                    continue
                summary.processed += 1
                summary.item_ids.append(item.id)
                if outcome == QueueStatus.SENT:
                    summary.sent += 1
                else:
                    summary.failed += 1

        if summary.processed:
            self.logger.info(
                "Queue drained",
                extra={"processed": summary.processed, "sent": summary.sent, "failed": summary.failed},
            )
        return summary

    async def _process_item(self, item: QueueItem) -> QueueStatus | None:
        """Drive one item to a terminal state; None when another worker claimed it."""
        try:
            async with self._queue.session_factory() as session:
                claimed = await self._queue.repository.transition(
                    session,
                    item.id,
                    QueueStatus.PENDING,
                    QueueStatus.PROCESSING,
                    processing_started_at=datetime.now(UTC),
                )
                await session.commit()
        except Exception:
            self.logger.exception("Failed to claim queue item", extra={"queue_id": item.id})
            return None
        if not claimed:
            self._lazy.debug(lambda: f"Queue item {item.id} no longer pending, skipping")
            return None

        rendered = RenderedMessage(subject=item.subject, html=item.html_content, text=item.text_content)
        try:
            result = await self._channel.deliver(
                item.recipient,
                rendered,
                priority=item.priority,
                template_type=item.type,
            )
        except Exception as exc:
            self.logger.exception("Queue item delivery raised", extra={"queue_id": item.id})
            success, method, message_id, error = False, None, None, str(exc)
        else:
            success, method, message_id, error = result.success, result.method, result.message_id, result.error

        target = QueueStatus.SENT if success else QueueStatus.FAILED
        finished_at = datetime.now(UTC)
        values: dict[str, Any] = {"delivery_method": method, "message_id": message_id}
        if success:
            values.update(sent_at=finished_at, error=None)
        else:
            values.update(failed_at=finished_at, error=error or "Delivery failed")

        try:
            async with self._queue.session_factory() as session:
                await self._queue.repository.transition(
                    session, item.id, QueueStatus.PROCESSING, target, **values,
                )
                await session.commit()
        except Exception:
            self.logger.exception(
                "Failed to finalize queue item",
                extra={"queue_id": item.id, "target_status": target.value},
            )

        queue_items_processed_total.labels(status=target.value).inc()
        await self._audit.record(
            recipient=item.recipient,
            template_type=item.type,
            status=self._channel.audit_status(success, method),
            subject=item.subject,
            method=method,
            message_id=message_id,
            error=None if success else values["error"],
            data={**(item.data or {}), "queue_id": item.id, "retry_count": item.retry_count},
        )
        self.logger.info(
            "Queue item processed",
            extra={
                "queue_id": item.id,
                "recipient": item.recipient,
                "status": target.value,
                "method": method,
                "retry_count": item.retry_count,
            },
        )
        return target


__all__ = ["DrainSummary", "NotificationQueue", "QueueProcessor"]
