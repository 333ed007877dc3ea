"""Retry Sweeper: re-arms failed queue items after a cooldown.

An item is re-armed (``failed -> pending``, ``retry_count += 1``) only while
``retry_count < max_retries``. Items at the ceiling stay ``failed`` for good.

The sweeper also recovers items left in ``processing`` by a drain that never
finished (a crash, or a failed final status write). Once their claim is older
than the processing timeout they go back to ``pending`` without using a retry.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from notification_service.core.services.base import BaseService
from notification_service.features.notifications.repository import QueueRepository
from notification_service.infra.metrics.prometheus import queue_items_rearmed_total

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class RetrySweeper(BaseService):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cooldown_minutes: int = 60,
        processing_timeout_minutes: int = 60,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._cooldown = timedelta(minutes=cooldown_minutes)
        self._processing_timeout = timedelta(minutes=processing_timeout_minutes)
        self._repository = QueueRepository()

    async def sweep(self, now: datetime | None = None) -> int:
        """Re-arm eligible failed items.

        Args:
            now: Reference time, defaults to the current UTC time.

        Returns:
            Number of items moved back to pending.
        """
        cutoff = (now or datetime.now(UTC)) - self._cooldown
        async with self._session_factory() as session:
            rearmed = await self._repository.rearm_failed(session, cutoff)
            await session.commit()

        if rearmed:
            queue_items_rearmed_total.labels(reason="failed").inc(rearmed)
            self.logger.info("Failed queue items re-armed", extra={"rearmed": rearmed})
        else:
            self._lazy.debug(lambda: f"No failed queue items eligible for retry before {cutoff}")
        return rearmed

    async def recover_stalled(self, now: datetime | None = None) -> int:
        """Move items claimed before the processing timeout back to pending."""
        cutoff = (now or datetime.now(UTC)) - self._processing_timeout
        async with self._session_factory() as session:
            recovered = await self._repository.rearm_stalled(session, cutoff)
            await session.commit()

        if recovered:
            queue_items_rearmed_total.labels(reason="stalled").inc(recovered)
            self.logger.warning("Stalled queue items returned to pending", extra={"recovered": recovered})
        return recovered


__all__ = ["RetrySweeper"]
