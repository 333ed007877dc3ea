"""Unit tests for RetrySweeper: the fail, re-arm, resend cycle and stalled item recovery."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from notification_service.features.notifications.models import QueueItem, QueueStatus
from notification_service.features.notifications.repository import QueueRepository
from notification_service.features.notifications.retry import RetrySweeper
from notification_service.features.notifications.templates import RenderedMessage

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.features.notifications.container import NotificationContainer
    from tests.conftest import RecordingTransport


async def _add_failed(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    failed_at: datetime | None,
    retry_count: int = 0,
    max_retries: int = 3,
) -> int:
    async with session_factory() as session:
        item = QueueItem(
            recipient="jane@test.example.com",
            type="plan_expiry_warning",
            subject="s",
            status="failed",
            error="rejected",
            retry_count=retry_count,
            max_retries=max_retries,
            failed_at=failed_at,
        )
        session.add(item)
        await session.commit()
        return item.id


async def _get(session_factory: async_sessionmaker[AsyncSession], item_id: int) -> QueueItem:
    async with session_factory() as session:
        return await session.get(QueueItem, item_id)


class TestSweep:
    async def test_rearms_items_past_cooldown(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        now = datetime.now(UTC)
        eligible = await _add_failed(session_factory, failed_at=now - timedelta(minutes=61))
        cooling = await _add_failed(session_factory, failed_at=now - timedelta(minutes=10))
        sweeper = RetrySweeper(session_factory, cooldown_minutes=60)

        assert await sweeper.sweep(now) == 1

        rearmed = await _get(session_factory, eligible)
        assert rearmed.status == "pending"
        assert rearmed.retry_count == 1
        assert rearmed.error is None
        assert (await _get(session_factory, cooling)).status == "failed"

    async def test_items_at_ceiling_stay_failed(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        now = datetime.now(UTC)
        exhausted = await _add_failed(
            session_factory, failed_at=now - timedelta(hours=5), retry_count=3, max_retries=3,
        )
        sweeper = RetrySweeper(session_factory, cooldown_minutes=60)

        assert await sweeper.sweep(now) == 0

        item = await _get(session_factory, exhausted)
        assert item.status == "failed"
        assert item.retries_exhausted is True

    async def test_items_without_failure_time_are_skipped(
        self, session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await _add_failed(session_factory, failed_at=None)

        assert await RetrySweeper(session_factory, cooldown_minutes=0).sweep() == 0


class TestRetryCycle:
    async def test_failed_item_is_resent_after_cooldown(
        self,
        container: NotificationContainer,
        primary_transport: RecordingTransport,
        fallback_transport: RecordingTransport,
    ) -> None:
        primary_transport.fail = True
        fallback_transport.fail = True
        item_id = await container.queue.enqueue(
            recipient="jane@test.example.com",
            template_type="plan_expiry_warning",
            rendered=RenderedMessage(subject="Expiring", html="<p>Soon</p>", text="Soon"),
        )

        await container.processor.drain()
        assert (await container.queue.get(item_id)).status == "failed"

        # Cooldown not over yet
        assert await container.sweeper.sweep() == 0

        primary_transport.fail = False
        assert await container.sweeper.sweep(datetime.now(UTC) + timedelta(minutes=61)) == 1
        summary = await container.processor.drain()

        item = await container.queue.get(item_id)
        assert summary.sent == 1
        assert item.status == "sent"
        assert item.retry_count == 1
        assert [message.to for message in primary_transport.sent] == ["jane@test.example.com"]

    async def test_retries_stop_at_the_ceiling(
        self,
        container: NotificationContainer,
        primary_transport: RecordingTransport,
        fallback_transport: RecordingTransport,
    ) -> None:
        primary_transport.fail = True
        fallback_transport.fail = True
        item_id = await container.queue.enqueue(
            recipient="jane@test.example.com",
            template_type="plan_expiry_warning",
            rendered=RenderedMessage(subject="Expiring", html="<p>Soon</p>", text="Soon"),
            max_retries=2,
        )

        later = datetime.now(UTC)
        await container.processor.drain()
        for _ in range(4):
            later += timedelta(hours=2)
            await container.sweeper.sweep(later)
            await container.processor.drain()

        item = await container.queue.get(item_id)
        assert item.status == "failed"
        assert item.retry_count == 2
        # One initial attempt plus two retries
        assert primary_transport.attempts == 3


async def _add_processing(
    session_factory: async_sessionmaker[AsyncSession], *, started_at: datetime | None,
) -> int:
    async with session_factory() as session:
        item = QueueItem(
            recipient="jane@test.example.com",
            type="plan_expiry_warning",
            subject="s",
            status="processing",
            processing_started_at=started_at,
        )
        session.add(item)
        await session.commit()
        return item.id


class TestRecoverStalled:
    async def test_only_old_claims_are_recovered(
        self, session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        now = datetime.now(UTC)
        stalled = await _add_processing(session_factory, started_at=now - timedelta(minutes=90))
        unstamped = await _add_processing(session_factory, started_at=None)
        in_flight = await _add_processing(session_factory, started_at=now - timedelta(minutes=5))
        sweeper = RetrySweeper(session_factory, processing_timeout_minutes=60)

        assert await sweeper.recover_stalled(now) == 2

        recovered = await _get(session_factory, stalled)
        assert recovered.status == "pending"
        assert recovered.processing_started_at is None
        assert recovered.retry_count == 0
        assert (await _get(session_factory, unstamped)).status == "pending"
        assert (await _get(session_factory, in_flight)).status == "processing"

    async def test_failed_items_are_left_to_the_cooldown(
        self, session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await _add_failed(session_factory, failed_at=datetime.now(UTC) - timedelta(hours=5))

        assert await RetrySweeper(session_factory).recover_stalled() == 0

    async def test_item_stuck_by_failed_finalize_is_delivered_later(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        item_id = await container.queue.enqueue(
            recipient="jane@test.example.com",
            template_type="plan_expiry_warning",
            rendered=RenderedMessage(subject="Expiring", html="<p>Soon</p>", text="Soon"),
        )
        transition = QueueRepository.transition

        async def finalize_fails(
            self: QueueRepository, session: AsyncSession, item_id: int,
            expected: QueueStatus, target: QueueStatus, **values: Any,
        ) -> bool:
            if expected is QueueStatus.PROCESSING:
                msg = "UPDATE notification_queue"
                raise OperationalError(msg, {}, Exception("database is locked"))
            return await transition(self, session, item_id, expected, target, **values)

        with patch.object(QueueRepository, "transition", finalize_fails):
            await container.processor.drain()

        stuck = await container.queue.get(item_id)
        assert stuck.status == "processing"
        assert stuck.processing_started_at is not None
        assert (await container.processor.drain()).processed == 0

        # Claim is still fresh
        assert await container.sweeper.recover_stalled() == 0
        assert await container.sweeper.recover_stalled(datetime.now(UTC) + timedelta(minutes=61)) == 1
        summary = await container.processor.drain()

        item = await container.queue.get(item_id)
        assert summary.sent == 1
        assert item.status == "sent"
        assert item.retry_count == 0
        assert len(primary_transport.sent) == 2
