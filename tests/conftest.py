"""Pytest configuration and shared fixtures.

Organization:
    - Database Fixtures: in-memory SQLite engine and session factory
    - Settings Fixtures: notification and transport settings for tests
    - Transport Fixtures: recording fakes for the primary and fallback transports
    - Directory Fixtures: in-memory member directory
    - Container Fixtures: fully wired notification container
    - Application Fixtures: FastAPI app and HTTP client
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import os
from typing import TYPE_CHECKING

from httpx import ASGITransport, AsyncClient
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from notification_service.infra.email.providers.base import (
    BaseTransport,
    OutboundMessage,
    TransportResult,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from datetime import datetime
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notification_service.core.settings import NotificationSettings, TransportSettings
    from notification_service.features.notifications.container import NotificationContainer
    from notification_service.features.notifications.directory import Deal, Member, Redemption

# Keep tests away from real databases, mail servers and background jobs
os.environ.setdefault("DB_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFY_SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_JSON_LOGS", "false")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory SQLite engine with every table created.

    StaticPool keeps one connection so all sessions see the same database.
    """
    from notification_service.core.database import Base
    from notification_service.features.notifications import models  # noqa: F401
    from notification_service.features.notifications.directory import directory_metadata

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(directory_metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the in-memory engine."""
    from notification_service.infra.database.session import create_session_factory

    return create_session_factory(db_engine)


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def notification_settings(tmp_path: Path) -> NotificationSettings:
    """Pipeline settings using the packaged templates and a temporary outbox."""
    from notification_service.core.settings import NotificationSettings

    return NotificationSettings(
        from_name="Test Platform",
        from_email="noreply@test.example.com",
        frontend_url="https://app.test/",
        brand_name="Test Platform",
        fallback_backend="file",
        fallback_dir=tmp_path / "outbox",
        primary_timeout=0.2,
        queue_batch_size=5,
        max_retries=3,
        retry_cooldown_minutes=60,
        scheduler_enabled=False,
    )


@pytest.fixture
def transport_settings() -> TransportSettings:
    """Primary transport settings with credentials present."""
    from notification_service.core.settings import TransportSettings

    return TransportSettings(
        host="smtp.test.example.com",
        port=587,
        user="mailer",
        password="secret",
        disable_verify=True,
    )


# ============================================================================
# Transport Fixtures
# ============================================================================


class RecordingTransport(BaseTransport):
    """Fake transport that records accepted messages.

    Args:
        name: Transport name reported in results.
        fail: Return a failure result instead of accepting.
        delay: Seconds to wait before answering.
        error: Exception raised from the send.
    """

    def __init__(
        self,
        name: str = "fake",
        *,
        fail: bool = False,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._name = name
        self.fail = fail
        self.delay = delay
        self.error = error
        self.healthy = True
        self.sent: list[OutboundMessage] = []
        self.attempts = 0

    @property
    def transport_name(self) -> str:
        return self._name

    async def _do_send(self, message: OutboundMessage) -> TransportResult:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.fail:
            return TransportResult.failure_result(self._name, "recipient rejected", "REJECTED")
        self.sent.append(message)
        return TransportResult.success_result(f"{self._name}-{len(self.sent)}", self._name)

    async def _do_health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def primary_transport() -> RecordingTransport:
    """Primary transport fake that accepts every message."""
    return RecordingTransport("smtp")


@pytest.fixture
def fallback_transport() -> RecordingTransport:
    """Fallback transport fake that accepts every message."""
    return RecordingTransport("file")


# ============================================================================
# Directory Fixtures
# ============================================================================


@dataclass
class InMemoryDirectory:
    """Member directory backed by plain dictionaries."""

    members: dict[int, Member] = field(default_factory=dict)
    deals: dict[int, Deal] = field(default_factory=dict)
    redemptions: dict[int, Redemption] = field(default_factory=dict)
    subscribers: list[Member] = field(default_factory=list)
    expiring: list[Member] = field(default_factory=list)
    renewed: list[Member] = field(default_factory=list)
    opted_out: set[tuple[int, str]] = field(default_factory=set)

    @property
    def admins(self) -> list[Member]:
        return [member for member in self.members.values() if member.user_type == "admin"]

    async def get_member(self, member_id: int) -> Member | None:
        return self.members.get(member_id)

    async def get_deal(self, deal_id: int) -> Deal | None:
        return self.deals.get(deal_id)

    async def get_redemption(self, redemption_id: int) -> Redemption | None:
        return self.redemptions.get(redemption_id)

    async def list_admins(self) -> list[Member]:
        return self.admins

    async def list_deal_subscribers(self, exclude_member_id: int | None = None) -> list[Member]:
        return [member for member in self.subscribers if member.id != exclude_member_id]

    async def members_with_plans_expiring(self, start: datetime, end: datetime) -> list[Member]:
        return [
            member
            for member in self.expiring
            if member.plan_expires_at is not None and start <= member.plan_expires_at < end
        ]

    async def renew_monthly_limits(self) -> list[Member]:
        return list(self.renewed)

    async def email_enabled(self, member_id: int, notification_type: str) -> bool:
        return (member_id, notification_type) not in self.opted_out


@pytest.fixture
def directory() -> InMemoryDirectory:
    """Directory with one admin and one member."""
    from notification_service.features.notifications.directory import Member

    return InMemoryDirectory(
        members={
            1: Member(id=1, email="admin@test.example.com", full_name="Ada Admin", user_type="admin"),
            2: Member(
                id=2,
                email="jane@test.example.com",
                full_name="Jane Doe",
                membership_number="M-0002",
            ),
        },
    )


# ============================================================================
# Container Fixtures
# ============================================================================


@pytest.fixture
def container(
    session_factory: async_sessionmaker[AsyncSession],
    notification_settings: NotificationSettings,
    transport_settings: TransportSettings,
    primary_transport: RecordingTransport,
    fallback_transport: RecordingTransport,
    directory: InMemoryDirectory,
) -> NotificationContainer:
    """Notification container wired to fakes and the in-memory database."""
    from notification_service.features.notifications.container import build_container

    return build_container(
        session_factory,
        settings=notification_settings,
        transport_settings=transport_settings,
        primary=primary_transport,
        fallback=fallback_transport,
        directory=directory,
        primary_configured=True,
    )


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app(container: NotificationContainer) -> FastAPI:
    """FastAPI application using the test container."""
    from notification_service.app.main import create_app

    return create_app(container=container)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client for the test application.

    Example:
        async def test_health_check(client):
            response = await client.get("/api/v1/health/")
            assert response.status_code == 200
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
