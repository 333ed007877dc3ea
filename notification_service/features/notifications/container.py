"""Service container for the notification pipeline.

Everything with process-wide state (template cache, circuit, processor lock)
is built once here and handed to callers, instead of living in module
globals. The FastAPI app keeps its container on ``app.state``; tests build
their own.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from notification_service.core.settings import (
    DatabaseSettings,
    NotificationSettings,
    TransportSettings,
    get_db_settings,
    get_notification_settings,
    get_transport_settings,
)
from notification_service.features.notifications.audit import AuditLog
from notification_service.features.notifications.channel import DeliveryChannel
from notification_service.features.notifications.directory import SqlMemberDirectory
from notification_service.features.notifications.orchestrator import NotificationOrchestrator
from notification_service.features.notifications.queue import NotificationQueue, QueueProcessor
from notification_service.features.notifications.retry import RetrySweeper
from notification_service.features.notifications.templates import (
    TemplateCache,
    TemplateRenderer,
    TemplateStore,
)
from notification_service.infra.database.session import (
    create_engine,
    create_session_factory,
    init_models,
)
from notification_service.infra.email.providers import (
    build_fallback_transport,
    build_primary_transport,
)
from notification_service.infra.resilience import TransportCircuit

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notification_service.features.notifications.directory import MemberDirectory
    from notification_service.infra.email.providers import Transport
    from notification_service.tasks.scheduler import NotificationScheduler

logger = logging.getLogger(__name__)


@dataclass
class NotificationContainer:
    """Wired notification services sharing one database and one circuit."""

    session_factory: async_sessionmaker[AsyncSession]
    settings: NotificationSettings
    transport_settings: TransportSettings
    renderer: TemplateRenderer
    store: TemplateStore
    audit: AuditLog
    queue: NotificationQueue
    circuit: TransportCircuit
    primary: Transport
    fallback: Transport
    channel: DeliveryChannel
    processor: QueueProcessor
    sweeper: RetrySweeper
    directory: MemberDirectory
    orchestrator: NotificationOrchestrator
    engine: AsyncEngine | None = None
    scheduler: NotificationScheduler | None = None

    async def close(self) -> None:
        """Stop the scheduler and dispose of the engine, if owned."""
        if self.scheduler is not None:
            self.scheduler.shutdown()
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database engine disposed")


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: NotificationSettings | None = None,
    transport_settings: TransportSettings | None = None,
    primary: Transport | None = None,
    fallback: Transport | None = None,
    directory: MemberDirectory | None = None,
    primary_configured: bool | None = None,
    engine: AsyncEngine | None = None,
) -> NotificationContainer:
    """Wire every notification service.

    Args:
        session_factory: Session factory for the notification tables.
        settings: Pipeline settings, defaults to the environment.
        transport_settings: Primary transport settings, defaults to the environment.
        primary: Primary transport override (tests).
        fallback: Fallback transport override (tests).
        directory: Member directory override, defaults to the SQL one.
        primary_configured: Override the credential check (tests).
        engine: Engine to dispose of on ``close``.
    """
    settings = settings or get_notification_settings()
    transport_settings = transport_settings or get_transport_settings()

    renderer = TemplateRenderer()
    store = TemplateStore(
        session_factory,
        settings.template_dir,
        renderer,
        brand_name=settings.brand_name,
        cache=TemplateCache(),
    )
    audit = AuditLog(session_factory)
    queue = NotificationQueue(session_factory, default_max_retries=settings.max_retries)
    circuit = TransportCircuit("primary")
    primary = primary or build_primary_transport(transport_settings, settings)
    fallback = fallback or build_fallback_transport(settings)
    if primary_configured is None:
        primary_configured = transport_settings.is_configured

    channel = DeliveryChannel(
        store=store,
        renderer=renderer,
        queue=queue,
        audit=audit,
        primary=primary,
        fallback=fallback,
        circuit=circuit,
        primary_configured=primary_configured,
        primary_timeout=settings.primary_timeout,
        from_header=settings.from_header,
        verify_disabled=transport_settings.disable_verify,
    )
    processor = QueueProcessor(queue, channel, audit, batch_size=settings.queue_batch_size)
    sweeper = RetrySweeper(
        session_factory,
        cooldown_minutes=settings.retry_cooldown_minutes,
        processing_timeout_minutes=settings.processing_timeout_minutes,
    )
    directory = directory or SqlMemberDirectory(session_factory)
    orchestrator = NotificationOrchestrator(
        channel=channel,
        directory=directory,
        audit=audit,
        queue=queue,
        settings=settings,
    )

    logger.info(
        "Notification container built",
        extra={
            "primary_transport": primary.transport_name,
            "primary_configured": primary_configured,
            "fallback_transport": fallback.transport_name,
        },
    )
    return NotificationContainer(
        session_factory=session_factory,
        settings=settings,
        transport_settings=transport_settings,
        renderer=renderer,
        store=store,
        audit=audit,
        queue=queue,
        circuit=circuit,
        primary=primary,
        fallback=fallback,
        channel=channel,
        processor=processor,
        sweeper=sweeper,
        directory=directory,
        orchestrator=orchestrator,
        engine=engine,
    )


async def open_container(
    db_settings: DatabaseSettings | None = None,
    *,
    settings: NotificationSettings | None = None,
    transport_settings: TransportSettings | None = None,
) -> NotificationContainer:
    """Create the engine, ensure tables and wire a container that owns the engine."""
    db_settings = db_settings or get_db_settings()
    engine = create_engine(db_settings)
    if db_settings.create_tables:
        await init_models(engine)
    return build_container(
        create_session_factory(engine),
        settings=settings,
        transport_settings=transport_settings,
        engine=engine,
    )


__all__ = ["NotificationContainer", "build_container", "open_container"]
