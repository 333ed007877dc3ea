"""Application lifespan management.

Startup Order:
1. Logging
2. Database engine and notification tables
3. Notification container (templates, channel, queue, audit, orchestrator)
4. Scheduler with the default jobs, started when enabled
5. Primary transport verification (never blocks startup)

Shutdown Order: Reverse of startup.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from notification_service.core.settings import (
    get_app_settings,
    get_logging_settings,
    get_notification_settings,
)
from notification_service.features.notifications.container import open_container
from notification_service.infra.logging import setup_logging
from notification_service.tasks import NotificationScheduler, register_default_jobs

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from notification_service.features.notifications.container import NotificationContainer

logger = logging.getLogger(__name__)


def attach_scheduler(container: NotificationContainer, *, start: bool) -> NotificationScheduler:
    """Register the default jobs for ``container`` and optionally start them."""
    scheduler = NotificationScheduler()
    register_default_jobs(scheduler, container)
    container.scheduler = scheduler
    if start:
        scheduler.start_all()
    else:
        logger.info("Scheduler disabled, jobs can still be run on demand")
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start and stop the notification services around the app's lifetime.

    A container already present on ``app.state`` (tests, embedding) is used
    as is and left for its owner to close.
    """
    app_settings = get_app_settings()
    setup_logging(get_logging_settings(), force=True)
    logger.info(
        "Application starting",
        extra={
            "service": app_settings.service_name,
            "version": app_settings.version,
            "environment": app_settings.environment,
        },
    )

    container: NotificationContainer | None = getattr(app.state, "notifications", None)
    owned = container is None
    if container is None:
        container = await open_container()
        attach_scheduler(container, start=get_notification_settings().scheduler_enabled)
        app.state.notifications = container

    verification = await container.channel.verify()
    logger.info("Startup transport verification", extra=verification)

    try:
        yield
    finally:
        logger.info("Application shutting down")
        if owned:
            await container.close()
            app.state.notifications = None
        logger.info("Application stopped")


__all__ = ["attach_scheduler", "lifespan"]
