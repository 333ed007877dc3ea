"""FastAPI dependencies for the notification admin API.

The service container is built at startup and stored on ``app.state``; these
dependencies hand its parts to route handlers:

    @router.get("/stats")
    async def get_stats(audit: AuditLogDep) -> StatsResponse:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from notification_service.core.exceptions import ServiceUnavailableException
from notification_service.features.notifications.audit import AuditLog
from notification_service.features.notifications.channel import DeliveryChannel
from notification_service.features.notifications.container import NotificationContainer
from notification_service.features.notifications.orchestrator import NotificationOrchestrator
from notification_service.features.notifications.queue import NotificationQueue, QueueProcessor
from notification_service.features.notifications.templates import TemplateStore
from notification_service.tasks.scheduler import NotificationScheduler


def get_container(request: Request) -> NotificationContainer:
    """Container stored on the application by the lifespan handler.

    Raises:
        ServiceUnavailableException: If the app has not finished starting.
    """
    container = getattr(request.app.state, "notifications", None)
    if container is None:
        raise ServiceUnavailableException("Notification services are not initialized")
    return container


ContainerDep = Annotated[NotificationContainer, Depends(get_container)]


def get_template_store(container: ContainerDep) -> TemplateStore:
    return container.store


def get_audit_log(container: ContainerDep) -> AuditLog:
    return container.audit


def get_queue(container: ContainerDep) -> NotificationQueue:
    return container.queue


def get_processor(container: ContainerDep) -> QueueProcessor:
    return container.processor


def get_channel(container: ContainerDep) -> DeliveryChannel:
    return container.channel


def get_orchestrator(container: ContainerDep) -> NotificationOrchestrator:
    return container.orchestrator


def get_scheduler(container: ContainerDep) -> NotificationScheduler:
    """Scheduler attached to the container.

    Raises:
        ServiceUnavailableException: If no scheduler was attached.
    """
    if container.scheduler is None:
        raise ServiceUnavailableException("Scheduler is not configured")
    return container.scheduler


TemplateStoreDep = Annotated[TemplateStore, Depends(get_template_store)]
AuditLogDep = Annotated[AuditLog, Depends(get_audit_log)]
QueueDep = Annotated[NotificationQueue, Depends(get_queue)]
ProcessorDep = Annotated[QueueProcessor, Depends(get_processor)]
ChannelDep = Annotated[DeliveryChannel, Depends(get_channel)]
OrchestratorDep = Annotated[NotificationOrchestrator, Depends(get_orchestrator)]
SchedulerDep = Annotated[NotificationScheduler, Depends(get_scheduler)]


__all__ = [
    "AuditLogDep",
    "ChannelDep",
    "ContainerDep",
    "OrchestratorDep",
    "ProcessorDep",
    "QueueDep",
    "SchedulerDep",
    "TemplateStoreDep",
    "get_container",
]
