"""Admin API router for the notification pipeline.

Template Endpoints:
- GET /notifications/templates - List template rows
- GET /notifications/templates/{template_type} - Get one template row
- PUT /notifications/templates/{template_type} - Edit (or create) a template

Audit Endpoints:
- GET /notifications/stats - Delivery figures over a trailing window
- GET /notifications/logs - Filtered, paginated audit records

Queue Endpoints:
- GET /notifications/queue - Paginated queue items
- DELETE /notifications/queue - Delete items by status
- POST /notifications/queue/process - Drain the queue now

Job Endpoints:
- POST /notifications/jobs/expiry-check - Run the plan expiry check now
- POST /notifications/jobs/limits-renewal - Run the monthly renewal now
- GET /notifications/jobs - Scheduler status per job
- POST /notifications/jobs/{name}/run - Run any registered job now

Transport Endpoints:
- POST /notifications/test-send - Send one template with sample data
- POST /notifications/transport/verify - Primary transport health check
- POST /notifications/transport/reinitialize - Reset circuit and template cache
- GET /notifications/status - Channel, circuit and queue state
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Query

from notification_service.core.database import SearchResult
from notification_service.core.exceptions import ValidationException
from notification_service.features.notifications.container import NotificationContainer
from notification_service.features.notifications.dependencies import (
    AuditLogDep,
    ChannelDep,
    ContainerDep,
    OrchestratorDep,
    ProcessorDep,
    QueueDep,
    SchedulerDep,
    TemplateStoreDep,
)
from notification_service.features.notifications.models import DeliveryStatus, QueueStatus
from notification_service.features.notifications.schemas import (
    ChannelStatusResponse,
    DeliveryResultResponse,
    DrainResponse,
    JobRunResponse,
    JobStatusResponse,
    NotificationRecordListResponse,
    NotificationRecordResponse,
    QueueClearResponse,
    QueueItemListResponse,
    QueueItemResponse,
    SendTestRequest,
    StatsResponse,
    TemplateListResponse,
    TemplateResponse,
    TemplateUpdate,
    TransportVerifyResponse,
)
from notification_service.infra.logging import get_lazy_logger

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications-admin"])


def _page_fields(result: SearchResult[Any]) -> dict[str, Any]:
    return {
        "total": result.total,
        "page": result.page,
        "pages": result.pages,
        "limit": result.limit,
        "has_next": result.has_next,
    }


# ============================================================================
# Templates
# ============================================================================


@router.get("/templates", response_model=TemplateListResponse, summary="List templates")
async def list_templates(store: TemplateStoreDep) -> TemplateListResponse:
    rows = await store.list_templates()
    return TemplateListResponse(
        items=[TemplateResponse.model_validate(row) for row in rows],
        total=len(rows),
    )


@router.get(
    "/templates/{template_type}",
    response_model=TemplateResponse,
    summary="Get a template",
    responses={404: {"description": "Template not found"}},
)
async def get_template(template_type: str, store: TemplateStoreDep) -> TemplateResponse:
    return TemplateResponse.model_validate(await store.get_template(template_type))


@router.put(
    "/templates/{template_type}",
    response_model=TemplateResponse,
    summary="Edit a template",
    description="""
Update subject, HTML, text or active flag of a template.

Every supplied part is compiled first; a syntax error is rejected with 422.
The template's cache entry is invalidated before the response is returned.
""",
    responses={404: {"description": "Template not found"}, 422: {"description": "Template syntax error"}},
)
async def update_template(
    template_type: str,
    payload: TemplateUpdate,
    store: TemplateStoreDep,
) -> TemplateResponse:
    row = await store.update_template(
        template_type,
        subject=payload.subject,
        html=payload.html,
        text=payload.text,
        active=payload.active,
        create=payload.create,
    )
    return TemplateResponse.model_validate(row)


# ============================================================================
# Audit log
# ============================================================================


@router.get("/stats", response_model=StatsResponse, summary="Delivery statistics")
async def get_stats(
    audit: AuditLogDep,
    container: ContainerDep,
    days: Annotated[int | None, Query(ge=1, le=365, description="Trailing window in days")] = None,
) -> StatsResponse:
    stats = await audit.stats(days=days or container.settings.stats_window_days)
    return StatsResponse(**stats)


@router.get("/logs", response_model=NotificationRecordListResponse, summary="Audit records")
async def list_logs(
    audit: AuditLogDep,
    status: Annotated[DeliveryStatus | None, Query(description="sent | failed | logged")] = None,
    type: Annotated[str | None, Query(description="Template type")] = None,
    recipient: Annotated[str | None, Query(description="Recipient substring")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> NotificationRecordListResponse:
    result = await audit.query(
        status=status.value if status else None,
        template_type=type,
        recipient=recipient,
        page=page,
        limit=limit,
    )
    return NotificationRecordListResponse(
        items=[NotificationRecordResponse.model_validate(item) for item in result.items],
        **_page_fields(result),
    )


# ============================================================================
# Queue
# ============================================================================


@router.get("/queue", response_model=QueueItemListResponse, summary="Queue items")
async def list_queue(
    queue: QueueDep,
    status: Annotated[QueueStatus | None, Query()] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> QueueItemListResponse:
    result = await queue.list_items(status=status, page=page, limit=limit)
    return QueueItemListResponse(
        items=[QueueItemResponse.model_validate(item) for item in result.items],
        counts=await queue.counts(),
        **_page_fields(result),
    )


@router.delete(
    "/queue",
    response_model=QueueClearResponse,
    summary="Delete queue items by status",
    responses={422: {"description": "Items in processing cannot be deleted"}},
)
async def clear_queue(
    queue: QueueDep,
    status: Annotated[QueueStatus, Query()] = QueueStatus.FAILED,
) -> QueueClearResponse:
    if status == QueueStatus.PROCESSING:
        raise ValidationException(
            "Items in processing cannot be deleted",
            extra={"queue_status": status.value},
        )
    deleted = await queue.clear(status)
    logger.info("Queue cleared via admin API", extra={"status": status.value, "deleted": deleted})
    return QueueClearResponse(status=status, deleted=deleted)


@router.post("/queue/process", response_model=DrainResponse, summary="Drain the queue now")
async def process_queue(
    processor: ProcessorDep,
    batch_size: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> DrainResponse:
    summary = await processor.drain(batch_size)
    return DrainResponse(**summary.to_dict())


# ============================================================================
# Jobs
# ============================================================================


@router.post("/jobs/expiry-check", summary="Run the plan expiry check now")
async def run_expiry_check(orchestrator: OrchestratorDep) -> dict[str, Any]:
    return await orchestrator.check_plan_expiry()


@router.post("/jobs/limits-renewal", summary="Run the monthly limits renewal now")
async def run_limits_renewal(orchestrator: OrchestratorDep) -> dict[str, Any]:
    return await orchestrator.renew_monthly_limits()


@router.get("/jobs", response_model=list[JobStatusResponse], summary="Scheduler status")
async def list_jobs(scheduler: SchedulerDep) -> list[JobStatusResponse]:
    return [JobStatusResponse(**entry) for entry in scheduler.status()]


@router.post(
    "/jobs/{name}/run",
    response_model=JobRunResponse,
    summary="Run a scheduled job now",
    responses={404: {"description": "Job not found"}},
)
async def run_job(name: str, scheduler: SchedulerDep) -> JobRunResponse:
    lazy_logger.debug(lambda: f"Manual run requested for job {name}")
    return JobRunResponse(**await scheduler.run_now(name))


# ============================================================================
# Transport
# ============================================================================


@router.post(
    "/test-send",
    response_model=DeliveryResultResponse,
    summary="Send a test notification",
    responses={404: {"description": "Template not found"}},
)
async def test_send(payload: SendTestRequest, orchestrator: OrchestratorDep) -> DeliveryResultResponse:
    result = await orchestrator.send_test(payload.to, payload.template_type, payload.data)
    return DeliveryResultResponse(**result.to_dict())


@router.post("/transport/verify", response_model=TransportVerifyResponse, summary="Verify primary transport")
async def verify_transport(channel: ChannelDep) -> TransportVerifyResponse:
    return TransportVerifyResponse(**await channel.verify())


@router.post(
    "/transport/reinitialize",
    response_model=ChannelStatusResponse,
    summary="Reset the circuit and template cache",
)
async def reinitialize_transport(channel: ChannelDep, container: ContainerDep) -> ChannelStatusResponse:
    channel.reinitialize()
    return await _channel_status(container)


@router.get("/status", response_model=ChannelStatusResponse, summary="Pipeline status")
async def get_status(container: ContainerDep) -> ChannelStatusResponse:
    return await _channel_status(container)


async def _channel_status(container: NotificationContainer) -> ChannelStatusResponse:
    return ChannelStatusResponse(
        **container.channel.status(),
        queue=await container.queue.counts(),
        scheduler_running=bool(container.scheduler and container.scheduler.running),
    )


__all__ = ["router"]
