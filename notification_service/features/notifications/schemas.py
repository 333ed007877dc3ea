"""Pydantic schemas for the notification admin API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from notification_service.features.notifications.models import QueueStatus

# ============================================================================
# Template Schemas
# ============================================================================


class TemplateResponse(BaseModel):
    """A stored template row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    subject: str
    html: str
    text: str
    active: bool
    created_at: datetime
    updated_at: datetime


class TemplateListResponse(BaseModel):
    items: list[TemplateResponse]
    total: int


class TemplateUpdate(BaseModel):
    """Payload for editing a template. Omitted fields are left unchanged."""

    subject: str | None = Field(default=None, min_length=1, max_length=500)
    html: str | None = Field(default=None, description="Jinja2 HTML body template")
    text: str | None = Field(default=None, description="Jinja2 plain-text body template")
    active: bool | None = None
    create: bool = Field(default=False, description="Create the template when it does not exist")


# ============================================================================
# Audit Log Schemas
# ============================================================================


class StatsResponse(BaseModel):
    window_days: int
    total: int
    sent: int
    failed: int
    logged: int
    pending: int
    success_rate: float = Field(description="Share of sent records in the window, in percent")
    failure_rate: float = Field(description="Share of failed records in the window, in percent")


class NotificationRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    recipient: str
    type: str
    subject: str | None
    status: str
    method: str | None
    message_id: str | None
    error: str | None
    data: dict[str, Any] | None
    created_at: datetime


class NotificationRecordListResponse(BaseModel):
    items: list[NotificationRecordResponse]
    total: int
    page: int
    pages: int
    limit: int
    has_next: bool


# ============================================================================
# Queue Schemas
# ============================================================================


class QueueItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    recipient: str
    type: str
    subject: str
    priority: str
    status: str
    scheduled_for: datetime | None
    processing_started_at: datetime | None
    retry_count: int
    max_retries: int
    error: str | None
    message_id: str | None
    delivery_method: str | None
    created_at: datetime
    sent_at: datetime | None
    failed_at: datetime | None


class QueueItemListResponse(BaseModel):
    items: list[QueueItemResponse]
    total: int
    page: int
    pages: int
    limit: int
    has_next: bool
    counts: dict[str, int] = Field(description="Item count per status")


class QueueClearResponse(BaseModel):
    status: QueueStatus
    deleted: int


class DrainResponse(BaseModel):
    processed: int
    sent: int
    failed: int
    skipped: bool = Field(description="True when another drain was already running")
    item_ids: list[int]


# ============================================================================
# Scheduler Schemas
# ============================================================================


class JobStatusResponse(BaseModel):
    name: str
    schedule: str
    description: str
    is_running: bool
    in_progress: bool
    last_run: datetime | None
    next_run: datetime | None
    last_error: str | None
    run_count: int


class JobRunResponse(BaseModel):
    name: str
    success: bool
    result: Any = None
    error: str | None = None


# ============================================================================
# Delivery Schemas
# ============================================================================


class SendTestRequest(BaseModel):
    """Payload for sending one template with sample data."""

    to: EmailStr
    template_type: str = Field(default="user_welcome", min_length=1, max_length=100)
    data: dict[str, Any] = Field(default_factory=dict, description="Overrides for the sample data")


class DeliveryResultResponse(BaseModel):
    success: bool
    method: str | None = None
    message_id: str | None = None
    error: str | None = None
    queue_id: int | None = None


class TransportVerifyResponse(BaseModel):
    verified: bool | None
    skipped: bool
    reason: str | None = None


class CircuitResponse(BaseModel):
    name: str
    state: str
    changed_at: datetime | None
    last_event: str | None


class ChannelStatusResponse(BaseModel):
    primary_transport: str
    primary_configured: bool
    fallback_transport: str
    primary_timeout: float
    verify_disabled: bool
    circuit: CircuitResponse
    cached_templates: int
    queue: dict[str, int] = Field(default_factory=dict)
    scheduler_running: bool = False


__all__ = [
    "ChannelStatusResponse",
    "CircuitResponse",
    "DeliveryResultResponse",
    "DrainResponse",
    "JobRunResponse",
    "JobStatusResponse",
    "NotificationRecordListResponse",
    "NotificationRecordResponse",
    "QueueClearResponse",
    "QueueItemListResponse",
    "QueueItemResponse",
    "SendTestRequest",
    "StatsResponse",
    "TemplateListResponse",
    "TemplateResponse",
    "TemplateUpdate",
    "TransportVerifyResponse",
]
