"""Notification pipeline settings.

Environment variables use NOTIFY_ prefix, except for the sender identity and
frontend link base which keep their platform-wide names:
FROM_NAME, FROM_EMAIL and FRONTEND_URL.

Example: NOTIFY_FALLBACK_BACKEND=file, NOTIFY_QUEUE_BATCH_SIZE=5
"""

from __future__ import annotations

from pathlib import Path
from tempfile import gettempdir
from typing import Literal

from pydantic import AliasChoices, EmailStr, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FALLBACK_DIR = Path(gettempdir()) / "notification_service_outbox"
DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "templates" / "email"

FallbackBackend = Literal["file", "console"]


class NotificationSettings(BaseSettings):
    """Delivery, queue, retry and retention configuration."""

    # Sender identity
    from_name: str = Field(
        default="Membership Platform",
        max_length=100,
        validation_alias=AliasChoices("FROM_NAME", "NOTIFY_FROM_NAME", "from_name"),
        description="Display name used in the From header",
    )
    from_email: EmailStr = Field(
        default="noreply@example.com",
        validation_alias=AliasChoices("FROM_EMAIL", "NOTIFY_FROM_EMAIL", "from_email"),
        description="Sender address used in the From header",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("FRONTEND_URL", "NOTIFY_FRONTEND_URL", "frontend_url"),
        description="Base URL for links embedded in rendered messages",
    )
    brand_name: str = Field(
        default="Membership Platform",
        max_length=100,
        description="Brand appended to default subjects",
    )
    admin_email: EmailStr | None = Field(
        default=None,
        description="Extra admin address included in admin fan-outs",
    )

    # Templates
    template_dir: Path = Field(
        default=DEFAULT_TEMPLATE_DIR,
        description="Directory holding file-backed templates ({type}.html / {type}.txt)",
    )

    # Delivery
    fallback_backend: FallbackBackend = Field(
        default="file",
        description="Fallback transport: file (durable local record) or console (log only)",
    )
    fallback_dir: Path = Field(
        default=DEFAULT_FALLBACK_DIR,
        description="Directory where the file fallback writes undelivered messages",
    )
    primary_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Upper bound in seconds for one primary transport attempt",
    )

    # Queue and retries
    queue_batch_size: int = Field(default=5, ge=1, le=500, description="Items drained per run")
    max_retries: int = Field(default=3, ge=0, le=20, description="Retry ceiling for queue items")
    retry_cooldown_minutes: int = Field(
        default=60,
        ge=0,
        le=10_080,
        description="Minutes a failed item waits before the sweeper re-arms it",
    )
    processing_timeout_minutes: int = Field(
        default=60,
        ge=1,
        le=10_080,
        description="Minutes an item may stay in processing before the sweeper returns it to pending",
    )

    # Retention and reporting
    log_retention_days: int = Field(default=90, ge=1, description="Audit log retention")
    queue_retention_days: int = Field(default=7, ge=1, description="Finished queue item retention")
    stats_window_days: int = Field(default=30, ge=1, le=365, description="Trailing stats window")
    health_success_threshold: float = Field(
        default=90.0,
        ge=0.0,
        le=100.0,
        description="Health check alerts once failures exceed 100 minus this percentage",
    )
    expiry_warning_days: int = Field(
        default=1,
        ge=1,
        le=60,
        description="Days ahead the plan expiry check looks for expiring memberships",
    )

    # Scheduler
    scheduler_enabled: bool = Field(default=True, description="Start periodic jobs on startup")

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )

    @field_validator("frontend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def from_header(self) -> str:
        """Formatted From header value."""
        return f'"{self.from_name}" <{self.from_email}>'


__all__ = [
    "DEFAULT_FALLBACK_DIR",
    "DEFAULT_TEMPLATE_DIR",
    "FallbackBackend",
    "NotificationSettings",
]
