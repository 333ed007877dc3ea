"""HTTP application settings (``APP_`` environment prefix)."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["development", "staging", "production", "test"]


class AppSettings(BaseSettings):
    """FastAPI metadata, route prefix and the uvicorn bind address.

    Example: APP_API_PREFIX=/admin, APP_PORT=9000
    """

    service_name: str = Field(default="notification-service", pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$")
    title: str = Field(default="Notification Service API", min_length=1, max_length=200)
    description: str = "Template rendering, delivery, queueing and scheduling of platform notifications"
    version: str = Field(default="1.0.0", pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9]+)?$")
    environment: Environment = "development"
    api_prefix: str = Field(
        default="/api/v1",
        pattern=r"^/.*$",
        description="Prefix for the health and notification admin routes; /metrics is never prefixed",
    )
    debug: bool = False
    host: str = Field(default="0.0.0.0", description="Bind host for `notify serve`")  # noqa: S104
    port: int = Field(default=8000, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )


__all__ = ["AppSettings", "Environment"]
