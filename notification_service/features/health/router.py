"""Health check API endpoints.

- Liveness: /health/live - Is the process alive?
- Comprehensive health: /health/ - Database, transport circuit and scheduler state
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field

from notification_service.core.settings import get_app_settings
from notification_service.features.notifications.dependencies import ContainerDep  # noqa: TC001
from notification_service.infra.database.session import check_connection

router = APIRouter(prefix="/health", tags=["health"])

HealthStatus = Literal["healthy", "degraded", "unhealthy"]


class HealthResponse(BaseModel):
    status: HealthStatus = Field(description="Health status (healthy, degraded, unhealthy)")
    timestamp: datetime = Field(description="Check timestamp")
    service: str
    version: str
    checks: dict[str, bool] = Field(default_factory=dict, description="Individual dependency checks")


class LivenessResponse(BaseModel):
    status: Literal["alive"] = "alive"
    timestamp: datetime


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Comprehensive health check",
    responses={503: {"description": "Database unreachable"}},
)
async def health_check(container: ContainerDep, response: Response) -> HealthResponse:
    """Overall health of the notification service.

    The database is required; a blocked primary transport or a stopped
    scheduler only degrade the service, since the fallback keeps sends
    flowing.
    """
    app_settings = get_app_settings()
    checks = {
        "database": await check_connection(container.session_factory),
        "primary_transport": container.channel.primary_configured and container.circuit.allows_primary,
        "scheduler": bool(container.scheduler and container.scheduler.running),
    }
    if not checks["database"]:
        health: HealthStatus = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif all(checks.values()):
        health = "healthy"
    else:
        health = "degraded"
    return HealthResponse(
        status=health,
        timestamp=datetime.now(UTC),
        service=app_settings.service_name,
        version=app_settings.version,
        checks=checks,
    )


@router.get("/live", response_model=LivenessResponse, summary="Liveness check")
async def liveness() -> LivenessResponse:
    return LivenessResponse(timestamp=datetime.now(UTC))


__all__ = ["HealthResponse", "LivenessResponse", "router"]
