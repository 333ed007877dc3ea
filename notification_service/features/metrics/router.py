"""Prometheus scrape endpoint.

Endpoints:
    GET /metrics - service metrics in the Prometheus text format

Metrics exposed are the ones registered on the service registry in
``infra.metrics.prometheus``: sends by method and status, transport latency
and errors, circuit state, queue processing and re-arming, scheduler runs
and admin API errors.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from notification_service.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get("/metrics")
async def metrics() -> Response:
    """Expose the service registry for scraping."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


__all__ = ["router"]
