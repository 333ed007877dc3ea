"""The fixed set of periodic notification jobs.

Each job is a coroutine taking the service container. ``register_default_jobs``
binds them to a container and registers them on a scheduler:

=======================  ==============  =========================================
Job                      Schedule (UTC)  Work
=======================  ==============  =========================================
drain_queue              every 5 min     send due queue items
plan_expiry_check        daily 09:00     warn members whose plan is ending
monthly_limits_renewal   1st, 00:00      reset monthly counters and notify
weekly_cleanup           Sunday 02:00    prune old audit records and queue items
health_check             hourly          alert admins on a high failure rate
admin_daily_summary      daily 08:00     mail yesterday's figures to admins
retry_sweep              hourly          re-arm failed and stalled queue items
analytics_rollup         daily 01:00     write per-template daily analytics
=======================  ==============  =========================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import functools
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from notification_service.features.notifications.container import NotificationContainer
    from notification_service.tasks.scheduler import NotificationScheduler

logger = logging.getLogger(__name__)


# =============================================================================
# Job bodies
# =============================================================================


async def drain_queue(container: NotificationContainer) -> dict[str, Any]:
    summary = await container.processor.drain()
    return summary.to_dict()


async def plan_expiry_check(container: NotificationContainer) -> dict[str, Any]:
    return await container.orchestrator.check_plan_expiry()


async def monthly_limits_renewal(container: NotificationContainer) -> dict[str, Any]:
    return await container.orchestrator.renew_monthly_limits()


async def weekly_cleanup(container: NotificationContainer) -> dict[str, Any]:
    """Delete audit records and finished queue items past their retention."""
    settings = container.settings
    records = await container.audit.cleanup(settings.log_retention_days)
    queue_items = await container.queue.cleanup(settings.queue_retention_days)
    return {"audit_records_deleted": records, "queue_items_deleted": queue_items}


async def health_check(container: NotificationContainer) -> dict[str, Any]:
    """Sample the trailing day's failure rate and alert admins when it is too high.

    Only ``failed`` records count against health. Fallback deliveries reached
    the recipient and are expected whenever the primary transport is absent.
    """
    settings = container.settings
    stats = await container.audit.stats(days=1)
    circuit = container.circuit.snapshot()
    max_failure_rate = round(100 - settings.health_success_threshold, 2)
    healthy = stats["total"] == 0 or stats["failure_rate"] <= max_failure_rate

    alert = None
    if not healthy:
        logger.warning(
            "Notification failure rate above threshold",
            extra={
                "failure_rate": stats["failure_rate"],
                "max_failure_rate": max_failure_rate,
                "failed": stats["failed"],
            },
        )
        result = await container.orchestrator.notify_admins(
            "admin_health_alert",
            {
                "failureRate": stats["failure_rate"],
                "maxFailureRate": max_failure_rate,
                "successRate": stats["success_rate"],
                "total": stats["total"],
                "failed": stats["failed"],
                "logged": stats["logged"],
                "pending": stats["pending"],
                "circuitState": circuit["state"],
            },
        )
        alert = result.to_dict()
    return {"healthy": healthy, "stats": stats, "circuit": circuit, "alert": alert}


async def admin_daily_summary(container: NotificationContainer) -> dict[str, Any]:
    return await container.orchestrator.send_admin_summary()


async def retry_sweep(container: NotificationContainer) -> dict[str, Any]:
    return {
        "rearmed": await container.sweeper.sweep(),
        "stalled_recovered": await container.sweeper.recover_stalled(),
    }


async def analytics_rollup(container: NotificationContainer) -> dict[str, Any]:
    """Roll up yesterday's audit records."""
    day = (datetime.now(UTC) - timedelta(days=1)).date()
    rows = await container.audit.rollup(day)
    return {"day": day.isoformat(), "templates": len(rows)}


# =============================================================================
# Registration
# =============================================================================


@dataclass(frozen=True)
class JobSpec:
    name: str
    cron: str
    func: Callable[[NotificationContainer], Awaitable[Any]]
    description: str


DEFAULT_JOBS: tuple[JobSpec, ...] = (
    JobSpec("drain_queue", "*/5 * * * *", drain_queue, "Send due queue items"),
    JobSpec("plan_expiry_check", "0 9 * * *", plan_expiry_check, "Warn members whose plan is ending"),
    JobSpec("monthly_limits_renewal", "0 0 1 * *", monthly_limits_renewal, "Reset monthly limits"),
    JobSpec("weekly_cleanup", "0 2 * * sun", weekly_cleanup, "Prune old audit records and queue items"),
    JobSpec("health_check", "0 * * * *", health_check, "Check delivery failure rate"),
    JobSpec("admin_daily_summary", "0 8 * * *", admin_daily_summary, "Mail daily figures to admins"),
    JobSpec("retry_sweep", "30 * * * *", retry_sweep, "Re-arm failed and stalled queue items"),
    JobSpec("analytics_rollup", "0 1 * * *", analytics_rollup, "Write daily per-template analytics"),
)


def register_default_jobs(
    scheduler: NotificationScheduler,
    container: NotificationContainer,
    jobs: tuple[JobSpec, ...] = DEFAULT_JOBS,
) -> NotificationScheduler:
    """Register ``jobs`` on ``scheduler`` bound to ``container``."""
    for spec in jobs:
        scheduler.register(
            spec.name,
            functools.partial(spec.func, container),
            cron=spec.cron,
            description=spec.description,
        )
    logger.info(f"Registered {len(jobs)} scheduled jobs")
    return scheduler


__all__ = [
    "DEFAULT_JOBS",
    "JobSpec",
    "admin_daily_summary",
    "analytics_rollup",
    "drain_queue",
    "health_check",
    "monthly_limits_renewal",
    "plan_expiry_check",
    "register_default_jobs",
    "retry_sweep",
    "weekly_cleanup",
]
