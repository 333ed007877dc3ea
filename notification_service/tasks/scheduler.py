"""APScheduler integration for the notification jobs.

``NotificationScheduler`` owns one ``AsyncIOScheduler`` plus an explicit
registry of ``ScheduledJob`` handles, so jobs can be started, stopped,
inspected and run on demand by name.

Every execution goes through ``_execute``: an exception is logged as
``SchedulerJobError`` and stored on the handle, and never reaches
APScheduler, other jobs or later runs of the same job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
import time
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from notification_service.features.notifications.exceptions import (
    JobNotFoundError,
    SchedulerJobError,
)
from notification_service.infra.logging import log_context
from notification_service.infra.metrics.prometheus import (
    scheduler_job_duration_seconds,
    scheduler_job_runs_total,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from apscheduler.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

JOB_DEFAULTS = {
    "coalesce": True,  # Combine multiple pending executions into one
    "max_instances": 1,  # Only one instance of each job at a time
    "misfire_grace_time": 60,  # Allow 60s delay before considering job missed
}


@dataclass
class ScheduledJob:
    """Registry entry for one periodic job.

    Attributes:
        name: Unique job name
        func: Coroutine function run on each trigger
        trigger: APScheduler trigger
        schedule: Human readable schedule (cron expression)
        description: What the job does
        is_running: Whether the job is currently scheduled
        in_progress: Whether an execution is underway
        last_run: When the last execution finished
        last_error: Error of the last execution, None after a success
        last_result: Return value of the last successful execution
        run_count: Number of executions so far
    """

    name: str
    func: Callable[[], Awaitable[Any]]
    trigger: BaseTrigger
    schedule: str
    description: str = ""
    is_running: bool = False
    in_progress: bool = False
    last_run: datetime | None = None
    last_error: str | None = None
    last_result: Any = None
    run_count: int = 0


class NotificationScheduler:
    """Named registry of periodic jobs on an in-process AsyncIOScheduler."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None, *, timezone: str = "UTC") -> None:
        self.timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone, job_defaults=JOB_DEFAULTS)
        self._jobs: dict[str, ScheduledJob] = {}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def jobs(self) -> dict[str, ScheduledJob]:
        return dict(self._jobs)

    def register(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        *,
        cron: str,
        description: str = "",
    ) -> ScheduledJob:
        """Add a job to the registry without scheduling it.

        Args:
            name: Unique job name.
            func: Coroutine function to run.
            cron: Five-field crontab expression, evaluated in ``timezone``.
            description: What the job does.

        Raises:
            ValueError: If ``name`` is already registered.
        """
        if name in self._jobs:
            msg = f"Job already registered: {name}"
            raise ValueError(msg)
        job = ScheduledJob(
            name=name,
            func=func,
            trigger=CronTrigger.from_crontab(cron, timezone=self.timezone),
            schedule=cron,
            description=description,
        )
        self._jobs[name] = job
        logger.debug("Scheduled job registered", extra={"job": name, "schedule": cron})
        return job

    def get(self, name: str) -> ScheduledJob:
        """Registry entry for ``name``.

        Raises:
            JobNotFoundError: If no such job is registered.
        """
        try:
            return self._jobs[name]
        except KeyError:
            raise JobNotFoundError(name) from None

    def start_job(self, name: str) -> ScheduledJob:
        """Schedule ``name``, starting the underlying scheduler if needed."""
        job = self.get(name)
        self._scheduler.add_job(
            func=self._execute,
            trigger=job.trigger,
            args=[name],
            id=name,
            name=job.description or name,
            replace_existing=True,
        )
        job.is_running = True
        if not self._scheduler.running:
            logger.info("Starting APScheduler")
            self._scheduler.start()
        logger.info("Scheduled job started", extra={"job": name, "schedule": job.schedule})
        return job

    def stop_job(self, name: str) -> ScheduledJob:
        """Unschedule ``name``; an execution already underway is not interrupted."""
        job = self.get(name)
        if self._scheduler.get_job(name) is not None:
            self._scheduler.remove_job(name)
        job.is_running = False
        logger.info("Scheduled job stopped", extra={"job": name})
        return job

    def start_all(self) -> None:
        for name in self._jobs:
            self.start_job(name)
        logger.info(f"APScheduler started with {len(self._scheduler.get_jobs())} jobs")

    def stop_all(self) -> None:
        for name in self._jobs:
            self.stop_job(name)

    def shutdown(self) -> None:
        """Stop every job and the underlying scheduler."""
        self.stop_all()
        if self._scheduler.running:
            logger.info("Stopping APScheduler")
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler stopped")

    def status(self) -> list[dict[str, Any]]:
        """Registry snapshot, one entry per job."""
        entries = []
        for job in self._jobs.values():
            scheduled = self._scheduler.get_job(job.name) if job.is_running else None
            next_run = getattr(scheduled, "next_run_time", None)
            entries.append(
                {
                    "name": job.name,
                    "schedule": job.schedule,
                    "description": job.description,
                    "is_running": job.is_running,
                    "in_progress": job.in_progress,
                    "last_run": job.last_run.isoformat() if job.last_run else None,
                    "next_run": next_run.isoformat() if next_run else None,
                    "last_error": job.last_error,
                    "run_count": job.run_count,
                }
            )
        return entries

    async def run_now(self, name: str) -> dict[str, Any]:
        """Execute ``name`` immediately, outside its schedule.

        Raises:
            JobNotFoundError: If no such job is registered.
        """
        job = self.get(name)
        await self._execute(name)
        return {
            "name": name,
            "success": job.last_error is None,
            "result": job.last_result if job.last_error is None else None,
            "error": job.last_error,
        }

    async def _execute(self, name: str) -> None:
        job = self._jobs[name]
        job.in_progress = True
        start = time.perf_counter()
        with log_context(job=name):
            try:
                logger.info("Running scheduled job")
                job.last_result = await job.func()
            except Exception as exc:
                err = SchedulerJobError(name, str(exc))
                job.last_error = err.detail
                scheduler_job_runs_total.labels(job=name, outcome="error").inc()
                logger.exception(err.detail)
            else:
                job.last_error = None
                scheduler_job_runs_total.labels(job=name, outcome="success").inc()
                logger.info("Scheduled job finished")
            finally:
                scheduler_job_duration_seconds.labels(job=name).observe(time.perf_counter() - start)
                job.last_run = datetime.now(UTC)
                job.run_count += 1
                job.in_progress = False


__all__ = ["JOB_DEFAULTS", "NotificationScheduler", "ScheduledJob"]
