"""Periodic jobs for the notification pipeline."""

from __future__ import annotations

from notification_service.tasks.jobs import DEFAULT_JOBS, JobSpec, register_default_jobs
from notification_service.tasks.scheduler import NotificationScheduler, ScheduledJob

__all__ = [
    "DEFAULT_JOBS",
    "JobSpec",
    "NotificationScheduler",
    "ScheduledJob",
    "register_default_jobs",
]
