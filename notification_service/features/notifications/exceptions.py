"""Notification pipeline exceptions.

Policy per error:
- TemplateNotFoundError: propagated to the caller of ``send``
- RenderError: recovered inside the renderer (raw template is used)
- QueuePersistError: propagated from ``send``/``enqueue``
- AuditWriteError: logged and swallowed by the audit log
- SchedulerJobError: logged per job run, never escapes the scheduler
- JobNotFoundError: unknown scheduler job name

Transport failures (TransportError, TransportTimeoutError) live with the
transports in ``infra.email.providers.base`` and never leave the channel.
"""

from __future__ import annotations

from typing import Any

from notification_service.core.exceptions import AppException


class NotificationError(AppException):
    """Base class for notification pipeline errors."""

    default_type = "notification-error"

    def __init__(self, detail: str, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail=detail, extra=extra)


class TemplateNotFoundError(NotificationError):
    """No active template exists for the requested type."""

    default_status = 404
    default_type = "template-not-found"

    def __init__(self, template_type: str) -> None:
        self.template_type = template_type
        super().__init__(f"Template not found: {template_type}", extra={"template_type": template_type})


class RenderError(NotificationError):
    """A template string could not be compiled or rendered."""

    default_status = 422
    default_type = "template-render-error"
    default_title = "Template Render Error"

    def __init__(self, message: str, template_name: str | None = None) -> None:
        self.template_name = template_name
        super().__init__(message, extra={"template_name": template_name} if template_name else None)


class QueuePersistError(NotificationError):
    """A queue item could not be written to the database."""

    default_status = 503
    default_type = "queue-persist-error"

    def __init__(self, recipient: str, template_type: str, reason: str) -> None:
        self.recipient = recipient
        self.template_type = template_type
        super().__init__(
            f"Failed to persist queued notification: {reason}",
            extra={"recipient": recipient, "template_type": template_type},
        )


class AuditWriteError(NotificationError):
    """An audit record could not be inserted."""

    default_type = "audit-write-error"

    def __init__(self, recipient: str, template_type: str, reason: str) -> None:
        super().__init__(
            f"Failed to write audit record: {reason}",
            extra={"recipient": recipient, "template_type": template_type},
        )


class SchedulerJobError(NotificationError):
    """A scheduled job raised during one run."""

    default_type = "scheduler-job-error"

    def __init__(self, job_name: str, reason: str) -> None:
        self.job_name = job_name
        super().__init__(f"Scheduled job {job_name} failed: {reason}", extra={"job": job_name})


class JobNotFoundError(NotificationError):
    """No scheduled job is registered under the given name."""

    default_status = 404
    default_type = "job-not-found"

    def __init__(self, job_name: str) -> None:
        self.job_name = job_name
        super().__init__(f"Scheduled job not found: {job_name}", extra={"job": job_name})


__all__ = [
    "AuditWriteError",
    "JobNotFoundError",
    "NotificationError",
    "QueuePersistError",
    "RenderError",
    "SchedulerJobError",
    "TemplateNotFoundError",
]
