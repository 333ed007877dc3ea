"""Tests for the application and notification exception hierarchy."""

from __future__ import annotations

import pytest

from notification_service.core.exceptions import (
    AppException,
    ServiceUnavailableException,
    ValidationException,
)
from notification_service.features.notifications.exceptions import (
    AuditWriteError,
    JobNotFoundError,
    NotificationError,
    QueuePersistError,
    RenderError,
    SchedulerJobError,
    TemplateNotFoundError,
)


class TestAppException:
    def test_defaults(self) -> None:
        exc = AppException(status_code=502, detail="Upstream failed")

        assert str(exc) == "Upstream failed"
        assert exc.type == "about:blank"
        assert exc.title == "Bad Gateway"
        assert exc.extra == {}

    def test_unknown_status_title(self) -> None:
        assert AppException(status_code=599, detail="unknown").title == "Error"

    @pytest.mark.parametrize(
        ("exc", "status_code", "title"),
        [
            (ValidationException("bad"), 422, "Validation Error"),
            (ServiceUnavailableException("down"), 503, "Service Unavailable"),
        ],
    )
    def test_subclasses(self, exc: AppException, status_code: int, title: str) -> None:
        assert exc.status_code == status_code
        assert exc.title == title


class TestNotificationErrors:
    def test_template_not_found(self) -> None:
        exc = TemplateNotFoundError("user_welcome")

        assert isinstance(exc, NotificationError)
        assert exc.status_code == 404
        assert exc.template_type == "user_welcome"
        assert exc.detail == "Template not found: user_welcome"
        assert exc.extra == {"template_type": "user_welcome"}

    def test_render_error_context(self) -> None:
        assert RenderError("unexpected end", template_name="plan_assigned").extra == {
            "template_name": "plan_assigned",
        }
        assert RenderError("unexpected end").extra == {}

    def test_queue_persist_error(self) -> None:
        exc = QueuePersistError("jane@test.example.com", "plan_assigned", "database is locked")

        assert exc.status_code == 503
        assert exc.detail == "Failed to persist queued notification: database is locked"
        assert exc.recipient == "jane@test.example.com"

    def test_scheduler_errors(self) -> None:
        assert SchedulerJobError("drain_queue", "boom").detail == "Scheduled job drain_queue failed: boom"
        assert JobNotFoundError("nope").status_code == 404

    def test_audit_write_error(self) -> None:
        exc = AuditWriteError("jane@test.example.com", "user_welcome", "disk full")

        assert exc.status_code == 500
        assert exc.type == "audit-write-error"
