"""Tests for the Problem Details exception handlers."""

from __future__ import annotations

import json

from fastapi import Request
from fastapi.exceptions import RequestValidationError
import pytest

from notification_service.app.exception_handlers import (
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from notification_service.core.exceptions import (
    AppException,
    ServiceUnavailableException,
)
from notification_service.features.notifications.exceptions import (
    JobNotFoundError,
    QueuePersistError,
    TemplateNotFoundError,
)
from notification_service.infra.metrics.prometheus import REGISTRY


@pytest.fixture
def request_() -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/api/v1/notifications/templates/user_welcome",
            "query_string": b"",
            "headers": [],
            "scheme": "http",
            "server": ("test", 80),
        }
    )


class TestAppExceptionHandler:
    async def test_problem_details_body(self, request_: Request) -> None:
        response = await app_exception_handler(request_, TemplateNotFoundError("user_welcome"))

        assert response.status_code == 404
        assert response.media_type == "application/json"
        assert json.loads(response.body) == {
            "type": "template-not-found",
            "title": "Not Found",
            "status": 404,
            "detail": "Template not found: user_welcome",
            "instance": "http://test/api/v1/notifications/templates/user_welcome",
            "template_type": "user_welcome",
        }

    @pytest.mark.parametrize(
        ("exc", "status_code", "type_"),
        [
            (JobNotFoundError("nope"), 404, "job-not-found"),
            (QueuePersistError("a@test.example.com", "user_welcome", "locked"), 503, "queue-persist-error"),
            (ServiceUnavailableException("down"), 503, "service-unavailable"),
        ],
    )
    async def test_status_and_type(
        self, request_: Request, exc: AppException, status_code: int, type_: str,
    ) -> None:
        response = await app_exception_handler(request_, exc)

        body = json.loads(response.body)
        assert response.status_code == status_code
        assert body["status"] == status_code
        assert body["type"] == type_

    async def test_counts_errors(self, request_: Request) -> None:
        labels = {"error_type": "job-not-found", "status_code": "404"}
        before = REGISTRY.get_sample_value("notification_http_errors_total", labels) or 0

        await app_exception_handler(request_, JobNotFoundError("nope"))

        assert REGISTRY.get_sample_value("notification_http_errors_total", labels) == before + 1

    async def test_explicit_instance_is_kept(self, request_: Request) -> None:
        exc = AppException(status_code=409, detail="Conflict", type="conflict", instance="/queue/1")

        body = json.loads((await app_exception_handler(request_, exc)).body)

        assert body["instance"] == "/queue/1"
        assert body["title"] == "Conflict"

    async def test_extra_never_replaces_problem_fields(self, request_: Request) -> None:
        exc = AppException(status_code=422, detail="Busy", extra={"status": "processing", "item_id": 4})

        body = json.loads((await app_exception_handler(request_, exc)).body)

        assert body["status"] == 422
        assert body["item_id"] == 4


class TestValidationHandler:
    async def test_field_errors(self, request_: Request) -> None:
        exc = RequestValidationError(
            [
                {
                    "loc": ("query", "days"),
                    "msg": "Input should be greater than or equal to 1",
                    "type": "greater_than_equal",
                    "input": "0",
                }
            ]
        )

        response = await validation_exception_handler(request_, exc)

        body = json.loads(response.body)
        assert response.status_code == 422
        assert body["type"] == "validation-error"
        assert body["detail"] == "Request validation failed for 1 field(s)"
        assert body["errors"] == [
            {
                "field": "query.days",
                "message": "Input should be greater than or equal to 1",
                "type": "greater_than_equal",
                "value": "0",
            }
        ]


class TestGenericHandler:
    async def test_hides_internal_details(self, request_: Request) -> None:
        response = await generic_exception_handler(request_, RuntimeError("database password is hunter2"))

        body = json.loads(response.body)
        assert response.status_code == 500
        assert body["type"] == "internal-error"
        assert "hunter2" not in response.body.decode()
