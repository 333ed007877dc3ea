"""Problem Details (RFC 7807) exception handlers.

Every error leaves the API as ``application/json`` with ``type``, ``title``,
``status``, ``detail`` and ``instance``. ``AppException.extra`` members are
added at the top level but never replace those five fields.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from notification_service.core.exceptions import AppException
from notification_service.core.schemas import (
    FieldError,
    ProblemDetails,
    ValidationProblemDetails,
)
from notification_service.infra.metrics.prometheus import http_errors_total

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)


def _problem_response(request: Request, exc: AppException) -> JSONResponse:
    problem = ProblemDetails(
        type=exc.type,
        title=exc.title,
        status=exc.status_code,
        detail=exc.detail,
        instance=exc.instance or str(request.url),
    )
    http_errors_total.labels(error_type=exc.type, status_code=str(exc.status_code)).inc()
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.extra, **problem.model_dump(exclude_none=True)},
    )


def _field_errors(errors: list[dict[str, Any]]) -> list[FieldError]:
    return [
        FieldError(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            type=error["type"],
            value=error.get("input"),
        )
        for error in errors
    ]


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        "Application exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": exc.type,
            "status_code": exc.status_code,
            "detail": exc.detail,
        },
    )
    return _problem_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation failures as a 422 problem with one entry per failed field."""
    errors = _field_errors(list(exc.errors()))
    http_errors_total.labels(error_type="validation-error", status_code="422").inc()
    logger.warning(
        "Request validation failed",
        extra={"path": request.url.path, "method": request.method, "error_count": len(errors)},
    )
    problem = ValidationProblemDetails(
        type="validation-error",
        title="Validation Error",
        status=422,
        detail=f"Request validation failed for {len(errors)} field(s)",
        instance=str(request.url),
        errors=errors,
    )
    return JSONResponse(status_code=422, content=problem.model_dump(mode="json", exclude_none=True))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback; the client only gets a generic 500 problem."""
    logger.error(
        "Unexpected exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
        },
        exc_info=exc,
    )
    return _problem_response(
        request,
        AppException(
            status_code=500,
            detail="An unexpected error occurred while processing your request",
            type="internal-error",
        ),
    )


def configure_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "app_exception_handler",
    "configure_exception_handlers",
    "generic_exception_handler",
    "validation_exception_handler",
]
