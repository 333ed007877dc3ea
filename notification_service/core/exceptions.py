"""Application exceptions rendered as RFC 7807 problem details.

Every error the API reports derives from ``AppException``. Subclasses pin the
HTTP status, problem ``type`` and ``title`` as class attributes; the handler in
``app.exception_handlers`` turns any instance into a problem response and
merges ``extra`` into the top level of the body.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, ClassVar


class AppException(Exception):
    """Base application exception.

    Attributes:
        status_code: HTTP status of the problem response.
        detail: Human-readable explanation of this occurrence.
        type: Problem type identifier.
        title: Short summary of the problem type.
        instance: URI of the occurrence; the request path is used when unset.
        extra: Extension members added to the problem body.

    Example:
        raise AppException(
            status_code=409,
            detail="Queue item 12 is being processed",
            type="queue-item-busy",
            extra={"item_id": 12},
        )
    """

    default_status: ClassVar[int] = 500
    default_type: ClassVar[str] = "about:blank"
    default_title: ClassVar[str | None] = None

    def __init__(
        self,
        status_code: int | None = None,
        detail: str = "",
        type: str | None = None,
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code or self.default_status
        self.detail = detail
        self.type = type or self.default_type
        self.title = title or self.default_title or _status_title(self.status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)


def _status_title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


class ValidationException(AppException):
    """Request data was well-formed but not acceptable."""

    default_status = 422
    default_type = "validation-error"
    default_title = "Validation Error"

    def __init__(self, detail: str, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail=detail, extra=extra)


class ServiceUnavailableException(AppException):
    """A dependency (database, scheduler, transport) is not available."""

    default_status = 503
    default_type = "service-unavailable"

    def __init__(self, detail: str, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail=detail, extra=extra)


__all__ = [
    "AppException",
    "ServiceUnavailableException",
    "ValidationException",
]
