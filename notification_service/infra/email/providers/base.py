"""Base transport protocol and abstract class.

Defines the contract every delivery transport implements, whether it is the
primary SMTP transport or one of the fallback transports.

Usage:
    class MyTransport(BaseTransport):
        @property
        def transport_name(self) -> str:
            return "mine"

        async def _do_send(self, message: OutboundMessage) -> TransportResult:
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
import logging
import time
from typing import Any, Protocol, runtime_checkable

from notification_service.infra.metrics.prometheus import (
    transport_errors_total,
    transport_send_duration_seconds,
)

logger = logging.getLogger(__name__)

# Error codes shared by all transports
ERROR_TIMEOUT = "TIMEOUT"
ERROR_UNEXPECTED = "UNEXPECTED_ERROR"


class TransportError(Exception):
    """A transport failed to hand a message over.

    Attributes:
        transport: Name of the failing transport.
        error_code: Error category for programmatic handling.
    """

    def __init__(self, message: str, transport: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.transport = transport
        self.error_code = error_code


class TransportTimeoutError(TransportError):
    """A transport did not answer within its time bound."""

    def __init__(self, message: str, transport: str) -> None:
        super().__init__(message, transport, ERROR_TIMEOUT)


@dataclass(frozen=True)
class OutboundMessage:
    """A fully rendered message ready for a transport.

    Attributes:
        to: Recipient address
        subject: Rendered subject line
        html: Rendered HTML body
        text: Rendered plain-text body
        priority: low | normal | high
        notification_type: Template type that produced the message
        from_header: Formatted From header
        headers: Extra headers
    """

    to: str
    subject: str
    html: str
    text: str = ""
    priority: str = "normal"
    notification_type: str | None = None
    from_header: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TransportResult:
    """Result of a transport send attempt.

    Attributes:
        success: Whether the transport accepted the message
        message_id: Transport-assigned message ID (for tracking)
        transport: Transport name (smtp, file, console)
        error: Error message if failed
        error_code: Error category for programmatic handling
        duration_ms: Time taken to send in milliseconds
        metadata: Transport-specific metadata
    """

    success: bool
    message_id: str | None
    transport: str
    error: str | None = None
    error_code: str | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            object.__setattr__(self, "error", "Unknown error")

    @property
    def timed_out(self) -> bool:
        """Whether the failure was a timeout."""
        return self.error_code == ERROR_TIMEOUT

    @classmethod
    def success_result(
        cls,
        message_id: str,
        transport: str,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransportResult:
        """Create a successful result."""
        return cls(
            success=True,
            message_id=message_id,
            transport=transport,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def failure_result(
        cls,
        transport: str,
        error: str,
        error_code: str | None = None,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransportResult:
        """Create a failed result."""
        return cls(
            success=False,
            message_id=None,
            transport=transport,
            error=error,
            error_code=error_code,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    def raise_for_failure(self) -> None:
        """Raise the matching transport exception for a failed result.

        Raises:
            TransportTimeoutError: For timeouts.
            TransportError: For every other failure.
        """
        if self.success:
            return
        if self.timed_out:
            raise TransportTimeoutError(self.error or "timeout", self.transport)
        raise TransportError(self.error or "transport failure", self.transport, self.error_code)


@runtime_checkable
class Transport(Protocol):
    """Protocol defining the transport interface.

    Using Protocol allows duck typing and easier testing with fakes.
    """

    async def send(self, message: OutboundMessage) -> TransportResult:
        """Send a rendered message."""
        ...

    async def health_check(self) -> bool:
        """Check if the transport is operational."""
        ...

    @property
    def transport_name(self) -> str:
        """Transport name (e.g., 'smtp', 'file')."""
        ...


class BaseTransport(ABC):
    """Abstract base class for transports.

    Provides timing measurement, logging, metrics and the catch-all that
    converts unexpected exceptions into failure results.

    Subclasses must implement:
    - _do_send(): Actual sending logic
    - _do_health_check(): Health check logic
    - transport_name property
    """

    @property
    @abstractmethod
    def transport_name(self) -> str:
        """Get the transport name."""
        ...

    @abstractmethod
    async def _do_send(self, message: OutboundMessage) -> TransportResult:
        """Implement the actual sending logic."""
        ...

    @abstractmethod
    async def _do_health_check(self) -> bool:
        """Implement the actual health check logic."""
        ...

    async def send(self, message: OutboundMessage) -> TransportResult:
        """Send a message with timing and error handling.

        Args:
            message: The rendered message to send

        Returns:
            TransportResult with delivery status
        """
        start_time = time.perf_counter()

        try:
            result = await self._do_send(message)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.exception(
                f"Unexpected error in {self.transport_name} transport",
                extra={
                    "transport": self.transport_name,
                    "error": str(e),
                    "duration_ms": duration_ms,
                },
            )
            transport_errors_total.labels(
                transport=self.transport_name, error_code=ERROR_UNEXPECTED
            ).inc()
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=str(e),
                error_code=ERROR_UNEXPECTED,
                duration_ms=duration_ms,
            )

        elapsed = time.perf_counter() - start_time
        transport_send_duration_seconds.labels(transport=self.transport_name).observe(elapsed)
        if result.duration_ms is None:
            result = replace(result, duration_ms=int(elapsed * 1000))

        if result.success:
            logger.info(
                f"Message sent via {self.transport_name}",
                extra={
                    "message_id": result.message_id,
                    "transport": self.transport_name,
                    "recipient": message.to,
                    "duration_ms": result.duration_ms,
                },
            )
        else:
            transport_errors_total.labels(
                transport=self.transport_name, error_code=result.error_code or ERROR_UNEXPECTED
            ).inc()
            logger.warning(
                f"Message send failed via {self.transport_name}",
                extra={
                    "transport": self.transport_name,
                    "recipient": message.to,
                    "error": result.error,
                    "error_code": result.error_code,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    async def health_check(self) -> bool:
        """Check if transport is healthy with logging."""
        try:
            healthy = await self._do_health_check()
        except Exception as e:
            logger.warning(
                f"{self.transport_name} health check failed",
                extra={"transport": self.transport_name, "error": str(e)},
            )
            return False
        logger.debug(
            f"{self.transport_name} health check: {'healthy' if healthy else 'unhealthy'}",
            extra={"transport": self.transport_name, "healthy": healthy},
        )
        return healthy


__all__ = [
    "ERROR_TIMEOUT",
    "ERROR_UNEXPECTED",
    "BaseTransport",
    "OutboundMessage",
    "Transport",
    "TransportError",
    "TransportResult",
    "TransportTimeoutError",
]
