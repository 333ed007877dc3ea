"""Delivery Channel: primary transport, fallback transport and sticky circuit.

``send`` is the single contract business code calls. It resolves and renders
the template, then either queues the message (future ``scheduled_for``) or
hands it to ``deliver``:

1. If the circuit is open and primary credentials are configured, try the
   primary transport under ``primary_timeout`` seconds.
2. A timeout blocks the circuit; any other transport error does not.
3. Otherwise, or after a primary failure, hand the message to the fallback
   transport.

Every ``send`` writes exactly one audit record: ``sent`` for primary,
``logged`` for fallback (or queued) and ``failed`` when even the fallback
could not accept the message, or when the send was rejected before delivery.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from notification_service.core.services.base import BaseService
from notification_service.features.notifications.exceptions import TemplateNotFoundError
from notification_service.features.notifications.models import (
    DeliveryMethod,
    DeliveryStatus,
    Priority,
)
from notification_service.infra.email.providers.base import (
    OutboundMessage,
    TransportError,
    TransportTimeoutError,
)
from notification_service.infra.metrics.prometheus import notification_sends_total
from notification_service.infra.resilience import CircuitEvent

if TYPE_CHECKING:
    from notification_service.features.notifications.audit import AuditLog
    from notification_service.features.notifications.queue import NotificationQueue
    from notification_service.features.notifications.templates import (
        RenderedMessage,
        TemplateRenderer,
        TemplateStore,
    )
    from notification_service.infra.email.providers.base import Transport
    from notification_service.infra.resilience import TransportCircuit


@dataclass(frozen=True)
class DeliveryResult:
    """What ``send``/``deliver`` report back to the caller.

    Attributes:
        success: Whether the message was accepted by a transport or the queue
        method: primary | fallback | queued, None when nothing was attempted
        message_id: Transport message ID, when one was assigned
        error: Failure reason when ``success`` is False
        queue_id: Queue item id for queued sends
        fallback_reason: Why the primary transport was not used
    """

    success: bool
    method: str | None = None
    message_id: str | None = None
    error: str | None = None
    queue_id: int | None = None
    fallback_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "method": self.method,
            "error": self.error,
            "queue_id": self.queue_id,
        }


class DeliveryChannel(BaseService):
    """Send contract for the notification pipeline."""

    def __init__(
        self,
        *,
        store: TemplateStore,
        renderer: TemplateRenderer,
        queue: NotificationQueue,
        audit: AuditLog,
        primary: Transport,
        fallback: Transport,
        circuit: TransportCircuit,
        primary_configured: bool,
        primary_timeout: float = 10.0,
        from_header: str | None = None,
        verify_disabled: bool = False,
    ) -> None:
        super().__init__()
        self._store = store
        self._renderer = renderer
        self._queue = queue
        self._audit = audit
        self._primary = primary
        self._fallback = fallback
        self.circuit = circuit
        self._primary_configured = primary_configured
        self._primary_timeout = primary_timeout
        self._from_header = from_header
        self._verify_disabled = verify_disabled

    @property
    def primary_configured(self) -> bool:
        return self._primary_configured

    @staticmethod
    def audit_status(success: bool, method: str | None) -> DeliveryStatus:
        """Audit status for a delivery outcome."""
        if not success:
            return DeliveryStatus.FAILED
        if method == DeliveryMethod.PRIMARY:
            return DeliveryStatus.SENT
        return DeliveryStatus.LOGGED

    # ------------------------------------------------------------------
    # Send contract
    # ------------------------------------------------------------------

    async def send(
        self,
        to: str,
        template_type: str,
        data: dict[str, Any] | None = None,
        *,
        priority: Priority | str = Priority.NORMAL,
        scheduled_for: datetime | None = None,
    ) -> DeliveryResult:
        """Send (or queue) one notification and audit it.

        Args:
            to: Recipient address.
            template_type: Template to resolve.
            data: Template variables, also stored with the audit record.
            priority: Queue priority; also sent as a message header.
            scheduled_for: Queue instead of sending when in the future.

        Returns:
            The delivery outcome. An unknown priority or a template lookup
            that fails for any reason other than a missing template is
            audited and returned as a failed result.

        Raises:
            TemplateNotFoundError: No active template for ``template_type``.
            QueuePersistError: A scheduled send could not be queued.
        """
        data = data or {}

        try:
            priority = Priority(priority)
        except ValueError:
            return await self._reject(to, template_type, data, f"Invalid priority: {priority!r}")

        try:
            template = await self._store.resolve(template_type)
        except TemplateNotFoundError as exc:
            await self._record(to, template_type, DeliveryStatus.FAILED, data=data, error=str(exc))
            raise
        except Exception as exc:
            self.logger.exception("Template lookup failed", extra={"template_type": template_type})
            return await self._reject(to, template_type, data, f"Template lookup failed: {exc}")
        rendered = self._renderer.render_message(template, data)

        if scheduled_for is not None:
            if scheduled_for.tzinfo is None:
                scheduled_for = scheduled_for.replace(tzinfo=UTC)
            if scheduled_for > datetime.now(UTC):
                return await self._schedule(to, template_type, rendered, data, priority, scheduled_for)

        result = await self.deliver(to, rendered, priority=priority, template_type=template_type)
        await self._record(
            to,
            template_type,
            self.audit_status(result.success, result.method),
            subject=rendered.subject,
            method=result.method,
            message_id=result.message_id,
            error=result.error,
            data=data,
        )
        return result

    async def _reject(self, to: str, template_type: str, data: dict[str, Any], error: str) -> DeliveryResult:
        await self._record(to, template_type, DeliveryStatus.FAILED, data=data, error=error)
        return DeliveryResult(success=False, error=error)

    async def _schedule(
        self,
        to: str,
        template_type: str,
        rendered: RenderedMessage,
        data: dict[str, Any],
        priority: Priority,
        scheduled_for: datetime,
    ) -> DeliveryResult:
        try:
            queue_id = await self._queue.enqueue(
                recipient=to,
                template_type=template_type,
                rendered=rendered,
                priority=priority,
                scheduled_for=scheduled_for,
                data=data,
            )
        except Exception as exc:
            await self._record(
                to,
                template_type,
                DeliveryStatus.FAILED,
                subject=rendered.subject,
                method=DeliveryMethod.QUEUED,
                error=str(exc),
                data=data,
            )
            raise

        await self._record(
            to,
            template_type,
            DeliveryStatus.LOGGED,
            subject=rendered.subject,
            method=DeliveryMethod.QUEUED,
            data={**data, "queue_id": queue_id, "scheduled_for": scheduled_for.isoformat()},
        )
        return DeliveryResult(success=True, method=DeliveryMethod.QUEUED.value, queue_id=queue_id)

    # ------------------------------------------------------------------
    # Transport path
    # ------------------------------------------------------------------

    async def deliver(
        self,
        to: str,
        rendered: RenderedMessage,
        *,
        priority: Priority | str = Priority.NORMAL,
        template_type: str | None = None,
    ) -> DeliveryResult:
        """Hand already rendered content to a transport. Never raises, never audits."""
        message = OutboundMessage(
            to=to,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            priority=Priority(priority).value,
            notification_type=template_type,
            from_header=self._from_header,
        )

        if not self._primary_configured:
            reason = "primary transport not configured"
        elif not self.circuit.allows_primary:
            reason = "primary transport blocked by circuit"
        else:
            try:
                return await self._send_primary(message)
            except TransportTimeoutError as exc:
                self.circuit.record(CircuitEvent.TIMEOUT)
                reason = str(exc)
            except TransportError as exc:
                self.circuit.record(CircuitEvent.TRANSPORT_ERROR)
                reason = str(exc)
            self.logger.warning(
                "Primary transport failed, using fallback",
                extra={"recipient": to, "template_type": template_type, "reason": reason},
            )

        return await self._send_fallback(message, reason)

    async def _send_primary(self, message: OutboundMessage) -> DeliveryResult:
        name = self._primary.transport_name
        try:
            result = await asyncio.wait_for(self._primary.send(message), timeout=self._primary_timeout)
        except TimeoutError as exc:
            msg = f"Primary transport timed out after {self._primary_timeout}s"
            raise TransportTimeoutError(msg, transport=name) from exc
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(str(exc), transport=name) from exc

        result.raise_for_failure()
        self.circuit.record(CircuitEvent.SUCCESS)
        notification_sends_total.labels(method=DeliveryMethod.PRIMARY.value, status="sent").inc()
        return DeliveryResult(
            success=True,
            method=DeliveryMethod.PRIMARY.value,
            message_id=result.message_id,
        )

    async def _send_fallback(self, message: OutboundMessage, reason: str) -> DeliveryResult:
        method = DeliveryMethod.FALLBACK.value
        try:
            result = await self._fallback.send(message)
        except Exception as exc:
            self.logger.exception(
                "Fallback transport raised",
                extra={"recipient": message.to, "template_type": message.notification_type},
            )
            notification_sends_total.labels(method=method, status="failed").inc()
            return DeliveryResult(success=False, method=method, error=str(exc), fallback_reason=reason)

        if not result.success:
            notification_sends_total.labels(method=method, status="failed").inc()
            return DeliveryResult(success=False, method=method, error=result.error, fallback_reason=reason)

        notification_sends_total.labels(method=method, status="logged").inc()
        self.logger.info(
            "Message handed to fallback transport",
            extra={
                "recipient": message.to,
                "template_type": message.notification_type,
                "transport": self._fallback.transport_name,
                "reason": reason,
            },
        )
        return DeliveryResult(
            success=True,
            method=method,
            message_id=result.message_id,
            fallback_reason=reason,
        )

    async def _record(
        self,
        to: str,
        template_type: str,
        status: DeliveryStatus,
        *,
        subject: str | None = None,
        method: str | None = None,
        message_id: str | None = None,
        error: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        await self._audit.record(
            recipient=to,
            template_type=template_type,
            status=status,
            subject=subject,
            method=method,
            message_id=message_id,
            error=error,
            data=data,
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def reinitialize(self) -> dict[str, Any]:
        """Reset the circuit and drop cached templates."""
        self.circuit.reset()
        self._store.invalidate_all()
        self.logger.info("Delivery channel reinitialized")
        return self.status()

    async def verify(self) -> dict[str, Any]:
        """Run a primary transport health check unless verification is disabled."""
        if self._verify_disabled:
            self.logger.info("Primary transport verification disabled")
            return {"verified": None, "skipped": True, "reason": "verification disabled"}
        if not self._primary_configured:
            return {"verified": False, "skipped": True, "reason": "primary transport not configured"}

        healthy = await self._primary.health_check()
        if healthy:
            self.logger.info("Primary transport verified", extra={"transport": self._primary.transport_name})
        else:
            self.logger.warning(
                "Primary transport verification failed",
                extra={"transport": self._primary.transport_name},
            )
        return {"verified": healthy, "skipped": False, "reason": None if healthy else "health check failed"}

    def status(self) -> dict[str, Any]:
        return {
            "primary_transport": self._primary.transport_name,
            "primary_configured": self._primary_configured,
            "fallback_transport": self._fallback.transport_name,
            "primary_timeout": self._primary_timeout,
            "verify_disabled": self._verify_disabled,
            "circuit": self.circuit.snapshot(),
            "cached_templates": len(self._store.cache),
        }


__all__ = ["DeliveryChannel", "DeliveryResult"]
