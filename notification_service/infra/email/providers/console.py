"""Console fallback transport.

Logs messages instead of sending them. Always succeeds; used as the fallback
when no durable local record is wanted (development, ephemeral containers).
"""

from __future__ import annotations

import logging
import uuid

from .base import BaseTransport, OutboundMessage, TransportResult

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500


class ConsoleTransport(BaseTransport):
    """Console transport for development and log-only fallback."""

    @property
    def transport_name(self) -> str:
        """Get transport name."""
        return "console"

    async def _do_send(self, message: OutboundMessage) -> TransportResult:
        """Log message summary and a preview of the body."""
        message_id = f"fallback-{uuid.uuid4()}"
        body = message.text or message.html
        preview = body[:PREVIEW_CHARS]
        if len(body) > PREVIEW_CHARS:
            preview += f"... ({len(body) - PREVIEW_CHARS} more characters)"

        logger.info(
            "Message logged (console fallback)",
            extra={
                "message_id": message_id,
                "from": message.from_header,
                "recipient": message.to,
                "subject": message.subject,
                "priority": message.priority,
                "notification_type": message.notification_type,
                "preview": preview,
            },
        )
        return TransportResult.success_result(message_id=message_id, transport=self.transport_name)

    async def _do_health_check(self) -> bool:
        return True


__all__ = ["ConsoleTransport"]
