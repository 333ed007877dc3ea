"""SMTP transport using aiosmtplib.

The primary transport. Supports STARTTLS (587), implicit TLS (465) and
authenticated login. Timeouts are reported with the TIMEOUT error code so
the delivery channel can trip its circuit.

Usage:
    transport = SMTPTransport(get_transport_settings(), from_header='"Brand" <noreply@brand.com>')
    result = await transport.send(message)
"""

from __future__ import annotations

from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import ssl
from typing import TYPE_CHECKING
import uuid

import aiosmtplib

from .base import ERROR_TIMEOUT, BaseTransport, OutboundMessage, TransportResult

if TYPE_CHECKING:
    from notification_service.core.settings.transport import TransportSettings

logger = logging.getLogger(__name__)


class SMTPTransport(BaseTransport):
    """SMTP transport using native async aiosmtplib.

    Example:
        settings = TransportSettings(host="smtp.example.com", user="u", password="p")
        transport = SMTPTransport(settings, from_header="noreply@example.com")
        result = await transport.send(message)
    """

    def __init__(self, settings: TransportSettings, from_header: str) -> None:
        """Initialize SMTP transport.

        Args:
            settings: Primary transport settings
            from_header: Default From header for outgoing messages
        """
        self._settings = settings
        self._from_header = from_header

        logger.info(
            "SMTP transport initialized",
            extra={
                "smtp_url": settings.get_smtp_url(),
                "configured": settings.is_configured,
            },
        )

    @property
    def transport_name(self) -> str:
        """Get transport name."""
        return "smtp"

    @property
    def is_configured(self) -> bool:
        """Whether credentials are present."""
        return self._settings.is_configured

    def _create_ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._settings.validate_certs:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _client(self, timeout: float | None = None) -> aiosmtplib.SMTP:
        implicit_tls = self._settings.implicit_tls
        return aiosmtplib.SMTP(
            hostname=self._settings.host,
            port=self._settings.port,
            use_tls=implicit_tls,
            start_tls=False if implicit_tls else None,
            tls_context=self._create_ssl_context(),
            timeout=timeout or self._settings.connect_timeout,
        )

    async def _do_send(self, message: OutboundMessage) -> TransportResult:
        """Send message via SMTP.

        Args:
            message: Rendered message to send

        Returns:
            TransportResult with delivery status
        """
        mime_message = self._build_mime_message(message)
        message_id = mime_message["Message-ID"]

        try:
            smtp = self._client()
            async with smtp:
                if self._settings.user and self._settings.password:
                    await smtp.login(
                        self._settings.user, self._settings.password.get_secret_value()
                    )
                errors, _response = await smtp.send_message(mime_message)
        except aiosmtplib.SMTPTimeoutError as e:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"SMTP timeout: {e}",
                error_code=ERROR_TIMEOUT,
            )
        except aiosmtplib.SMTPAuthenticationError as e:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"SMTP authentication failed: {e}",
                error_code="AUTH_FAILED",
            )
        except aiosmtplib.SMTPRecipientsRefused as e:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"All recipients refused: {e}",
                error_code="RECIPIENTS_REFUSED",
            )
        except aiosmtplib.SMTPConnectError as e:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"SMTP connection failed: {e}",
                error_code="CONNECTION_ERROR",
            )
        except aiosmtplib.SMTPException as e:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"SMTP error: {e}",
                error_code="SMTP_ERROR",
            )

        if errors:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"Recipient rejected: {errors}",
                error_code="RECIPIENTS_REFUSED",
            )

        return TransportResult.success_result(
            message_id=message_id,
            transport=self.transport_name,
            metadata={"host": self._settings.host, "port": self._settings.port},
        )

    async def _do_health_check(self) -> bool:
        """Connect, optionally authenticate, and quit.

        Returns:
            True if the server accepted the connection (and credentials)
        """
        smtp = self._client(timeout=5.0)
        try:
            await smtp.connect()
            if self._settings.user and self._settings.password:
                await smtp.login(self._settings.user, self._settings.password.get_secret_value())
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.debug(f"SMTP health check failed: {e}")
            return False
        return True

    def _build_mime_message(self, message: OutboundMessage) -> MIMEMultipart:
        """Build a multipart/alternative MIME message."""
        mime_msg = MIMEMultipart("alternative")
        mime_msg["From"] = message.from_header or self._from_header
        mime_msg["To"] = message.to
        mime_msg["Subject"] = message.subject
        mime_msg["Message-ID"] = f"<{uuid.uuid4()}@{self._settings.host}>"
        mime_msg["Date"] = datetime.now(UTC).strftime("%a, %d %b %Y %H:%M:%S +0000")

        if message.priority == "high":
            mime_msg["X-Priority"] = "1"
            mime_msg["X-MSMail-Priority"] = "High"
        elif message.priority == "low":
            mime_msg["X-Priority"] = "5"
            mime_msg["X-MSMail-Priority"] = "Low"

        if message.notification_type:
            mime_msg["X-Notification-Type"] = message.notification_type
        for key, value in message.headers.items():
            mime_msg[key] = value

        if message.text:
            mime_msg.attach(MIMEText(message.text, "plain", "utf-8"))
        mime_msg.attach(MIMEText(message.html, "html", "utf-8"))
        return mime_msg


__all__ = ["SMTPTransport"]
