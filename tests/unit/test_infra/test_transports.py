"""Tests for the delivery transports and their factory."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from notification_service.core.settings import NotificationSettings, TransportSettings
from notification_service.infra.email.providers import (
    ConsoleTransport,
    FileTransport,
    SMTPTransport,
    build_fallback_transport,
    build_primary_transport,
)
from notification_service.infra.email.providers.base import (
    ERROR_TIMEOUT,
    ERROR_UNEXPECTED,
    OutboundMessage,
    TransportError,
    TransportResult,
    TransportTimeoutError,
)

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import RecordingTransport


@pytest.fixture
def message() -> OutboundMessage:
    return OutboundMessage(
        to="jane@test.example.com",
        subject="Welcome, Jane!",
        html="<p>Hello Jane</p>",
        text="Hello Jane",
        priority="high",
        notification_type="user_welcome",
        from_header='"Test" <noreply@test.example.com>',
    )


# ============================================================================
# TransportResult
# ============================================================================


class TestTransportResult:
    def test_failure_without_error_gets_placeholder(self) -> None:
        result = TransportResult(success=False, message_id=None, transport="smtp")

        assert result.error == "Unknown error"

    def test_raise_for_failure_is_noop_on_success(self) -> None:
        TransportResult.success_result("id-1", "smtp").raise_for_failure()

    def test_raise_for_failure_timeout(self) -> None:
        result = TransportResult.failure_result("smtp", "slow", ERROR_TIMEOUT)

        assert result.timed_out is True
        with pytest.raises(TransportTimeoutError) as exc_info:
            result.raise_for_failure()
        assert exc_info.value.transport == "smtp"
        assert exc_info.value.error_code == ERROR_TIMEOUT

    def test_raise_for_failure_other_error(self) -> None:
        result = TransportResult.failure_result("smtp", "rejected", "RECIPIENTS_REFUSED")

        with pytest.raises(TransportError) as exc_info:
            result.raise_for_failure()
        assert not isinstance(exc_info.value, TransportTimeoutError)
        assert exc_info.value.error_code == "RECIPIENTS_REFUSED"


# ============================================================================
# BaseTransport
# ============================================================================


class TestBaseTransport:
    async def test_unexpected_exception_becomes_failure(
        self, primary_transport: RecordingTransport, message: OutboundMessage,
    ) -> None:
        primary_transport.error = RuntimeError("socket closed")

        result = await primary_transport.send(message)

        assert result.success is False
        assert result.error == "socket closed"
        assert result.error_code == ERROR_UNEXPECTED
        assert result.duration_ms is not None

    async def test_success_sets_duration(
        self, primary_transport: RecordingTransport, message: OutboundMessage,
    ) -> None:
        result = await primary_transport.send(message)

        assert result.success is True
        assert result.message_id == "smtp-1"
        assert result.duration_ms is not None

    async def test_health_check_failure_is_false(self, primary_transport: RecordingTransport) -> None:
        primary_transport._do_health_check = AsyncMock(side_effect=OSError("refused"))

        assert await primary_transport.health_check() is False


# ============================================================================
# Fallback transports
# ============================================================================


class TestFileTransport:
    async def test_writes_replayable_record(self, tmp_path: Path, message: OutboundMessage) -> None:
        transport = FileTransport(tmp_path / "outbox")

        result = await transport.send(message)

        assert result.success is True
        assert result.message_id.startswith("fallback-")
        records = transport.list_records()
        assert len(records) == 1
        record = records[0]
        assert record["message_id"] == result.message_id
        assert record["to"] == message.to
        assert record["subject"] == message.subject
        assert record["html"] == message.html
        assert record["text"] == message.text
        assert record["priority"] == "high"
        assert record["notification_type"] == "user_welcome"
        assert record["from"] == message.from_header

    async def test_clear_records(self, tmp_path: Path, message: OutboundMessage) -> None:
        transport = FileTransport(tmp_path / "outbox")
        await transport.send(message)
        await transport.send(message)

        assert transport.clear_records() == 2
        assert transport.list_records() == []

    def test_list_records_missing_directory(self, tmp_path: Path) -> None:
        transport = FileTransport(tmp_path / "missing")

        assert transport.list_records() == []
        assert transport.clear_records() == 0

    async def test_write_failure_is_reported(self, tmp_path: Path, message: OutboundMessage) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        transport = FileTransport(blocker)

        result = await transport.send(message)

        assert result.success is False
        assert result.error_code == "FILE_WRITE_ERROR"

    async def test_health_check(self, tmp_path: Path) -> None:
        transport = FileTransport(tmp_path / "outbox")

        assert await transport.health_check() is True


class TestConsoleTransport:
    async def test_always_accepts(self, message: OutboundMessage) -> None:
        transport = ConsoleTransport()

        result = await transport.send(message)

        assert result.success is True
        assert result.transport == "console"
        assert result.message_id.startswith("fallback-")
        assert await transport.health_check() is True


# ============================================================================
# SMTP transport
# ============================================================================


class TestSMTPTransport:
    @pytest.fixture
    def settings(self) -> TransportSettings:
        return TransportSettings(host="smtp.test.example.com", port=587, user="mailer", password="secret")

    @pytest.fixture
    def smtp_client(self) -> MagicMock:
        client = MagicMock()
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=None)
        client.login = AsyncMock()
        client.send_message = AsyncMock(return_value=({}, "OK"))
        client.connect = AsyncMock()
        client.quit = AsyncMock()
        return client

    async def test_send_logs_in_and_sends(
        self, settings: TransportSettings, smtp_client: MagicMock, message: OutboundMessage,
    ) -> None:
        transport = SMTPTransport(settings, from_header="noreply@test.example.com")

        with patch("aiosmtplib.SMTP", return_value=smtp_client) as smtp_cls:
            result = await transport.send(message)

        assert result.success is True
        assert result.message_id.endswith("@smtp.test.example.com>")
        smtp_cls.assert_called_once()
        assert smtp_cls.call_args.kwargs["use_tls"] is False
        smtp_client.login.assert_awaited_once_with("mailer", "secret")
        sent = smtp_client.send_message.await_args.args[0]
        assert sent["To"] == message.to
        assert sent["X-Priority"] == "1"
        assert sent["X-Notification-Type"] == "user_welcome"

    async def test_timeout_uses_timeout_code(
        self, settings: TransportSettings, smtp_client: MagicMock, message: OutboundMessage,
    ) -> None:
        smtp_client.send_message.side_effect = aiosmtplib.SMTPTimeoutError("timed out")
        transport = SMTPTransport(settings, from_header="noreply@test.example.com")

        with patch("aiosmtplib.SMTP", return_value=smtp_client):
            result = await transport.send(message)

        assert result.success is False
        assert result.timed_out is True

    async def test_recipient_errors_are_failures(
        self, settings: TransportSettings, smtp_client: MagicMock, message: OutboundMessage,
    ) -> None:
        smtp_client.send_message.return_value = ({message.to: (550, "no such user")}, "OK")
        transport = SMTPTransport(settings, from_header="noreply@test.example.com")

        with patch("aiosmtplib.SMTP", return_value=smtp_client):
            result = await transport.send(message)

        assert result.success is False
        assert result.error_code == "RECIPIENTS_REFUSED"

    async def test_health_check(self, settings: TransportSettings, smtp_client: MagicMock) -> None:
        transport = SMTPTransport(settings, from_header="noreply@test.example.com")

        with patch("aiosmtplib.SMTP", return_value=smtp_client):
            assert await transport.health_check() is True

        smtp_client.connect.side_effect = OSError("refused")
        with patch("aiosmtplib.SMTP", return_value=smtp_client):
            assert await transport.health_check() is False

    def test_implicit_tls_on_465(self) -> None:
        settings = TransportSettings(host="smtp.test.example.com", port=465)

        assert settings.implicit_tls is True
        assert settings.get_smtp_url() == "smtps://smtp.test.example.com:465"


# ============================================================================
# Factory
# ============================================================================


class TestFactory:
    def test_primary_is_smtp(self) -> None:
        transport = build_primary_transport(TransportSettings(), NotificationSettings())

        assert isinstance(transport, SMTPTransport)
        assert transport.is_configured is False

    @pytest.mark.parametrize(
        ("backend", "expected"),
        [("file", FileTransport), ("console", ConsoleTransport)],
    )
    def test_fallback_backend(self, tmp_path: Path, backend: str, expected: type) -> None:
        settings = NotificationSettings(fallback_backend=backend, fallback_dir=tmp_path)

        assert isinstance(build_fallback_transport(settings), expected)
