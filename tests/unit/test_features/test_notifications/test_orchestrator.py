"""Unit tests for NotificationOrchestrator hooks and maintenance operations."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from notification_service.features.notifications.container import build_container
from notification_service.features.notifications.directory import Deal, Member, Redemption
from notification_service.features.notifications.exceptions import TemplateNotFoundError
from notification_service.features.notifications.models import DeliveryMethod
from notification_service.features.notifications.orchestrator import (
    FanOutResult,
    HookResult,
    NotificationOrchestrator,
)
from notification_service.infra.email.providers.base import (
    BaseTransport,
    OutboundMessage,
    TransportResult,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings import NotificationSettings, TransportSettings
    from notification_service.features.notifications.container import NotificationContainer
    from tests.conftest import InMemoryDirectory, RecordingTransport

MERCHANT = Member(
    id=5,
    email="owner@bean.test",
    full_name="Sam Roaster",
    user_type="merchant",
    business_name="Bean There",
)

DEAL = Deal(
    id=10,
    title="Half-price coffee",
    status="pending",
    description="Any size, all week",
    discount="50%",
    business_name="Bean There",
    merchant_id=5,
    merchant_email="owner@bean.test",
)


class RejectingTransport(BaseTransport):
    """Accepts every message except those addressed to ``reject``."""

    def __init__(self, name: str, reject: set[str]) -> None:
        self._name = name
        self.reject = reject
        self.sent: list[OutboundMessage] = []

    @property
    def transport_name(self) -> str:
        return self._name

    async def _do_send(self, message: OutboundMessage) -> TransportResult:
        if message.to in self.reject:
            return TransportResult.failure_result(self._name, "mailbox unavailable", "REJECTED")
        self.sent.append(message)
        return TransportResult.success_result(f"{self._name}-{len(self.sent)}", self._name)

    async def _do_health_check(self) -> bool:
        return True


def _orchestrator(container: NotificationContainer, directory: InMemoryDirectory, settings) -> NotificationOrchestrator:
    return NotificationOrchestrator(
        channel=container.channel,
        directory=directory,
        audit=container.audit,
        queue=container.queue,
        settings=settings,
    )


class TestResults:
    def test_hook_result_from_error(self) -> None:
        result = HookResult.from_error(LookupError("Member not found: 9"))

        assert result.to_dict() == {"success": False, "error": "Member not found: 9", "results": {}}

    def test_fan_out_success_requires_no_failures(self) -> None:
        assert FanOutResult(sent=2, total=2).success is True
        assert FanOutResult(sent=1, failed=1, total=2).success is False
        assert FanOutResult.from_error(RuntimeError("boom")).to_dict()["errors"] == ["boom"]

    def test_link(self, container: NotificationContainer) -> None:
        assert container.orchestrator.link("/login") == "https://app.test/login"
        assert container.orchestrator.link("deals") == "https://app.test/deals"
        assert container.orchestrator.link() == "https://app.test"


class TestAccountHooks:
    async def test_user_registered_welcomes_and_alerts_admins(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        result = await container.orchestrator.on_user_registered(2)

        assert result.success is True
        assert result.results["admins"]["sent"] == 1
        assert [(message.to, message.notification_type) for message in primary_transport.sent] == [
            ("jane@test.example.com", "user_welcome"),
            ("admin@test.example.com", "admin_new_registration"),
        ]
        assert "M-0002" in primary_transport.sent[0].html
        assert "https://app.test/admin/users/2" in primary_transport.sent[1].html

    async def test_missing_member_returns_failed_result(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        result = await container.orchestrator.on_user_registered(999)

        assert result.success is False
        assert result.error == "Member not found: 999"
        assert primary_transport.sent == []

    async def test_profile_status_change_is_high_priority(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        result = await container.orchestrator.on_profile_status_changed(2, "suspended", reason="Unpaid invoice")

        assert result.success is True
        message = primary_transport.sent[0]
        assert message.priority == "high"
        assert "Unpaid invoice" in message.html

    async def test_plan_assigned(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        expires = datetime(2026, 12, 31, tzinfo=UTC)

        result = await container.orchestrator.on_plan_assigned(2, "Gold", expires_at=expires)

        assert result.success is True
        assert result.results["delivery"]["method"] == "primary"
        assert "Gold" in primary_transport.sent[0].html

    async def test_delivery_failure_is_reported(
        self,
        container: NotificationContainer,
        primary_transport: RecordingTransport,
        fallback_transport: RecordingTransport,
    ) -> None:
        primary_transport.fail = True
        fallback_transport.fail = True

        result = await container.orchestrator.on_password_changed_by_admin(2)

        assert result.success is False
        assert result.error == "recipient rejected"


class TestDealHooks:
    async def test_new_deal_fan_out_continues_after_a_failure(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notification_settings: NotificationSettings,
        transport_settings: TransportSettings,
        directory: InMemoryDirectory,
    ) -> None:
        directory.deals[DEAL.id] = DEAL
        directory.subscribers = [
            Member(id=20, email="a@test.example.com", full_name="Amy A"),
            Member(id=21, email="b@test.example.com", full_name="Ben B"),
            Member(id=22, email="c@test.example.com", full_name="Cat C"),
            MERCHANT,
        ]
        primary = RejectingTransport("smtp", reject={"b@test.example.com"})
        fallback = RejectingTransport("file", reject={"b@test.example.com"})
        container = build_container(
            session_factory,
            settings=notification_settings,
            transport_settings=transport_settings,
            primary=primary,
            fallback=fallback,
            directory=directory,
            primary_configured=True,
        )

        result = await container.orchestrator.on_new_deal_posted(DEAL.id)

        assert result.total == 3
        assert result.sent == 2
        assert result.failed == 1
        assert result.success is False
        assert result.errors == ["b@test.example.com: mailbox unavailable"]
        assert [message.to for message in primary.sent] == ["a@test.example.com", "c@test.example.com"]
        assert "Hi Amy," in primary.sent[0].html
        assert all(message.priority == "low" for message in primary.sent)

        statuses = sorted(record.status for record in (await container.audit.query()).items)
        assert statuses == ["failed", "sent", "sent"]

    async def test_fan_out_counts_exceptions_as_failures(self, container: NotificationContainer) -> None:
        result = await container.orchestrator.fan_out(
            ["a@test.example.com", "b@test.example.com"], "no_such_template", {},
        )

        assert result.total == 2
        assert result.failed == 2
        assert result.errors[0] == "a@test.example.com: Template not found: no_such_template"

    async def test_deal_created_alerts_admins(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.deals[DEAL.id] = DEAL

        result = await container.orchestrator.on_deal_created(DEAL.id)

        assert result.success is True
        assert primary_transport.sent[0].to == "admin@test.example.com"
        assert primary_transport.sent[0].notification_type == "admin_new_deal_request"

    async def test_approved_deal_notifies_merchant_and_members(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.deals[DEAL.id] = DEAL
        directory.subscribers = [directory.members[2], MERCHANT]

        result = await container.orchestrator.on_deal_status_changed(DEAL.id, "approved")

        assert result.success is True
        assert result.results["members"]["sent"] == 1
        assert [(message.to, message.notification_type) for message in primary_transport.sent] == [
            ("jane@test.example.com", "new_deal_notification"),
            ("owner@bean.test", "deal_status_update"),
        ]

    async def test_rejected_deal_only_notifies_merchant(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.deals[DEAL.id] = DEAL
        directory.subscribers = [directory.members[2]]

        result = await container.orchestrator.on_deal_status_changed(DEAL.id, "rejected", reason="Blurry photo")

        assert result.success is True
        assert "members" not in result.results
        assert [message.to for message in primary_transport.sent] == ["owner@bean.test"]
        assert "Blurry photo" in primary_transport.sent[0].html

    async def test_unknown_deal(self, container: NotificationContainer) -> None:
        result = await container.orchestrator.on_new_deal_posted(404)

        assert result.success is False
        assert result.errors == ["Deal not found: 404"]


class TestRedemptionHooks:
    @pytest.fixture
    def redemption(self, directory: InMemoryDirectory) -> Redemption:
        redemption = Redemption(
            id=7,
            status="pending",
            deal_id=DEAL.id,
            deal_title=DEAL.title,
            user_id=2,
            user_email="jane@test.example.com",
            user_name="Jane Doe",
            membership_number="M-0002",
            business_name="Bean There",
            merchant_id=5,
            merchant_email="owner@bean.test",
        )
        directory.redemptions[redemption.id] = redemption
        return redemption

    async def test_request_goes_to_merchant(
        self,
        container: NotificationContainer,
        redemption: Redemption,
        primary_transport: RecordingTransport,
    ) -> None:
        result = await container.orchestrator.on_redemption_requested(redemption.id)

        assert result.success is True
        message = primary_transport.sent[0]
        assert message.to == "owner@bean.test"
        assert message.priority == "high"
        assert "M-0002" in message.html

    @pytest.mark.parametrize(
        ("status", "template_type"),
        [("approved", "redemption_approved"), ("rejected", "redemption_rejected")],
    )
    async def test_response_goes_to_member(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        redemption: Redemption,
        primary_transport: RecordingTransport,
        status: str,
        template_type: str,
    ) -> None:
        directory.redemptions[redemption.id] = replace(redemption, status=status)

        result = await container.orchestrator.on_redemption_responded(redemption.id)

        assert result.success is True
        assert primary_transport.sent[0].to == "jane@test.example.com"
        assert primary_transport.sent[0].notification_type == template_type

    async def test_pending_response_is_skipped(
        self,
        container: NotificationContainer,
        redemption: Redemption,
        primary_transport: RecordingTransport,
    ) -> None:
        result = await container.orchestrator.on_redemption_responded(redemption.id)

        assert result.success is True
        assert result.results == {"skipped": "no notification for status pending"}
        assert primary_transport.sent == []


class TestLimitHooks:
    async def test_redemption_limit_reached(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.members[2] = replace(directory.members[2], plan_name="Gold")

        result = await container.orchestrator.on_redemption_limit_reached(2, current_limit=10)

        assert result.success is True
        message = primary_transport.sent[0]
        assert message.to == "jane@test.example.com"
        assert message.notification_type == "redemption_limit_reached"
        assert "all 10 deal redemptions" in message.html
        assert "Gold plan" in message.html
        assert "https://app.test/plans" in message.html

    async def test_deal_limit_reached(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.members[MERCHANT.id] = MERCHANT

        result = await container.orchestrator.on_deal_limit_reached(MERCHANT.id)

        assert result.success is True
        message = primary_transport.sent[0]
        assert message.to == "owner@bean.test"
        assert message.notification_type == "deal_limit_reached"
        assert "Hello Sam," in message.html
        assert "Bean There has posted all deals included in the current plan" in message.html

    @pytest.mark.parametrize(
        ("now", "expected"),
        [
            (datetime(2026, 5, 14, tzinfo=UTC), "2026-06-01"),
            (datetime(2026, 12, 31, 23, tzinfo=UTC), "2027-01-01"),
        ],
    )
    def test_reset_date_is_first_of_next_month(self, now: datetime, expected: str) -> None:
        assert NotificationOrchestrator._next_month_start(now) == expected

    async def test_unknown_member(self, container: NotificationContainer) -> None:
        result = await container.orchestrator.on_deal_limit_reached(404)

        assert result.success is False
        assert result.error == "Member not found: 404"


class TestEmailPreferences:
    async def test_opted_out_member_is_skipped(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.opted_out.add((2, "redemption_limit_reached"))

        result = await container.orchestrator.on_redemption_limit_reached(2, current_limit=10)

        assert result.success is True
        assert result.results == {"skipped": "member opted out of redemption_limit_reached"}
        assert primary_transport.sent == []
        assert (await container.audit.query()).total == 0

    async def test_opt_out_is_per_notification_type(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.opted_out.add((2, "plan_assigned"))

        skipped = await container.orchestrator.on_plan_assigned(2, "Gold")
        sent = await container.orchestrator.on_profile_status_changed(2, "approved")

        assert skipped.results == {"skipped": "member opted out of plan_assigned"}
        assert sent.results["delivery"]["success"] is True
        assert [message.notification_type for message in primary_transport.sent] == ["profile_status_update"]

    async def test_security_mail_ignores_preferences(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.opted_out.add((2, "password_changed_by_admin"))

        result = await container.orchestrator.on_password_changed_by_admin(2)

        assert result.success is True
        assert primary_transport.sent[0].notification_type == "password_changed_by_admin"

    async def test_renewal_fan_out_skips_opted_out_members(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.renewed = [directory.members[2], MERCHANT]
        directory.opted_out.add((MERCHANT.id, "deal_limit_renewed"))

        result = await container.orchestrator.renew_monthly_limits()

        assert result["renewed"] == 2
        assert result["users"]["sent"] == 1
        assert result["merchants"]["total"] == 0
        assert [message.to for message in primary_transport.sent] == ["jane@test.example.com"]


class TestAdminFanOut:
    async def test_configured_admin_address_is_added(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        notification_settings: NotificationSettings,
        primary_transport: RecordingTransport,
    ) -> None:
        settings = notification_settings.model_copy(update={"admin_email": "ops@test.example.com"})
        orchestrator = _orchestrator(container, directory, settings)

        result = await orchestrator.notify_admins("admin_health_alert", {"issues": ["queue backlog"]})

        assert result.sent == 2
        assert [message.to for message in primary_transport.sent] == [
            "admin@test.example.com",
            "ops@test.example.com",
        ]


class TestMaintenance:
    async def test_plan_expiry_warns_members_and_alerts_admins(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        notification_settings: NotificationSettings,
        primary_transport: RecordingTransport,
    ) -> None:
        now = datetime(2026, 5, 1, 12, tzinfo=UTC)
        directory.expiring = [
            Member(
                id=2,
                email="jane@test.example.com",
                full_name="Jane Doe",
                plan_name="Gold",
                plan_expires_at=now + timedelta(days=2, hours=3),
            ),
            Member(
                id=30,
                email="later@test.example.com",
                full_name="Lou Later",
                plan_name="Gold",
                plan_expires_at=now + timedelta(days=30),
            ),
        ]
        settings = notification_settings.model_copy(update={"expiry_warning_days": 7})
        orchestrator = _orchestrator(container, directory, settings)

        result = await orchestrator.check_plan_expiry(now)

        assert result["expiring"] == 1
        assert result["warnings"]["sent"] == 1
        assert result["admin_alert"]["sent"] == 1
        warning, alert = primary_transport.sent
        assert warning.to == "jane@test.example.com"
        assert warning.priority == "high"
        assert "in 3 days" in warning.html
        assert "2026-05-03" in warning.html
        assert alert.notification_type == "admin_plan_expiry_alert"

    async def test_plan_expiry_with_nothing_expiring(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        result = await container.orchestrator.check_plan_expiry()

        assert result == {
            "expiring": 0,
            "warnings": {"success": True, "sent": 0, "failed": 0, "total": 0, "errors": []},
            "admin_alert": None,
        }
        assert primary_transport.sent == []

    async def test_renew_monthly_limits(
        self,
        container: NotificationContainer,
        directory: InMemoryDirectory,
        primary_transport: RecordingTransport,
    ) -> None:
        directory.renewed = [directory.members[2], MERCHANT]

        result = await container.orchestrator.renew_monthly_limits()

        assert result["renewed"] == 2
        assert result["users"]["sent"] == 1
        assert result["merchants"]["sent"] == 1
        assert [(message.to, message.notification_type) for message in primary_transport.sent] == [
            ("jane@test.example.com", "redemption_limit_renewed"),
            ("owner@bean.test", "deal_limit_renewed"),
        ]
        assert "Bean There" in primary_transport.sent[1].html

    async def test_admin_summary(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        await container.channel.send(
            "jane@test.example.com", "user_welcome", {"firstName": "Jane", "loginUrl": "https://app.test/login"},
        )

        result = await container.orchestrator.send_admin_summary()

        assert result["stats"]["total"] == 1
        assert result["stats"]["sent"] == 1
        assert result["queue"]["pending"] == 0
        assert result["delivery"]["sent"] == 1
        assert primary_transport.sent[-1].notification_type == "admin_daily_summary"


class TestSendTest:
    async def test_sends_sample_data(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        result = await container.orchestrator.send_test("qa@test.example.com")

        assert result.success is True
        assert result.method == DeliveryMethod.PRIMARY
        assert primary_transport.sent[0].subject == "Welcome, Test! - Test Platform"
        assert "TEST001" in primary_transport.sent[0].html

    async def test_overrides_sample_data(
        self, container: NotificationContainer, primary_transport: RecordingTransport,
    ) -> None:
        await container.orchestrator.send_test("qa@test.example.com", "plan_assigned", {"planName": "Platinum"})

        assert "Platinum" in primary_transport.sent[0].html

    async def test_unknown_template_raises(self, container: NotificationContainer) -> None:
        with pytest.raises(TemplateNotFoundError):
            await container.orchestrator.send_test("qa@test.example.com", "no_such_template")
