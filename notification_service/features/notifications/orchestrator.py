"""Notification Orchestrator: domain events to notifications.

Each hook looks up recipients and template data in the member directory and
calls the delivery channel. Hooks never raise; any exception is logged and
turned into a failed ``HookResult`` or ``FanOutResult``.

Fan-out hooks send to recipients one at a time and keep going after a
failure.

Member-facing notifications other than welcome and security mail honor the
member's email preferences. A missing preference means the member opted in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import functools
import math
from typing import TYPE_CHECKING, Any

from notification_service.core.services.base import BaseService
from notification_service.features.notifications.models import Priority, QueueStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from notification_service.core.settings import NotificationSettings
    from notification_service.features.notifications.audit import AuditLog
    from notification_service.features.notifications.channel import DeliveryChannel, DeliveryResult
    from notification_service.features.notifications.directory import Deal, Member, MemberDirectory
    from notification_service.features.notifications.queue import NotificationQueue

APPROVED_DEAL_STATUSES = frozenset({"active", "approved"})


@dataclass
class HookResult:
    """Outcome of a single-recipient hook (plus any sub-results)."""

    success: bool
    error: str | None = None
    results: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, exc: BaseException) -> HookResult:
        return cls(success=False, error=str(exc))

    @classmethod
    def from_delivery(cls, result: DeliveryResult, **extra: Any) -> HookResult:
        return cls(success=result.success, error=result.error, results={"delivery": result.to_dict(), **extra})

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "error": self.error, "results": self.results}


@dataclass
class FanOutResult:
    """Aggregate outcome of sending one template to many recipients."""

    sent: int = 0
    failed: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @classmethod
    def from_error(cls, exc: BaseException) -> FanOutResult:
        return cls(failed=1, errors=[str(exc)])

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
            "errors": list(self.errors),
        }


def hook[R: (HookResult, FanOutResult)](
    result_type: type[R],
) -> Callable[[Callable[..., Awaitable[R]]], Callable[..., Awaitable[R]]]:
    """Convert any exception raised by the wrapped hook into a failed result."""

    def decorator(func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(self: NotificationOrchestrator, *args: Any, **kwargs: Any) -> R:
            try:
                return await func(self, *args, **kwargs)
            except Exception as exc:
                self.logger.exception("Notification hook failed", extra={"hook": func.__name__})
                return result_type.from_error(exc)

        return wrapper

    return decorator


class NotificationOrchestrator(BaseService):
    """Maps platform events onto templates, recipients and data."""

    def __init__(
        self,
        *,
        channel: DeliveryChannel,
        directory: MemberDirectory,
        audit: AuditLog,
        queue: NotificationQueue,
        settings: NotificationSettings,
    ) -> None:
        super().__init__()
        self._channel = channel
        self._directory = directory
        self._audit = audit
        self._queue = queue
        self._settings = settings

    def link(self, path: str = "") -> str:
        """Absolute frontend URL for ``path``."""
        if path and not path.startswith("/"):
            path = f"/{path}"
        return f"{self._settings.frontend_url}{path}"

    async def _require_member(self, member_id: int) -> Member:
        member = await self._directory.get_member(member_id)
        if member is None:
            msg = f"Member not found: {member_id}"
            raise LookupError(msg)
        return member

    async def _require_deal(self, deal_id: int) -> Deal:
        deal = await self._directory.get_deal(deal_id)
        if deal is None:
            msg = f"Deal not found: {deal_id}"
            raise LookupError(msg)
        return deal

    async def _wants_email(self, member_id: int | None, template_type: str) -> bool:
        """Member preference check; recipients without an account always get mail."""
        if member_id is None:
            return True
        enabled = await self._directory.email_enabled(member_id, template_type)
        if not enabled:
            self.logger.info(
                "Notification skipped by member preference",
                extra={"member_id": member_id, "template_type": template_type},
            )
        return enabled

    async def _opted_in(self, members: Iterable[Member], template_type: str) -> list[Member]:
        return [member for member in members if await self._wants_email(member.id, template_type)]

    @staticmethod
    def _opted_out(template_type: str) -> HookResult:
        return HookResult(success=True, results={"skipped": f"member opted out of {template_type}"})

    async def fan_out(
        self,
        recipients: Iterable[str],
        template_type: str,
        data: dict[str, Any],
        *,
        per_recipient: Callable[[str], dict[str, Any]] | None = None,
        priority: Priority | str = Priority.NORMAL,
    ) -> FanOutResult:
        """Send ``template_type`` to each recipient in turn."""
        outcome = FanOutResult()
        for email in recipients:
            outcome.total += 1
            payload = {**data, **(per_recipient(email) if per_recipient else {})}
            try:
                result = await self._channel.send(email, template_type, payload, priority=priority)
            except Exception as exc:
                self.logger.warning(
                    "Fan-out send failed",
                    extra={"recipient": email, "template_type": template_type, "error": str(exc)},
                )
                outcome.failed += 1
                outcome.errors.append(f"{email}: {exc}")
                continue
            if result.success:
                outcome.sent += 1
            else:
                outcome.failed += 1
                outcome.errors.append(f"{email}: {result.error}")

        self.logger.info(
            "Fan-out finished",
            extra={
                "template_type": template_type,
                "sent": outcome.sent,
                "failed": outcome.failed,
                "total": outcome.total,
            },
        )
        return outcome

    # ------------------------------------------------------------------
    # Account events
    # ------------------------------------------------------------------

    @hook(HookResult)
    async def on_user_registered(self, user_id: int) -> HookResult:
        user = await self._require_member(user_id)
        welcome = await self._channel.send(
            user.email,
            "user_welcome",
            {
                "firstName": user.first_name,
                "fullName": user.full_name,
                "email": user.email,
                "membershipNumber": user.membership_number,
                "loginUrl": self.link("/login"),
            },
        )
        admins = await self.notify_admins(
            "admin_new_registration",
            {
                "fullName": user.full_name or user.email,
                "email": user.email,
                "userType": user.user_type,
                "registrationDate": datetime.now(UTC).date().isoformat(),
                "reviewUrl": self.link(f"/admin/users/{user.id}"),
            },
        )
        return HookResult.from_delivery(welcome, admins=admins.to_dict())

    @hook(HookResult)
    async def on_merchant_registered(self, merchant_id: int) -> HookResult:
        merchant = await self._require_member(merchant_id)
        welcome = await self._channel.send(
            merchant.email,
            "merchant_welcome",
            {
                "firstName": merchant.first_name,
                "businessName": merchant.display_name,
                "email": merchant.email,
                "dashboardUrl": self.link("/merchant/dashboard"),
            },
        )
        admins = await self.notify_admins(
            "admin_new_merchant",
            {
                "businessName": merchant.display_name,
                "ownerName": merchant.full_name or "Business Owner",
                "email": merchant.email,
                "applicationDate": datetime.now(UTC).date().isoformat(),
                "reviewUrl": self.link(f"/admin/merchants/{merchant.id}"),
            },
        )
        return HookResult.from_delivery(welcome, admins=admins.to_dict())

    @hook(HookResult)
    async def on_profile_status_changed(
        self,
        member_id: int,
        new_status: str,
        reason: str | None = None,
    ) -> HookResult:
        member = await self._require_member(member_id)
        if not await self._wants_email(member.id, "profile_status_update"):
            return self._opted_out("profile_status_update")
        result = await self._channel.send(
            member.email,
            "profile_status_update",
            {
                "firstName": member.first_name,
                "fullName": member.full_name,
                "newStatus": new_status,
                "reason": reason,
                "isMerchant": member.user_type == "merchant",
                "loginUrl": self.link("/login"),
            },
            priority=Priority.HIGH,
        )
        return HookResult.from_delivery(result)

    @hook(HookResult)
    async def on_password_changed_by_admin(self, member_id: int) -> HookResult:
        member = await self._require_member(member_id)
        result = await self._channel.send(
            member.email,
            "password_changed_by_admin",
            {
                "firstName": member.first_name,
                "changedAt": datetime.now(UTC).isoformat(timespec="minutes"),
                "loginUrl": self.link("/login"),
            },
            priority=Priority.HIGH,
        )
        return HookResult.from_delivery(result)

    @hook(HookResult)
    async def on_plan_assigned(
        self,
        member_id: int,
        plan_name: str,
        *,
        expires_at: datetime | None = None,
    ) -> HookResult:
        member = await self._require_member(member_id)
        if not await self._wants_email(member.id, "plan_assigned"):
            return self._opted_out("plan_assigned")
        is_merchant = member.user_type == "merchant"
        result = await self._channel.send(
            member.email,
            "plan_assigned",
            {
                "firstName": member.first_name,
                "planName": plan_name,
                "expiryDate": expires_at.date().isoformat() if expires_at else None,
                "isMerchant": is_merchant,
                "dashboardUrl": self.link("/merchant/dashboard" if is_merchant else "/dashboard"),
            },
        )
        return HookResult.from_delivery(result)

    @hook(HookResult)
    async def on_custom_deal_limit_assigned(self, merchant_id: int, new_limit: int) -> HookResult:
        merchant = await self._require_member(merchant_id)
        if not await self._wants_email(merchant.id, "custom_deal_limit_assigned"):
            return self._opted_out("custom_deal_limit_assigned")
        result = await self._channel.send(
            merchant.email,
            "custom_deal_limit_assigned",
            {
                "businessName": merchant.display_name,
                "newLimit": new_limit,
                "dashboardUrl": self.link("/merchant/dashboard"),
            },
        )
        return HookResult.from_delivery(result)

    # ------------------------------------------------------------------
    # Monthly limit events
    # ------------------------------------------------------------------

    @staticmethod
    def _next_month_start(now: datetime | None = None) -> str:
        today = (now or datetime.now(UTC)).date()
        if today.month == 12:
            return today.replace(year=today.year + 1, month=1, day=1).isoformat()
        return today.replace(month=today.month + 1, day=1).isoformat()

    @hook(HookResult)
    async def on_redemption_limit_reached(self, user_id: int, current_limit: int | None = None) -> HookResult:
        """Tell a member they have used every redemption their plan allows this month."""
        user = await self._require_member(user_id)
        if not await self._wants_email(user.id, "redemption_limit_reached"):
            return self._opted_out("redemption_limit_reached")
        result = await self._channel.send(
            user.email,
            "redemption_limit_reached",
            {
                "firstName": user.first_name,
                "planName": user.plan_name,
                "currentLimit": current_limit,
                "resetDate": self._next_month_start(),
                "plansUrl": self.link("/plans"),
            },
        )
        return HookResult.from_delivery(result)

    @hook(HookResult)
    async def on_deal_limit_reached(self, merchant_id: int, current_limit: int | None = None) -> HookResult:
        """Tell a merchant they have posted every deal their plan allows this month."""
        merchant = await self._require_member(merchant_id)
        if not await self._wants_email(merchant.id, "deal_limit_reached"):
            return self._opted_out("deal_limit_reached")
        result = await self._channel.send(
            merchant.email,
            "deal_limit_reached",
            {
                "businessName": merchant.display_name,
                "ownerName": merchant.first_name if merchant.full_name else "Owner",
                "planName": merchant.plan_name,
                "currentLimit": current_limit,
                "resetDate": self._next_month_start(),
                "plansUrl": self.link("/merchant/plans"),
            },
        )
        return HookResult.from_delivery(result)

    # ------------------------------------------------------------------
    # Deal events
    # ------------------------------------------------------------------

    @hook(HookResult)
    async def on_deal_created(self, deal_id: int) -> HookResult:
        deal = await self._require_deal(deal_id)
        admins = await self.notify_admins(
            "admin_new_deal_request",
            {
                "dealTitle": deal.title,
                "dealDescription": deal.description,
                "dealCategory": deal.category or "Uncategorized",
                "discount": deal.discount,
                "businessName": deal.business_name,
                "merchantEmail": deal.merchant_email,
                "reviewUrl": self.link(f"/admin/deals/{deal.id}/review"),
            },
        )
        return HookResult(success=admins.success, results={"admins": admins.to_dict()})

    @hook(HookResult)
    async def on_deal_status_changed(
        self,
        deal_id: int,
        new_status: str,
        reason: str | None = None,
    ) -> HookResult:
        """Tell the merchant; approved deals are also announced to members."""
        deal = await self._require_deal(deal_id)
        results: dict[str, Any] = {}

        if new_status in APPROVED_DEAL_STATUSES:
            announced = await self.on_new_deal_posted(deal_id)
            results["members"] = announced.to_dict()

        if deal.merchant_email is None:
            self.logger.warning("Deal has no merchant to notify", extra={"deal_id": deal_id})
            return HookResult(success=True, results=results)
        if not await self._wants_email(deal.merchant_id, "deal_status_update"):
            results["skipped"] = "member opted out of deal_status_update"
            return HookResult(success=True, results=results)

        merchant = await self._channel.send(
            deal.merchant_email,
            "deal_status_update",
            {
                "businessName": deal.business_name,
                "dealTitle": deal.title,
                "newStatus": new_status,
                "approved": new_status in APPROVED_DEAL_STATUSES,
                "reason": reason or deal.rejection_reason,
                "dealUrl": self.link(f"/merchant/deals/{deal.id}"),
            },
        )
        return HookResult.from_delivery(merchant, **results)

    @hook(FanOutResult)
    async def on_new_deal_posted(self, deal_id: int) -> FanOutResult:
        deal = await self._require_deal(deal_id)
        subscribers = await self._opted_in(
            await self._directory.list_deal_subscribers(exclude_member_id=deal.merchant_id),
            "new_deal_notification",
        )
        names = {member.email: member.first_name for member in subscribers}
        return await self.fan_out(
            names,
            "new_deal_notification",
            {
                "dealTitle": deal.title,
                "dealDescription": deal.description,
                "businessName": deal.business_name,
                "discount": deal.discount,
                "validUntil": deal.valid_until.date().isoformat() if deal.valid_until else None,
                "dealUrl": self.link(f"/deals/{deal.id}"),
            },
            per_recipient=lambda email: {"firstName": names[email]},
            priority=Priority.LOW,
        )

    # ------------------------------------------------------------------
    # Redemption events
    # ------------------------------------------------------------------

    @hook(HookResult)
    async def on_redemption_requested(self, redemption_id: int) -> HookResult:
        redemption = await self._directory.get_redemption(redemption_id)
        if redemption is None:
            msg = f"Redemption not found: {redemption_id}"
            raise LookupError(msg)
        if redemption.merchant_email is None:
            return HookResult(success=False, error="No merchant address for redemption")
        if not await self._wants_email(redemption.merchant_id, "new_redemption_request"):
            return self._opted_out("new_redemption_request")

        result = await self._channel.send(
            redemption.merchant_email,
            "new_redemption_request",
            {
                "businessName": redemption.business_name,
                "dealTitle": redemption.deal_title,
                "customerName": redemption.user_name or redemption.user_email,
                "membershipNumber": redemption.membership_number,
                "requestId": redemption.id,
                "reviewUrl": self.link(f"/merchant/redemptions/{redemption.id}"),
            },
            priority=Priority.HIGH,
        )
        return HookResult.from_delivery(result)

    @hook(HookResult)
    async def on_redemption_responded(self, redemption_id: int) -> HookResult:
        redemption = await self._directory.get_redemption(redemption_id)
        if redemption is None:
            msg = f"Redemption not found: {redemption_id}"
            raise LookupError(msg)

        template_type = {
            "approved": "redemption_approved",
            "rejected": "redemption_rejected",
        }.get(redemption.status)
        if template_type is None:
            return HookResult(success=True, results={"skipped": f"no notification for status {redemption.status}"})
        if not await self._wants_email(redemption.user_id, template_type):
            return self._opted_out(template_type)

        name = (redemption.user_name or "").split()
        result = await self._channel.send(
            redemption.user_email,
            template_type,
            {
                "firstName": name[0] if name else "Member",
                "dealTitle": redemption.deal_title,
                "businessName": redemption.business_name,
                "reason": redemption.rejection_reason,
                "redemptionDate": redemption.requested_at.date().isoformat() if redemption.requested_at else None,
                "dealsUrl": self.link("/deals"),
            },
        )
        return HookResult.from_delivery(result)

    # ------------------------------------------------------------------
    # Admin alerts
    # ------------------------------------------------------------------

    @hook(FanOutResult)
    async def notify_admins(self, template_type: str, data: dict[str, Any]) -> FanOutResult:
        """Send ``template_type`` to every active admin plus the configured admin address."""
        admins = await self._directory.list_admins()
        names = {admin.email: admin.first_name for admin in admins}
        if self._settings.admin_email and self._settings.admin_email not in names:
            names[self._settings.admin_email] = "Admin"
        return await self.fan_out(
            names,
            template_type,
            {"dashboardUrl": self.link("/admin"), **data},
            per_recipient=lambda email: {"adminName": names[email]},
        )

    # ------------------------------------------------------------------
    # Maintenance operations (scheduler and admin triggers)
    # ------------------------------------------------------------------

    async def check_plan_expiry(self, now: datetime | None = None) -> dict[str, Any]:
        """Warn members whose plan ends within ``expiry_warning_days`` and alert admins."""
        now = now or datetime.now(UTC)
        end = now + timedelta(days=self._settings.expiry_warning_days)
        expiring = await self._directory.members_with_plans_expiring(now, end)

        warnings = FanOutResult()
        for member in await self._opted_in(expiring, "plan_expiry_warning"):
            warnings.total += 1
            expires_at = member.plan_expires_at or end
            days_left = max(math.ceil((expires_at - now) / timedelta(days=1)), 0)
            is_merchant = member.user_type == "merchant"
            try:
                result = await self._channel.send(
                    member.email,
                    "plan_expiry_warning",
                    {
                        "firstName": member.first_name,
                        "businessName": member.business_name,
                        "planName": member.plan_name,
                        "daysLeft": days_left,
                        "expiryDate": expires_at.date().isoformat(),
                        "isMerchant": is_merchant,
                        "renewalUrl": self.link("/merchant/plans" if is_merchant else "/plans"),
                    },
                    priority=Priority.HIGH,
                )
            except Exception as exc:
                self.logger.warning(
                    "Plan expiry warning failed",
                    extra={"member_id": member.id, "error": str(exc)},
                )
                warnings.failed += 1
                warnings.errors.append(f"{member.email}: {exc}")
                continue
            if result.success:
                warnings.sent += 1
            else:
                warnings.failed += 1
                warnings.errors.append(f"{member.email}: {result.error}")

        admin_alert = None
        if expiring:
            admin_alert = await self.notify_admins(
                "admin_plan_expiry_alert",
                {
                    "expiringCount": len(expiring),
                    "expiringUsers": [
                        {
                            "name": member.display_name,
                            "email": member.email,
                            "planName": member.plan_name,
                            "type": member.user_type,
                        }
                        for member in expiring
                    ],
                    "today": now.date().isoformat(),
                },
            )

        self.logger.info(
            "Plan expiry check completed",
            extra={"expiring": len(expiring), "sent": warnings.sent, "failed": warnings.failed},
        )
        return {
            "expiring": len(expiring),
            "warnings": warnings.to_dict(),
            "admin_alert": admin_alert.to_dict() if admin_alert else None,
        }

    async def renew_monthly_limits(self) -> dict[str, Any]:
        """Reset monthly counters and tell each renewed account."""
        renewed = await self._directory.renew_monthly_limits()
        users = await self._opted_in(
            (member for member in renewed if member.user_type != "merchant"), "redemption_limit_renewed",
        )
        merchants = await self._opted_in(
            (member for member in renewed if member.user_type == "merchant"), "deal_limit_renewed",
        )

        names = {member.email: member.first_name for member in users}
        user_result = await self.fan_out(
            names,
            "redemption_limit_renewed",
            {"dealsUrl": self.link("/deals")},
            per_recipient=lambda email: {"firstName": names[email]},
            priority=Priority.LOW,
        )
        businesses = {member.email: member.display_name for member in merchants}
        merchant_result = await self.fan_out(
            businesses,
            "deal_limit_renewed",
            {"dashboardUrl": self.link("/merchant/dashboard")},
            per_recipient=lambda email: {"businessName": businesses[email]},
            priority=Priority.LOW,
        )
        return {
            "renewed": len(renewed),
            "users": user_result.to_dict(),
            "merchants": merchant_result.to_dict(),
        }

    async def send_admin_summary(self) -> dict[str, Any]:
        """Mail the last day's delivery figures to the admins."""
        stats = await self._audit.stats(days=1)
        queue_counts = await self._queue.counts()
        result = await self.notify_admins(
            "admin_daily_summary",
            {
                "date": datetime.now(UTC).date().isoformat(),
                "total": stats["total"],
                "sent": stats["sent"],
                "logged": stats["logged"],
                "failed": stats["failed"],
                "successRate": stats["success_rate"],
                "queuePending": queue_counts[QueueStatus.PENDING.value],
                "queueFailed": queue_counts[QueueStatus.FAILED.value],
            },
        )
        return {"stats": stats, "queue": queue_counts, "delivery": result.to_dict()}

    async def send_test(
        self,
        to: str,
        template_type: str = "user_welcome",
        data: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        """Send ``template_type`` with sample data.

        Raises:
            TemplateNotFoundError: If the template does not exist.
        """
        sample = {
            "firstName": "Test",
            "fullName": "Test User",
            "email": to,
            "membershipNumber": "TEST001",
            "businessName": "Test Business",
            "dealTitle": "Test Deal",
            "dealDescription": "This is a test notification",
            "planName": "Premium",
            "daysLeft": 3,
            "newStatus": "approved",
            "loginUrl": self.link("/login"),
            "dashboardUrl": self.link("/dashboard"),
            **(data or {}),
        }
        return await self._channel.send(to, template_type, sample)


__all__ = ["FanOutResult", "HookResult", "NotificationOrchestrator", "hook"]
