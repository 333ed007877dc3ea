"""Read access to the platform's business data.

Users, merchants, deals, redemptions and email preferences are owned by the
rest of the platform. The orchestrator only needs recipients, template data
and opt-outs, so it talks to a ``MemberDirectory``; ``SqlMemberDirectory``
reads the platform tables directly.

The tables are described on their own ``MetaData`` so ``init_models`` never
creates or alters them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError

from notification_service.core.database import UTCDateTime
from notification_service.core.services.base import BaseService

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import Row
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

ACTIVE_STATUS = "approved"

directory_metadata = MetaData()

users_table = Table(
    "users",
    directory_metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(255), nullable=False),
    Column("full_name", String(255)),
    Column("user_type", String(20), nullable=False, default="user"),
    Column("status", String(20), nullable=False, default="pending"),
    Column("membership_number", String(50)),
    Column("current_plan", String(100)),
    Column("plan_expires_at", UTCDateTime()),
    Column("monthly_redemption_count", Integer, default=0),
    Column("monthly_deal_count", Integer, default=0),
    Column("custom_deal_limit", Integer),
    Column("deal_notifications", Boolean, default=True),
)

businesses_table = Table(
    "businesses",
    directory_metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("business_name", String(255), nullable=False),
)

deals_table = Table(
    "deals",
    directory_metadata,
    Column("id", Integer, primary_key=True),
    Column("business_id", Integer, ForeignKey("businesses.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("category", String(100)),
    Column("discount", String(50)),
    Column("valid_until", UTCDateTime()),
    Column("status", String(20), nullable=False, default="pending"),
    Column("rejection_reason", Text),
)

redemptions_table = Table(
    "deal_redemptions",
    directory_metadata,
    Column("id", Integer, primary_key=True),
    Column("deal_id", Integer, ForeignKey("deals.id"), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("status", String(20), nullable=False, default="pending"),
    Column("rejection_reason", Text),
    Column("created_at", UTCDateTime()),
)

email_preferences_table = Table(
    "user_email_preferences",
    directory_metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("notification_type", String(100), nullable=False),
    Column("is_enabled", Boolean, nullable=False, default=True),
    UniqueConstraint("user_id", "notification_type"),
)


@dataclass(frozen=True)
class Member:
    """A user, merchant or admin account."""

    id: int
    email: str
    full_name: str | None = None
    user_type: str = "user"
    status: str = ACTIVE_STATUS
    membership_number: str | None = None
    plan_name: str | None = None
    plan_expires_at: datetime | None = None
    business_name: str | None = None

    @property
    def first_name(self) -> str:
        parts = (self.full_name or "").split()
        return parts[0] if parts else "Member"

    @property
    def display_name(self) -> str:
        return self.business_name or self.full_name or self.email


@dataclass(frozen=True)
class Deal:
    id: int
    title: str
    status: str
    description: str | None = None
    category: str | None = None
    discount: str | None = None
    valid_until: datetime | None = None
    rejection_reason: str | None = None
    business_name: str | None = None
    merchant_id: int | None = None
    merchant_email: str | None = None


@dataclass(frozen=True)
class Redemption:
    id: int
    status: str
    deal_id: int
    deal_title: str
    user_id: int
    user_email: str
    user_name: str | None = None
    membership_number: str | None = None
    business_name: str | None = None
    merchant_id: int | None = None
    merchant_email: str | None = None
    rejection_reason: str | None = None
    requested_at: datetime | None = None


@runtime_checkable
class MemberDirectory(Protocol):
    """Lookups the orchestrator needs from business data."""

    async def get_member(self, member_id: int) -> Member | None: ...

    async def get_deal(self, deal_id: int) -> Deal | None: ...

    async def get_redemption(self, redemption_id: int) -> Redemption | None: ...

    async def list_admins(self) -> Sequence[Member]: ...

    async def list_deal_subscribers(self, exclude_member_id: int | None = None) -> Sequence[Member]: ...

    async def members_with_plans_expiring(self, start: datetime, end: datetime) -> Sequence[Member]: ...

    async def renew_monthly_limits(self) -> Sequence[Member]: ...

    async def email_enabled(self, member_id: int, notification_type: str) -> bool: ...


class SqlMemberDirectory(BaseService):
    """``MemberDirectory`` over the platform tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._session_factory = session_factory

    @staticmethod
    def _member_query():
        return select(
            users_table,
            businesses_table.c.business_name,
        ).select_from(
            users_table.outerjoin(businesses_table, businesses_table.c.user_id == users_table.c.id)
        )

    @staticmethod
    def _to_member(row: Row[Any]) -> Member:
        m = row._mapping
        return Member(
            id=m["id"],
            email=m["email"],
            full_name=m["full_name"],
            user_type=m["user_type"],
            status=m["status"],
            membership_number=m["membership_number"],
            plan_name=m["current_plan"],
            plan_expires_at=m["plan_expires_at"],
            business_name=m["business_name"],
        )

    async def _members(self, stmt) -> list[Member]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_member(row) for row in result.all()]

    async def get_member(self, member_id: int) -> Member | None:
        members = await self._members(self._member_query().where(users_table.c.id == member_id))
        return members[0] if members else None

    async def get_deal(self, deal_id: int) -> Deal | None:
        stmt = (
            select(
                deals_table,
                businesses_table.c.business_name,
                businesses_table.c.user_id.label("merchant_id"),
                users_table.c.email.label("merchant_email"),
            )
            .select_from(
                deals_table.join(businesses_table, businesses_table.c.id == deals_table.c.business_id)
                .outerjoin(users_table, users_table.c.id == businesses_table.c.user_id)
            )
            .where(deals_table.c.id == deal_id)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            return None
        m = row._mapping
        return Deal(
            id=m["id"],
            title=m["title"],
            status=m["status"],
            description=m["description"],
            category=m["category"],
            discount=m["discount"],
            valid_until=m["valid_until"],
            rejection_reason=m["rejection_reason"],
            business_name=m["business_name"],
            merchant_id=m["merchant_id"],
            merchant_email=m["merchant_email"],
        )

    async def get_redemption(self, redemption_id: int) -> Redemption | None:
        member = users_table.alias("member")
        merchant = users_table.alias("merchant")
        stmt = (
            select(
                redemptions_table,
                deals_table.c.title.label("deal_title"),
                member.c.email.label("user_email"),
                member.c.full_name.label("user_name"),
                member.c.membership_number,
                businesses_table.c.business_name,
                businesses_table.c.user_id.label("merchant_id"),
                merchant.c.email.label("merchant_email"),
            )
            .select_from(
                redemptions_table.join(deals_table, deals_table.c.id == redemptions_table.c.deal_id)
                .join(member, member.c.id == redemptions_table.c.user_id)
                .join(businesses_table, businesses_table.c.id == deals_table.c.business_id)
                .outerjoin(merchant, merchant.c.id == businesses_table.c.user_id)
            )
            .where(redemptions_table.c.id == redemption_id)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            return None
        m = row._mapping
        return Redemption(
            id=m["id"],
            status=m["status"],
            deal_id=m["deal_id"],
            deal_title=m["deal_title"],
            user_id=m["user_id"],
            user_email=m["user_email"],
            user_name=m["user_name"],
            membership_number=m["membership_number"],
            business_name=m["business_name"],
            merchant_id=m["merchant_id"],
            merchant_email=m["merchant_email"],
            rejection_reason=m["rejection_reason"],
            requested_at=m["created_at"],
        )

    async def list_admins(self) -> list[Member]:
        stmt = self._member_query().where(
            users_table.c.user_type == "admin",
            users_table.c.status == ACTIVE_STATUS,
        )
        return await self._members(stmt.order_by(users_table.c.id))

    async def list_deal_subscribers(self, exclude_member_id: int | None = None) -> list[Member]:
        """Approved users who have not opted out of deal notifications."""
        stmt = self._member_query().where(
            users_table.c.user_type == "user",
            users_table.c.status == ACTIVE_STATUS,
            users_table.c.deal_notifications.is_not(False),
        )
        if exclude_member_id is not None:
            stmt = stmt.where(users_table.c.id != exclude_member_id)
        return await self._members(stmt.order_by(users_table.c.id))

    async def members_with_plans_expiring(self, start: datetime, end: datetime) -> list[Member]:
        """Approved users and merchants whose plan ends in ``[start, end)``."""
        stmt = self._member_query().where(
            users_table.c.user_type.in_(["user", "merchant"]),
            users_table.c.status == ACTIVE_STATUS,
            users_table.c.current_plan.is_not(None),
            users_table.c.plan_expires_at >= start,
            users_table.c.plan_expires_at < end,
        )
        return await self._members(stmt.order_by(users_table.c.plan_expires_at, users_table.c.id))

    async def renew_monthly_limits(self) -> list[Member]:
        """Reset monthly redemption and deal counters; returns the renewed accounts."""
        stmt = self._member_query().where(
            users_table.c.user_type.in_(["user", "merchant"]),
            users_table.c.status == ACTIVE_STATUS,
        )
        async with self._session_factory() as session:
            members = [self._to_member(row) for row in (await session.execute(stmt.order_by(users_table.c.id))).all()]
            await session.execute(
                update(users_table)
                .where(users_table.c.user_type == "user", users_table.c.status == ACTIVE_STATUS)
                .values(monthly_redemption_count=0)
            )
            await session.execute(
                update(users_table)
                .where(users_table.c.user_type == "merchant", users_table.c.status == ACTIVE_STATUS)
                .values(monthly_deal_count=0)
            )
            await session.commit()
        self.logger.info("Monthly limits renewed", extra={"accounts": len(members)})
        return members

    async def email_enabled(self, member_id: int, notification_type: str) -> bool:
        """Whether the member still wants ``notification_type`` emails.

        Members without a stored preference get every notification. A failed
        lookup also answers True so a preferences outage never silences mail.
        """
        stmt = select(email_preferences_table.c.is_enabled).where(
            email_preferences_table.c.user_id == member_id,
            email_preferences_table.c.notification_type == notification_type,
        )
        try:
            async with self._session_factory() as session:
                enabled = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError:
            self.logger.warning(
                "Email preference lookup failed, sending anyway",
                extra={"member_id": member_id, "notification_type": notification_type},
                exc_info=True,
            )
            return True
        return enabled is None or bool(enabled)


__all__ = [
    "ACTIVE_STATUS",
    "Deal",
    "Member",
    "MemberDirectory",
    "Redemption",
    "SqlMemberDirectory",
    "businesses_table",
    "deals_table",
    "directory_metadata",
    "email_preferences_table",
    "redemptions_table",
    "users_table",
]
