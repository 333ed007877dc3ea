"""Template Store: resolves a template type to subject/HTML/text content.

Resolution order on a cache miss:
    1. File-backed content: ``{template_dir}/{type}.html`` (plus optional
       ``{type}.txt``; otherwise text is derived from the HTML). The subject
       comes from the database row when one exists, else from
       ``DEFAULT_SUBJECTS`` with the brand appended.
    2. The active database row for ``type``.

Successful resolutions are cached without expiry until ``invalidate`` or
``invalidate_all`` is called. The admin edit path calls ``invalidate``
synchronously after every update.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from notification_service.core.services.base import BaseService
from notification_service.features.notifications.exceptions import TemplateNotFoundError
from notification_service.features.notifications.models import Template
from notification_service.features.notifications.repository import TemplateRepository
from notification_service.features.notifications.templates.renderer import html_to_text

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.features.notifications.templates.renderer import TemplateRenderer


DEFAULT_SUBJECTS: dict[str, str] = {
    "user_welcome": "Welcome, {{ firstName }}!",
    "merchant_welcome": "Welcome to the business directory, {{ businessName }}!",
    "profile_status_update": "Profile status update: {{ newStatus }}",
    "password_changed_by_admin": "Your password was changed by an administrator",
    "plan_assigned": "New plan assigned: {{ planName }}",
    "custom_deal_limit_assigned": "Custom deal limit assigned",
    "plan_expiry_warning": "Plan expiry warning: {{ planName }}",
    "deal_status_update": "Deal submission update: {{ dealTitle }}",
    "new_deal_notification": "New deal available: {{ dealTitle }}",
    "new_redemption_request": "New redemption request: {{ dealTitle }}",
    "redemption_approved": "Redemption request approved: {{ dealTitle }}",
    "redemption_rejected": "Redemption request update: {{ dealTitle }}",
    "redemption_limit_reached": "Monthly redemption limit reached",
    "redemption_limit_renewed": "Redemption limit renewed",
    "deal_limit_reached": "Monthly deal posting limit reached",
    "deal_limit_renewed": "Deal posting limit renewed",
    "admin_new_registration": "New registration: action required",
    "admin_new_merchant": "New business registration: {{ businessName }}",
    "admin_new_deal_request": "New deal approval required: {{ dealTitle }}",
    "admin_plan_expiry_alert": "Plan expiry alert: {{ expiringCount }} account(s)",
    "admin_daily_summary": "Daily notification summary for {{ date }}",
    "admin_health_alert": "Notification failure rate above {{ maxFailureRate }}%",
}


@dataclass(frozen=True)
class ResolvedTemplate:
    """Template content ready for rendering."""

    type: str
    subject: str
    html: str
    text: str
    source: str  # "file" | "database"


class TemplateCache:
    """Process-wide map of resolved templates keyed by type."""

    def __init__(self) -> None:
        self._entries: dict[str, ResolvedTemplate] = {}

    def get(self, template_type: str) -> ResolvedTemplate | None:
        return self._entries.get(template_type)

    def set(self, template: ResolvedTemplate) -> None:
        self._entries[template.type] = template

    def invalidate(self, template_type: str) -> bool:
        """Drop one entry; returns whether it was cached."""
        return self._entries.pop(template_type, None) is not None

    def invalidate_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def __contains__(self, template_type: object) -> bool:
        return template_type in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class TemplateStore(BaseService):
    """Resolves, caches and administers message templates."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        template_dir: Path | None,
        renderer: TemplateRenderer,
        *,
        brand_name: str,
        cache: TemplateCache | None = None,
        default_subjects: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._template_dir = Path(template_dir) if template_dir else None
        self._renderer = renderer
        self._brand_name = brand_name
        self.cache = cache if cache is not None else TemplateCache()
        self._default_subjects = DEFAULT_SUBJECTS if default_subjects is None else default_subjects
        self._repository = TemplateRepository()

    @property
    def default_subject(self) -> str:
        return "{{ subject }} - " + self._brand_name

    def subject_for(self, template_type: str) -> str:
        """Subject used when no database row supplies one."""
        subject = self._default_subjects.get(template_type)
        if subject is None:
            return self.default_subject
        return f"{subject} - {self._brand_name}"

    async def resolve(self, template_type: str) -> ResolvedTemplate:
        """Resolve ``template_type`` through the cache, files, then the database.

        Raises:
            TemplateNotFoundError: If no source has an active template.
        """
        cached = self.cache.get(template_type)
        if cached is not None:
            self._lazy.debug(lambda: f"Template cache hit: {template_type}")
            return cached

        async with self._session_factory() as session:
            row = await self._repository.get_by_type(session, template_type)

        resolved = self._from_files(template_type, row)
        if resolved is None and row is not None and row.active:
            resolved = ResolvedTemplate(
                type=row.type,
                subject=row.subject,
                html=row.html,
                text=row.text or html_to_text(row.html),
                source="database",
            )

        if resolved is None:
            self.logger.warning("Template not found", extra={"template_type": template_type})
            raise TemplateNotFoundError(template_type)

        self.cache.set(resolved)
        self.logger.info(
            "Template resolved",
            extra={"template_type": template_type, "source": resolved.source},
        )
        return resolved

    def _from_files(self, template_type: str, row: Template | None) -> ResolvedTemplate | None:
        if self._template_dir is None or "/" in template_type or "\\" in template_type:
            return None
        if row is not None and not row.active:
            return None
        html_path = self._template_dir / f"{template_type}.html"
        if not html_path.is_file():
            return None

        html = html_path.read_text(encoding="utf-8")
        text_path = self._template_dir / f"{template_type}.txt"
        text = text_path.read_text(encoding="utf-8") if text_path.is_file() else html_to_text(html)
        return ResolvedTemplate(
            type=template_type,
            subject=row.subject if row is not None else self.subject_for(template_type),
            html=html,
            text=text,
            source="file",
        )

    def invalidate(self, template_type: str) -> None:
        """Forget the cached resolution for ``template_type``."""
        if self.cache.invalidate(template_type):
            self.logger.info("Template cache entry invalidated", extra={"template_type": template_type})

    def invalidate_all(self) -> None:
        """Forget every cached resolution."""
        count = self.cache.invalidate_all()
        self.logger.info("Template cache cleared", extra={"entries": count})

    # ------------------------------------------------------------------
    # Administrative edit path
    # ------------------------------------------------------------------

    async def list_templates(self) -> Sequence[Template]:
        async with self._session_factory() as session:
            return await self._repository.list_all(session)

    async def get_template(self, template_type: str) -> Template:
        """Database row for ``template_type``.

        Raises:
            TemplateNotFoundError: If no row exists.
        """
        async with self._session_factory() as session:
            row = await self._repository.get_by_type(session, template_type)
        if row is None:
            raise TemplateNotFoundError(template_type)
        return row

    async def update_template(
        self,
        template_type: str,
        *,
        subject: str | None = None,
        html: str | None = None,
        text: str | None = None,
        active: bool | None = None,
        create: bool = False,
    ) -> Template:
        """Update (or create) a template row and invalidate its cache entry.

        Raises:
            RenderError: If any supplied part does not compile.
            TemplateNotFoundError: If the row is missing and ``create`` is False.
        """
        for part in (subject, html, text):
            if part is not None:
                self._renderer.validate(part, template_name=template_type)

        async with self._session_factory() as session:
            row = await self._repository.get_by_type(session, template_type)
            if row is None:
                if not create:
                    raise TemplateNotFoundError(template_type)
                row = Template(type=template_type, subject=subject or self.subject_for(template_type), html="", text="")
                session.add(row)
            if subject is not None:
                row.subject = subject
            if html is not None:
                row.html = html
            if text is not None:
                row.text = text
            if active is not None:
                row.active = active
            await session.commit()
            await session.refresh(row)

        self.invalidate(template_type)
        self.logger.info("Template updated", extra={"template_type": template_type})
        return row


__all__ = ["DEFAULT_SUBJECTS", "ResolvedTemplate", "TemplateCache", "TemplateStore"]
