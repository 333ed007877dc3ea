"""Minimal generic repository for SQLAlchemy models.

Session is always passed explicitly. Feature repositories subclass
``BaseRepository`` and add their own query methods; anything more involved
uses the session directly.

Example:
    from notification_service.core.database import BaseRepository

    class TemplateRepository(BaseRepository[Template]):
        def __init__(self) -> None:
            super().__init__(Template)

    repo = TemplateRepository()
    template = await repo.get_by(session, Template.type, "user_welcome")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, func, select

from notification_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute


@dataclass(slots=True, frozen=True)
class SearchResult[T]:
    """One page of a filtered query.

    Attributes:
        items: Rows on this page
        total: Matching rows across all pages
        limit: Page size
        offset: Rows skipped before this page
    """

    items: Sequence[T]
    total: int
    limit: int
    offset: int

    @property
    def page(self) -> int:
        """Current page number (1-indexed)."""
        return (self.offset // self.limit) + 1 if self.limit else 1

    @property
    def pages(self) -> int:
        if self.limit == 0:
            return 1
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_next(self) -> bool:
        return self.offset + len(self.items) < self.total


class BaseRepository[T]:
    """Generic lookups, paginated search and insert for one model."""

    __slots__ = ("_lazy", "model")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Row by primary key, or None."""
        instance = await session.get(self.model, id)
        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_by(
        self,
        session: AsyncSession,
        attr: InstrumentedAttribute[Any],
        value: Any,
    ) -> T | None:
        """First row whose ``attr`` equals ``value``, or None."""
        result = await session.execute(select(self.model).where(attr == value))
        instance = result.scalars().first()

        self._lazy.debug(
            lambda: f"db.get_by: {self.model.__name__}.{attr.key}={value!r} -> "
            f"{'found' if instance else 'not found'}"
        )
        return instance

    async def search(
        self,
        session: AsyncSession,
        statement: Select[tuple[T]],
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[T]:
        """Execute a pre-built statement with pagination and a total count.

        Args:
            session: Database session
            statement: Select with filters and ordering already applied
            limit: Page size
            offset: Rows to skip

        Returns:
            SearchResult with the page and the unpaginated total
        """
        count_stmt = select(func.count()).select_from(statement.order_by(None).subquery())
        total = (await session.execute(count_stmt)).scalar_one()

        result = await session.execute(statement.limit(limit).offset(offset))
        items = result.scalars().all()

        page = SearchResult(items=items, total=total, limit=limit, offset=offset)
        self._lazy.debug(
            lambda: f"db.search: {self.model.__name__}(limit={limit}, offset={offset}) -> "
            f"{len(items)}/{total} items, page {page.page}/{page.pages}"
        )
        return page

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Add, flush and refresh so generated columns are populated."""
        session.add(instance)
        await session.flush()
        await session.refresh(instance)

        entity_id = getattr(instance, "id", None)
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}(id={entity_id})")
        return instance


__all__ = ["BaseRepository", "SearchResult"]
