"""Minimal generic repository for SQLAlchemy models.

Provides basic CRUD operations with explicit session passing.
For complex queries, use the session directly - this is a convenience, not a cage.

Example:
    class NotificationRepository(BaseRepository[NotificationRecord]):
        async def list_pending(self, session: AsyncSession) -> Sequence[NotificationRecord]:
            stmt = select(NotificationRecord).where(NotificationRecord.status == "PENDING")
            result = await session.execute(stmt)
            return result.scalars().all()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import Select, func, select, update
from sqlalchemy import delete as sql_delete

from dispatch_service.core.database.exceptions import NotFoundError, StaleDataError
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class SearchResult(Generic[T]):
    """Paginated search result container.

    Attributes:
        items: List of items for current page
        total: Total count across all pages
        limit: Page size
        offset: Current offset

    Example:
        result = await repo.search(session, stmt, limit=20, offset=0)
        print(f"Showing {len(result.items)} of {result.total}")
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
        """Total number of pages."""
        if self.limit == 0:
            return 1
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_next(self) -> bool:
        """Whether there are more pages after current."""
        return self.offset + len(self.items) < self.total

    @property
    def has_prev(self) -> bool:
        """Whether there are pages before current."""
        return self.offset > 0


class BaseRepository(Generic[T]):
    """Minimal generic repository for CRUD operations.

    Provides:
        - get(session, id) -> T | None
        - get_or_raise(session, id) -> T (raises NotFoundError)
        - search(session, statement, limit, offset) -> SearchResult[T]
        - create(session, instance) -> T
        - update_where(session, id, values, expected) -> T (conditional update)
        - delete(session, instance) -> None
        - delete_many(session, ids) -> int

    Session is always explicit - no hidden state.
    """

    __slots__ = ("_lazy", "_logger", "model")

    def __init__(self, model: type[T]) -> None:
        """Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model
        # Standard logger for INFO/WARNING/ERROR
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        # Lazy logger for DEBUG (zero overhead when DEBUG disabled)
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key.

        Args:
            session: Database session
            id: Primary key value

        Returns:
            Entity if found, None otherwise
        """
        instance = await session.get(self.model, id)
        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_or_raise(self, session: AsyncSession, id: Any) -> T:  # noqa: A002
        """Get entity by primary key or raise NotFoundError.

        Args:
            session: Database session
            id: Primary key value

        Returns:
            Entity instance

        Raises:
            NotFoundError: If entity doesn't exist
        """
        instance = await self.get(session, id)
        if instance is None:
            self._logger.info(
                "Entity not found",
                extra={
                    "entity": self.model.__name__,
                    "id": str(id),
                    "operation": "db.get_or_raise",
                },
            )
            raise NotFoundError(self.model.__name__, {"id": id})
        return instance

    async def search(
        self,
        session: AsyncSession,
        statement: Select[tuple[T]],
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[T]:
        """Execute paginated search with total count.

        Takes a pre-built statement (with filters applied) and adds pagination.

        Args:
            session: Database session
            statement: SQLAlchemy select statement (apply filters before calling)
            limit: Page size
            offset: Results to skip

        Returns:
            SearchResult with items, total count, and pagination info
        """
        count_stmt = select(func.count()).select_from(statement.order_by(None).subquery())
        total = (await session.execute(count_stmt)).scalar_one()

        paginated = statement.limit(limit).offset(offset)
        result = await session.execute(paginated)
        items = result.scalars().all()

        search_result = SearchResult(items=items, total=total, limit=limit, offset=offset)
        self._lazy.debug(
            lambda: f"db.search: {self.model.__name__}(limit={limit}, offset={offset}) -> {len(items)}/{total} items, page {search_result.page}/{search_result.pages}"
        )
        return search_result

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Persist a new entity.

        Adds to session, flushes to get generated values, and refreshes to
        ensure instance is up-to-date.

        Args:
            session: Database session
            instance: Entity instance to persist

        Returns:
            Persisted entity with generated fields populated
        """
        session.add(instance)
        await session.flush()
        await session.refresh(instance)

        entity_id = getattr(instance, "id", None)
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}(id={entity_id})")
        return instance

    async def update_where(
        self,
        session: AsyncSession,
        id: Any,  # noqa: A002
        values: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> T:
        """Apply a single-statement UPDATE guarded by expected column values.

        The WHERE clause includes the primary key plus one predicate per
        ``expected`` entry (``IS NULL`` for None), so the write is atomic
        with respect to concurrent writers on any backend.

        Args:
            session: Database session
            id: Primary key value
            values: Column values to set
            expected: Column values the row must currently hold

        Returns:
            The refreshed entity

        Raises:
            NotFoundError: If no row has this primary key
            StaleDataError: If the row exists but ``expected`` did not match
        """
        pk = self.model.id  # type: ignore[attr-defined]
        stmt = update(self.model).where(pk == id)
        for column_name, value in (expected or {}).items():
            column = getattr(self.model, column_name)
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = await session.execute(stmt)
        if result.rowcount == 0:
            if await session.get(self.model, id) is None:
                raise NotFoundError(self.model.__name__, {"id": id})
            raise StaleDataError(self.model.__name__, {"id": id}, dict(expected or {}))

        instance = await session.get(self.model, id, populate_existing=True)
        self._lazy.debug(
            lambda: f"db.update_where: {self.model.__name__}(id={id}) set {sorted(values)}"
        )
        return instance  # type: ignore[return-value]

    async def delete(self, session: AsyncSession, instance: T) -> None:
        """Delete an entity.

        Args:
            session: Database session
            instance: Entity to delete
        """
        entity_id = getattr(instance, "id", None)
        await session.delete(instance)
        await session.flush()

        self._logger.info(
            "Entity deleted",
            extra={"entity": self.model.__name__, "id": str(entity_id), "operation": "db.delete"},
        )

    async def delete_many(self, session: AsyncSession, ids: Sequence[Any]) -> int:
        """Delete multiple entities by primary key.

        Uses a single DELETE statement; entities are not loaded into the session.

        Args:
            session: Database session
            ids: Primary key values to delete

        Returns:
            Number of rows deleted
        """
        if not ids:
            return 0
        pk = self.model.id  # type: ignore[attr-defined]
        stmt = sql_delete(self.model).where(pk.in_(list(ids)))
        result = await session.execute(stmt)
        count = result.rowcount or 0

        self._logger.info(
            "Entities deleted",
            extra={"entity": self.model.__name__, "count": count, "operation": "db.delete_many"},
        )
        return count


__all__ = ["BaseRepository", "SearchResult"]
