"""Notification record stores.

``NotificationStore`` is the boundary the dispatcher, retry scheduler and
analytics depend on. Two implementations ship:

- ``InMemoryNotificationStore``: process-local, for development and tests
- ``SqlAlchemyNotificationStore``: async SQLAlchemy over ``notifications``

Both implement conditional updates: ``update(id, changes, expected=...)``
applies ``changes`` only when every ``expected`` field still holds the given
value, otherwise ``ConcurrentUpdateConflict`` is raised and nothing changes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import case, func, select

from dispatch_service.core.database import (
    BaseRepository,
    NotFoundError,
    SearchResult,
    StaleDataError,
)
from dispatch_service.features.notifications.enums import (
    NotificationPriority,
    NotificationStatus,
)
from dispatch_service.features.notifications.exceptions import (
    ConcurrentUpdateConflict,
    NotificationNotFound,
)
from dispatch_service.features.notifications.models import NotificationRecord
from dispatch_service.features.notifications.schemas import (
    BaseNotification,
    NotificationMetadata,
    NotificationQuery,
)
from dispatch_service.infra.database.session import session_scope
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

lazy_logger = get_lazy_logger(__name__)


@runtime_checkable
class NotificationStore(Protocol):
    """Persistence boundary for notification records."""

    async def create(self, notification: BaseNotification) -> BaseNotification:
        """Persist a new record."""
        ...

    async def find_by_id(self, notification_id: str) -> BaseNotification:
        """Return the record or raise NotificationNotFound."""
        ...

    async def find_all(
        self,
        query: NotificationQuery,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[BaseNotification]:
        """Return one page of records matching ``query``."""
        ...

    async def find_matching(self, query: NotificationQuery) -> list[BaseNotification]:
        """Return every record matching ``query`` (unpaged)."""
        ...

    async def count(self, query: NotificationQuery) -> int:
        """Count records matching ``query``."""
        ...

    async def update(
        self,
        notification_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> BaseNotification:
        """Apply ``changes`` if ``expected`` still holds.

        Raises:
            NotificationNotFound: Unknown id
            ConcurrentUpdateConflict: ``expected`` did not match
        """
        ...

    async def delete(self, notification_id: str) -> None:
        """Delete a record or raise NotificationNotFound."""
        ...

    async def list_due_retries(self, now: datetime, limit: int) -> list[BaseNotification]:
        """PENDING records whose ``next_retry_at`` has passed."""
        ...

    async def list_due_scheduled(self, now: datetime, limit: int) -> list[BaseNotification]:
        """PENDING, never-attempted records whose ``scheduled_at`` has passed."""
        ...

    async def purge_before(self, cutoff: datetime, *, dry_run: bool = False) -> int:
        """Delete records created before ``cutoff``; return the matched count."""
        ...


# ============================================================================
# Shared helpers
# ============================================================================


def _plain(value: Any) -> Any:
    """Convert enums and metadata to storable values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, NotificationMetadata):
        return value.model_dump(mode="json")
    return value


def _matches(notification: BaseNotification, query: NotificationQuery) -> bool:
    if query.channels and notification.channel not in query.channels:
        return False
    if query.trigger_events and notification.trigger_event not in query.trigger_events:
        return False
    if query.statuses and notification.status not in query.statuses:
        return False
    if query.priorities and notification.priority not in query.priorities:
        return False
    if query.start_date and notification.created_at < query.start_date:
        return False
    if query.end_date and notification.created_at > query.end_date:
        return False
    if query.recipient_admin_id and notification.recipient_admin_id != query.recipient_admin_id:
        return False
    if query.batch_id and notification.batch_id != query.batch_id:
        return False
    return not (query.template_id and notification.template_id != query.template_id)


def _sort_key(sort_by: str) -> Callable[[BaseNotification], Any]:
    if sort_by == "priority":
        return lambda n: (n.priority.rank, n.created_at, n.id)
    if sort_by == "sent_at":
        return lambda n: (n.sent_at is not None, n.sent_at or n.created_at, n.id)
    return lambda n: (n.created_at, n.id)


# ============================================================================
# In-memory store
# ============================================================================


class InMemoryNotificationStore:
    """Process-local store.

    Check-and-set in ``update`` runs without awaiting, so it is atomic with
    respect to other coroutines on the same event loop. Copies are returned
    so callers never mutate stored state.
    """

    def __init__(self) -> None:
        self._records: dict[str, BaseNotification] = {}

    async def create(self, notification: BaseNotification) -> BaseNotification:
        self._records[notification.id] = notification.model_copy(deep=True)
        lazy_logger.debug(lambda: f"memory.create: notification {notification.id}")
        return notification.model_copy(deep=True)

    async def find_by_id(self, notification_id: str) -> BaseNotification:
        record = self._records.get(notification_id)
        if record is None:
            raise NotificationNotFound(notification_id)
        return record.model_copy(deep=True)

    async def find_all(
        self,
        query: NotificationQuery,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[BaseNotification]:
        matching = await self.find_matching(query)
        page = matching[offset : offset + limit]
        return SearchResult(items=page, total=len(matching), limit=limit, offset=offset)

    async def find_matching(self, query: NotificationQuery) -> list[BaseNotification]:
        matching = [n for n in self._records.values() if _matches(n, query)]
        matching.sort(key=_sort_key(query.sort_by), reverse=query.sort_order == "desc")
        return [n.model_copy(deep=True) for n in matching]

    async def count(self, query: NotificationQuery) -> int:
        return sum(1 for n in self._records.values() if _matches(n, query))

    async def update(
        self,
        notification_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> BaseNotification:
        current = self._records.get(notification_id)
        if current is None:
            raise NotificationNotFound(notification_id)
        for field, value in (expected or {}).items():
            if getattr(current, field) != value:
                raise ConcurrentUpdateConflict(notification_id)

        updated = BaseNotification.model_validate({**current.model_dump(), **changes})
        self._records[notification_id] = updated
        lazy_logger.debug(lambda: f"memory.update: notification {notification_id} set {sorted(changes)}")
        return updated.model_copy(deep=True)

    async def delete(self, notification_id: str) -> None:
        if self._records.pop(notification_id, None) is None:
            raise NotificationNotFound(notification_id)

    async def list_due_retries(self, now: datetime, limit: int) -> list[BaseNotification]:
        due = [
            n
            for n in self._records.values()
            if n.status == NotificationStatus.PENDING
            and n.next_retry_at is not None
            and n.next_retry_at <= now
        ]
        due.sort(key=lambda n: n.next_retry_at)  # type: ignore[arg-type, return-value]
        return [n.model_copy(deep=True) for n in due[:limit]]

    async def list_due_scheduled(self, now: datetime, limit: int) -> list[BaseNotification]:
        due = [
            n
            for n in self._records.values()
            if n.status == NotificationStatus.PENDING
            and n.attempts == 0
            and n.next_retry_at is None
            and n.scheduled_at is not None
            and n.scheduled_at <= now
        ]
        due.sort(key=lambda n: n.scheduled_at)  # type: ignore[arg-type, return-value]
        return [n.model_copy(deep=True) for n in due[:limit]]

    async def purge_before(self, cutoff: datetime, *, dry_run: bool = False) -> int:
        stale = [n.id for n in self._records.values() if n.created_at < cutoff]
        if not dry_run:
            for notification_id in stale:
                del self._records[notification_id]
        return len(stale)


# ============================================================================
# SQLAlchemy store
# ============================================================================

# Domain fields stored under a different attribute name on the model
_ATTRIBUTE_NAMES = {"metadata": "metadata_"}

_PRIORITY_ORDER = case(
    {priority.value: priority.rank for priority in NotificationPriority},
    value=NotificationRecord.priority,
    else_=NotificationPriority.NORMAL.rank,
)


def _to_domain(record: NotificationRecord) -> BaseNotification:
    data = {
        name: getattr(record, _ATTRIBUTE_NAMES.get(name, name))
        for name in BaseNotification.model_fields
    }
    return BaseNotification.model_validate(data)


def _to_columns(values: Mapping[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for name, value in values.items():
        if name == "metadata" and isinstance(value, dict):
            value = NotificationMetadata.model_validate(value)
        columns[_ATTRIBUTE_NAMES.get(name, name)] = _plain(value)
    return columns


class NotificationRepository(BaseRepository[NotificationRecord]):
    """Query helpers for ``NotificationRecord``."""

    def __init__(self) -> None:
        super().__init__(NotificationRecord)

    def filtered(self, query: NotificationQuery) -> Select[tuple[NotificationRecord]]:
        """Build a SELECT applying every filter and the requested ordering."""
        model = NotificationRecord
        stmt = select(model)
        if query.channels:
            stmt = stmt.where(model.channel.in_([c.value for c in query.channels]))
        if query.trigger_events:
            stmt = stmt.where(model.trigger_event.in_([e.value for e in query.trigger_events]))
        if query.statuses:
            stmt = stmt.where(model.status.in_([s.value for s in query.statuses]))
        if query.priorities:
            stmt = stmt.where(model.priority.in_([p.value for p in query.priorities]))
        if query.start_date:
            stmt = stmt.where(model.created_at >= query.start_date)
        if query.end_date:
            stmt = stmt.where(model.created_at <= query.end_date)
        if query.recipient_admin_id:
            stmt = stmt.where(model.recipient_admin_id == query.recipient_admin_id)
        if query.batch_id:
            stmt = stmt.where(model.batch_id == query.batch_id)
        if query.template_id:
            stmt = stmt.where(model.template_id == query.template_id)

        if query.sort_by == "priority":
            order: list[Any] = [_PRIORITY_ORDER, model.created_at, model.id]
        elif query.sort_by == "sent_at":
            order = [model.sent_at, model.created_at, model.id]
        else:
            order = [model.created_at, model.id]
        if query.sort_order == "desc":
            order = [column.desc() for column in order]
        return stmt.order_by(*order)

    async def count(self, session: AsyncSession, statement: Select[tuple[NotificationRecord]]) -> int:
        count_stmt = select(func.count()).select_from(statement.order_by(None).subquery())
        return (await session.execute(count_stmt)).scalar_one()

    async def due_retries(
        self, session: AsyncSession, now: datetime, limit: int
    ) -> list[NotificationRecord]:
        model = NotificationRecord
        stmt = (
            select(model)
            .where(model.status == NotificationStatus.PENDING.value)
            .where(model.next_retry_at.is_not(None))
            .where(model.next_retry_at <= now)
            .order_by(model.next_retry_at)
            .limit(limit)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def due_scheduled(
        self, session: AsyncSession, now: datetime, limit: int
    ) -> list[NotificationRecord]:
        model = NotificationRecord
        stmt = (
            select(model)
            .where(model.status == NotificationStatus.PENDING.value)
            .where(model.attempts == 0)
            .where(model.next_retry_at.is_(None))
            .where(model.scheduled_at.is_not(None))
            .where(model.scheduled_at <= now)
            .order_by(model.scheduled_at)
            .limit(limit)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def ids_created_before(self, session: AsyncSession, cutoff: datetime) -> list[str]:
        stmt = select(NotificationRecord.id).where(NotificationRecord.created_at < cutoff)
        return list((await session.execute(stmt)).scalars().all())


class SqlAlchemyNotificationStore:
    """Store backed by the ``notifications`` table.

    Each operation runs in its own transaction via ``session_scope``.
    Conditional updates compile to a single UPDATE whose WHERE clause carries
    the expected values, so they stay atomic across processes.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._repo = NotificationRepository()

    async def create(self, notification: BaseNotification) -> BaseNotification:
        record = NotificationRecord(**_to_columns(notification.model_dump()))
        async with session_scope(self._session_factory) as session:
            record = await self._repo.create(session, record)
            return _to_domain(record)

    async def find_by_id(self, notification_id: str) -> BaseNotification:
        async with session_scope(self._session_factory) as session:
            record = await self._repo.get(session, notification_id)
            if record is None:
                raise NotificationNotFound(notification_id)
            return _to_domain(record)

    async def find_all(
        self,
        query: NotificationQuery,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[BaseNotification]:
        async with session_scope(self._session_factory) as session:
            result = await self._repo.search(session, self._repo.filtered(query), limit=limit, offset=offset)
            return SearchResult(
                items=[_to_domain(record) for record in result.items],
                total=result.total,
                limit=result.limit,
                offset=result.offset,
            )

    async def find_matching(self, query: NotificationQuery) -> list[BaseNotification]:
        async with session_scope(self._session_factory) as session:
            records = (await session.execute(self._repo.filtered(query))).scalars().all()
            return [_to_domain(record) for record in records]

    async def count(self, query: NotificationQuery) -> int:
        async with session_scope(self._session_factory) as session:
            return await self._repo.count(session, self._repo.filtered(query))

    async def update(
        self,
        notification_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> BaseNotification:
        async with session_scope(self._session_factory) as session:
            try:
                record = await self._repo.update_where(
                    session,
                    notification_id,
                    _to_columns(changes),
                    expected=_to_columns(expected or {}),
                )
            except NotFoundError as exc:
                raise NotificationNotFound(notification_id) from exc
            except StaleDataError as exc:
                raise ConcurrentUpdateConflict(notification_id) from exc
            return _to_domain(record)

    async def delete(self, notification_id: str) -> None:
        async with session_scope(self._session_factory) as session:
            try:
                record = await self._repo.get_or_raise(session, notification_id)
            except NotFoundError as exc:
                raise NotificationNotFound(notification_id) from exc
            await self._repo.delete(session, record)

    async def list_due_retries(self, now: datetime, limit: int) -> list[BaseNotification]:
        async with session_scope(self._session_factory) as session:
            return [_to_domain(record) for record in await self._repo.due_retries(session, now, limit)]

    async def list_due_scheduled(self, now: datetime, limit: int) -> list[BaseNotification]:
        async with session_scope(self._session_factory) as session:
            return [_to_domain(record) for record in await self._repo.due_scheduled(session, now, limit)]

    async def purge_before(self, cutoff: datetime, *, dry_run: bool = False) -> int:
        async with session_scope(self._session_factory) as session:
            ids = await self._repo.ids_created_before(session, cutoff)
            if not dry_run:
                await self._repo.delete_many(session, ids)
            return len(ids)


__all__ = [
    "InMemoryNotificationStore",
    "NotificationRepository",
    "NotificationStore",
    "SqlAlchemyNotificationStore",
]
