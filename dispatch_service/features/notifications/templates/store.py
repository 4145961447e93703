"""Template stores.

``TemplateStore`` has an in-memory and a SQLAlchemy implementation, selected
by ``NOTIFY_STORE_BACKEND`` together with the record store.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import select

from dispatch_service.core.database import BaseRepository, NotFoundError, uuid7_str
from dispatch_service.features.notifications.exceptions import TemplateNotFound
from dispatch_service.features.notifications.models import NotificationTemplateRecord
from dispatch_service.features.notifications.schemas import (
    NotificationTemplate,
    NotificationTemplateCreate,
)
from dispatch_service.infra.database.session import session_scope

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from dispatch_service.features.notifications.enums import NotificationTriggerEvent


@runtime_checkable
class TemplateStore(Protocol):
    """Persistence boundary for notification templates."""

    async def create(
        self, payload: NotificationTemplateCreate, *, created_by: str | None = None
    ) -> NotificationTemplate:
        """Persist a new template and assign its id."""
        ...

    async def get(self, template_id: str) -> NotificationTemplate:
        """Return the template or raise TemplateNotFound."""
        ...

    async def list(
        self,
        *,
        active_only: bool = False,
        trigger_event: NotificationTriggerEvent | None = None,
    ) -> list[NotificationTemplate]:
        """List templates ordered by name."""
        ...

    async def update(self, template: NotificationTemplate) -> NotificationTemplate:
        """Replace a stored template (already validated)."""
        ...

    async def delete(self, template_id: str) -> None:
        """Delete a template or raise TemplateNotFound."""
        ...


def _new_template(payload: NotificationTemplateCreate, created_by: str | None) -> NotificationTemplate:
    now = datetime.now(UTC)
    return NotificationTemplate(
        **payload.model_dump(),
        id=uuid7_str(),
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )


class InMemoryTemplateStore:
    """Process-local template store."""

    def __init__(self) -> None:
        self._templates: dict[str, NotificationTemplate] = {}

    async def create(
        self, payload: NotificationTemplateCreate, *, created_by: str | None = None
    ) -> NotificationTemplate:
        template = _new_template(payload, created_by)
        self._templates[template.id] = template
        return template.model_copy(deep=True)

    async def get(self, template_id: str) -> NotificationTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return template.model_copy(deep=True)

    async def list(
        self,
        *,
        active_only: bool = False,
        trigger_event: NotificationTriggerEvent | None = None,
    ) -> list[NotificationTemplate]:
        templates = [
            t
            for t in self._templates.values()
            if (not active_only or t.is_active) and (trigger_event is None or t.trigger_event == trigger_event)
        ]
        templates.sort(key=lambda t: (t.name, t.id))
        return [t.model_copy(deep=True) for t in templates]

    async def update(self, template: NotificationTemplate) -> NotificationTemplate:
        if template.id not in self._templates:
            raise TemplateNotFound(template.id)
        self._templates[template.id] = template.model_copy(deep=True)
        return template

    async def delete(self, template_id: str) -> None:
        if self._templates.pop(template_id, None) is None:
            raise TemplateNotFound(template_id)


# ============================================================================
# SQLAlchemy store
# ============================================================================


def _template_columns(template: NotificationTemplate) -> dict[str, Any]:
    data = template.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})
    data["created_at"] = template.created_at
    data["updated_at"] = template.updated_at
    return data


def _template_from_record(record: NotificationTemplateRecord) -> NotificationTemplate:
    data = {name: getattr(record, name) for name in NotificationTemplate.model_fields}
    return NotificationTemplate.model_validate(data)


class SqlAlchemyTemplateStore:
    """Template store backed by the ``notification_templates`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._repo = BaseRepository(NotificationTemplateRecord)

    async def create(
        self, payload: NotificationTemplateCreate, *, created_by: str | None = None
    ) -> NotificationTemplate:
        template = _new_template(payload, created_by)
        record = NotificationTemplateRecord(id=template.id, **_template_columns(template))
        async with session_scope(self._session_factory) as session:
            record = await self._repo.create(session, record)
            return _template_from_record(record)

    async def get(self, template_id: str) -> NotificationTemplate:
        async with session_scope(self._session_factory) as session:
            record = await self._repo.get(session, template_id)
            if record is None:
                raise TemplateNotFound(template_id)
            return _template_from_record(record)

    async def list(
        self,
        *,
        active_only: bool = False,
        trigger_event: NotificationTriggerEvent | None = None,
    ) -> list[NotificationTemplate]:
        model = NotificationTemplateRecord
        stmt = select(model).order_by(model.name, model.id)
        if active_only:
            stmt = stmt.where(model.is_active.is_(True))
        if trigger_event is not None:
            stmt = stmt.where(model.trigger_event == trigger_event.value)
        async with session_scope(self._session_factory) as session:
            records = (await session.execute(stmt)).scalars().all()
            return [_template_from_record(record) for record in records]

    async def update(self, template: NotificationTemplate) -> NotificationTemplate:
        async with session_scope(self._session_factory) as session:
            try:
                record = await self._repo.update_where(session, template.id, _template_columns(template))
            except NotFoundError as exc:
                raise TemplateNotFound(template.id) from exc
            return _template_from_record(record)

    async def delete(self, template_id: str) -> None:
        async with session_scope(self._session_factory) as session:
            try:
                record = await self._repo.get_or_raise(session, template_id)
            except NotFoundError as exc:
                raise TemplateNotFound(template_id) from exc
            await self._repo.delete(session, record)


__all__ = ["InMemoryTemplateStore", "SqlAlchemyTemplateStore", "TemplateStore"]
