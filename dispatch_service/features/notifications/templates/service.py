"""Service layer for notification template management."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from dispatch_service.core.services.base import BaseService
from dispatch_service.features.notifications.exceptions import (
    PermanentSendFailure,
    TransientSendFailure,
    ValidationError,
)
from dispatch_service.features.notifications.schemas import (
    NotificationTemplate,
    NotificationTemplateCreate,
    TemplateTestResponse,
    utcnow,
)
from dispatch_service.features.notifications.templates.renderer import resolve_variables

if TYPE_CHECKING:
    from dispatch_service.features.notifications.channels.registry import ChannelRegistry
    from dispatch_service.features.notifications.enums import NotificationTriggerEvent
    from dispatch_service.features.notifications.schemas import (
        NotificationTemplateUpdate,
        TemplateTestRequest,
    )
    from dispatch_service.features.notifications.templates.renderer import TemplateRenderer
    from dispatch_service.features.notifications.templates.store import TemplateStore


class TemplateService(BaseService):
    """Template CRUD, duplication and test rendering.

    Every write goes through the template schema validators, so a stored
    template always has content for each channel it declares.
    """

    def __init__(
        self,
        store: TemplateStore,
        renderer: TemplateRenderer,
        registry: ChannelRegistry,
        *,
        send_timeout_seconds: float = 10.0,
    ) -> None:
        super().__init__()
        self.store = store
        self.renderer = renderer
        self.registry = registry
        self.send_timeout_seconds = send_timeout_seconds

    async def create(
        self, payload: NotificationTemplateCreate, *, created_by: str | None = None
    ) -> NotificationTemplate:
        template = await self.store.create(payload, created_by=created_by)
        self.logger.info(
            "Template created",
            extra={
                "template_id": template.id,
                "template_name": template.name,
                "trigger_event": template.trigger_event.value,
                "channels": [c.value for c in template.channels],
            },
        )
        return template

    async def get(self, template_id: str) -> NotificationTemplate:
        return await self.store.get(template_id)

    async def list(
        self,
        *,
        active_only: bool = False,
        trigger_event: NotificationTriggerEvent | None = None,
    ) -> list[NotificationTemplate]:
        templates = await self.store.list(active_only=active_only, trigger_event=trigger_event)
        self._lazy.debug(lambda: f"templates.list: {len(templates)} (active_only={active_only})")
        return templates

    async def update(self, template_id: str, payload: NotificationTemplateUpdate) -> NotificationTemplate:
        """Merge ``payload`` into the stored template and revalidate the result.

        Raises:
            TemplateNotFound: Unknown id
            ValidationError: Merged template is inconsistent
        """
        current = await self.store.get(template_id)
        changes = payload.model_dump(exclude_unset=True)
        merged = current.model_dump() | changes | {"updated_at": utcnow()}
        try:
            template = NotificationTemplate.model_validate(merged)
        except ValueError as exc:
            raise ValidationError(
                f"Template update is invalid: {exc}", extra={"template_id": template_id}
            ) from exc
        updated = await self.store.update(template)
        self.logger.info(
            "Template updated",
            extra={"template_id": template_id, "fields": sorted(changes)},
        )
        return updated

    async def delete(self, template_id: str) -> None:
        await self.store.delete(template_id)
        self.logger.info("Template deleted", extra={"template_id": template_id})

    async def duplicate(self, template_id: str, *, created_by: str | None = None) -> NotificationTemplate:
        """Copy a template under the name ``"<name> (copy)"``."""
        source = await self.store.get(template_id)
        fields = source.model_dump(exclude={"id", "created_by", "created_at", "updated_at"})
        fields["name"] = f"{source.name} (copy)"[:255]
        copy = await self.store.create(NotificationTemplateCreate.model_validate(fields), created_by=created_by)
        self.logger.info(
            "Template duplicated",
            extra={"template_id": copy.id, "source_template_id": template_id},
        )
        return copy

    async def test(self, template_id: str, request: TemplateTestRequest) -> TemplateTestResponse:
        """Render a template for one channel and optionally send it.

        No notification record is created. Send failures are reported in the
        response rather than raised.

        Raises:
            TemplateNotFound: Unknown id
            RenderError: Content could not be rendered
        """
        template = await self.store.get(template_id)
        variables = resolve_variables(template, request.metadata, request.variables)
        rendered = self.renderer.render(template, request.channel, variables)

        if not request.test_address:
            return TemplateTestResponse(rendered=rendered)

        try:
            sender = self.registry.get(request.channel)
            async with asyncio.timeout(self.send_timeout_seconds):
                result = await sender.send(rendered, request.test_address)
        except TimeoutError:
            return TemplateTestResponse(
                rendered=rendered, error=f"send timed out after {self.send_timeout_seconds}s"
            )
        except (TransientSendFailure, PermanentSendFailure) as exc:
            return TemplateTestResponse(rendered=rendered, error=exc.detail)

        self.logger.info(
            "Template test send",
            extra={
                "template_id": template_id,
                "channel": request.channel.value,
                "status": result.status.value,
            },
        )
        return TemplateTestResponse(
            rendered=rendered,
            sent=result.ok,
            provider_message_id=result.provider_message_id,
            error=result.error,
        )


__all__ = ["TemplateService"]
