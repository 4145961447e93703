"""FastAPI dependencies for the notifications feature.

Provides Annotated type aliases for clean dependency injection in route handlers.

Example usage:
    from dispatch_service.features.notifications.dependencies import (
        AdminIdDep,
        NotificationServiceDep,
    )

    @router.get("/notifications/{notification_id}")
    async def get_notification(
        notification_id: str,
        service: NotificationServiceDep,
    ) -> ApiResponse[BaseNotification]:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from dispatch_service.features.notifications.container import ServiceContainer
from dispatch_service.features.notifications.service import NotificationService
from dispatch_service.features.notifications.templates.service import TemplateService
from dispatch_service.infra.logging import set_log_context


def get_container(request: Request) -> ServiceContainer:
    """Return the container built by the application lifespan."""
    container: ServiceContainer = request.app.state.container
    return container


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]


def get_notification_service(container: ContainerDep) -> NotificationService:
    return container.service


def get_template_service(container: ContainerDep) -> TemplateService:
    return container.template_service


def get_admin_id(
    x_admin_id: Annotated[str | None, Header(description="Acting administrator id")] = None,
) -> str | None:
    """Acting administrator id from the ``X-Admin-Id`` header (authentication is upstream)."""
    return x_admin_id or None


async def bind_admin_context(admin_id: Annotated[str | None, Depends(get_admin_id)]) -> None:
    """Add the acting administrator to the logging context of the request."""
    if admin_id:
        set_log_context(admin_id=admin_id)


# Service dependencies
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
TemplateServiceDep = Annotated[TemplateService, Depends(get_template_service)]

# Caller identity
AdminIdDep = Annotated[str | None, Depends(get_admin_id)]


__all__ = [
    "AdminIdDep",
    "ContainerDep",
    "NotificationServiceDep",
    "TemplateServiceDep",
    "bind_admin_context",
    "get_admin_id",
    "get_container",
    "get_notification_service",
    "get_template_service",
]
