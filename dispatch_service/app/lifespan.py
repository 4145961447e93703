"""Application lifespan management.

Startup Order:
1. Logging
2. Notification container (stores, senders, schedulers); creates tables on
   the database backend
3. Sweep scheduler (when APP_ENABLE_SCHEDULER)

Shutdown Order: Reverse of startup.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from dispatch_service.core.settings import get_settings
from dispatch_service.features.notifications.container import ServiceContainer
from dispatch_service.infra.logging.config import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service container on startup and tear it down on shutdown.

    A container already placed on ``app.state`` (tests) is used as is.
    """
    settings = get_settings()
    setup_logging(log_settings=settings.logging)
    logger.info(
        "Application starting",
        extra={"service": settings.app.service_name, "environment": settings.app.environment},
    )

    container: ServiceContainer | None = getattr(app.state, "container", None)
    if container is None:
        container = ServiceContainer.build(settings)
        app.state.container = container
    await container.startup()

    try:
        yield
    finally:
        logger.info("Application shutting down")
        await container.shutdown()
