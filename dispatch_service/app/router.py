"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prometheus_client import make_asgi_app

from dispatch_service.features.notifications.router import router as notifications_router
from dispatch_service.features.notifications.router import templates_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from dispatch_service.core.settings.app import AppSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, app_settings: AppSettings) -> None:
    """Register feature routers under the API prefix and mount /metrics.

    Args:
        app: FastAPI application instance.
        app_settings: Application settings (API prefix).
    """
    api_prefix = app_settings.api_prefix

    # Templates first: /notifications/templates must not match /notifications/{notification_id}
    app.include_router(templates_router, prefix=api_prefix)
    app.include_router(notifications_router, prefix=api_prefix)

    app.mount("/metrics", make_asgi_app())

    logger.info("Routers registered", extra={"api_prefix": api_prefix})
