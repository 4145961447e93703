"""Middleware configuration for FastAPI application.

The middleware stack includes:
- Request ID: Request tracking, log context and response timing
- CORS: Cross-Origin Resource Sharing (debug only)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware

from dispatch_service.app.middleware.base import HeaderContextMiddleware
from dispatch_service.app.middleware.request_id import RequestIDMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI

    from dispatch_service.core.settings import Settings


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware; the last added runs first.

    Args:
        app: FastAPI application instance.
        settings: Unified settings.
    """
    if settings.app.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )
    app.add_middleware(RequestIDMiddleware)


__all__ = ["HeaderContextMiddleware", "RequestIDMiddleware", "configure_middleware"]
