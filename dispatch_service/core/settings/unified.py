"""Unified settings composition for convenient access.

Usage:
    from dispatch_service.core.settings import get_settings

    settings = get_settings()
    print(settings.app.api_prefix)
    print(settings.notifications.sender_mode)

Each nested settings class still respects its own env prefix.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from .app import AppSettings
from .database import DatabaseSettings
from .loader import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings


@dataclass(frozen=True, slots=True)
class Settings:
    """All settings domains in one object."""

    app: AppSettings
    db: DatabaseSettings
    logging: LoggingSettings
    notifications: NotificationSettings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached unified settings built from the per-domain loaders.

    Returns:
        Settings instance composing every domain.
    """
    return Settings(
        app=get_app_settings(),
        db=get_db_settings(),
        logging=get_logging_settings(),
        notifications=get_notification_settings(),
    )
