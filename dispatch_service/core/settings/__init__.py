"""Modular Pydantic Settings v2 configuration.

Settings follow 12-factor principles:
- Single source of truth via environment variables (.env for development)
- Modular settings by domain (app/db/logging/notifications)
- LRU-cached settings loaders
- Immutable (frozen) settings models
- SecretStr for sensitive fields

Import settings via cached loaders:
    from dispatch_service.core.settings import get_notification_settings

Or use unified settings for access to all domains:
    from dispatch_service.core.settings import get_settings
"""

from __future__ import annotations

from .app import AppSettings
from .database import DatabaseSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .unified import Settings, get_settings

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "NotificationSettings",
    "Settings",
    "clear_all_caches",
    "get_app_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_settings",
]
