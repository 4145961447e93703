"""Core database package with base classes, mixins, and repository.

Base Classes and Mixins:
    - Base: Declarative base with auto table naming
    - StringUUIDv7PKMixin: String UUID v7 primary key
    - TimestampMixin: created_at, updated_at tracking

Repository:
    - BaseRepository[T]: Generic CRUD with explicit session passing
    - SearchResult[T]: Paginated result container

Types:
    - UTCDateTime: timezone-aware UTC datetime column
"""

from dispatch_service.core.database.base import (
    NAMING_CONVENTION,
    Base,
    StringUUIDv7PKMixin,
    TimestampMixin,
)
from dispatch_service.core.database.exceptions import (
    NotFoundError,
    RepositoryError,
    StaleDataError,
)
from dispatch_service.core.database.repository import BaseRepository, SearchResult
from dispatch_service.core.database.types import UTCDateTime
from dispatch_service.core.database.utils import generate_uuid7, uuid7_str

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "NotFoundError",
    "RepositoryError",
    "SearchResult",
    "StaleDataError",
    "StringUUIDv7PKMixin",
    "TimestampMixin",
    "UTCDateTime",
    "generate_uuid7",
    "uuid7_str",
]
