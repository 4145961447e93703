"""Custom SQLAlchemy types.

Types included:
- UTCDateTime: timezone-aware datetimes that round-trip as UTC on every dialect
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, TypeDecorator

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime column normalised to UTC.

    SQLite drops tzinfo on read; PostgreSQL returns the session time zone.
    Both are converted back to aware UTC values so that comparisons against
    ``datetime.now(UTC)`` never mix naive and aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        """Reject naive datetimes and store UTC.

        Args:
            value: Python datetime or None
            dialect: Database dialect

        Returns:
            UTC datetime or None

        Raises:
            ValueError: If a naive datetime is supplied
        """
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            msg = "UTCDateTime requires timezone-aware datetimes"
            raise ValueError(msg)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        """Attach UTC to values read back from the database."""
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


__all__ = ["UTCDateTime"]
