"""Database connection settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Async SQLAlchemy connection configuration.

    Environment variables use DB_ prefix.
    Example: DB_URL=postgresql+asyncpg://user:pass@db/dispatch, DB_ECHO=false
    """

    url: str = Field(
        default="sqlite+aiosqlite:///./dispatch.db",
        min_length=1,
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Log emitted SQL statements")
    pool_size: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    max_overflow: int = Field(default=10, ge=0, le=100, description="Connections beyond pool_size")
    pool_pre_ping: bool = Field(default=True, description="Test connections before checkout")
    create_tables: bool = Field(
        default=True,
        description="Create missing tables at startup (development and tests)",
    )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @property
    def is_sqlite(self) -> bool:
        """Whether the URL targets SQLite (pool sizing does not apply)."""
        return self.url.startswith("sqlite")
