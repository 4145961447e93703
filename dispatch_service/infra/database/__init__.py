"""Async engine and session management."""

from dispatch_service.infra.database.session import (
    build_engine,
    build_session_factory,
    close_database,
    init_database,
    session_scope,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "close_database",
    "init_database",
    "session_scope",
]
