"""Database repository exceptions.

Custom exceptions for repository operations that provide better
error messages and typing than raw SQLAlchemy exceptions.
"""
from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base exception for repository operations.

    Raised when a repository operation fails due to programming
    errors, configuration issues, or unexpected states.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize repository error.

        Args:
            message: Error description
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Format error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class NotFoundError(RepositoryError):
    """Entity not found in database.

    Raised when querying for an entity by primary key that doesn't exist.

    Attributes:
        model_name: Name of the model class that wasn't found
        identifier: The key/value that was searched for
    """

    def __init__(self, model_name: str, identifier: dict[str, Any]):
        """Initialize not found error.

        Args:
            model_name: Name of the model (e.g., "NotificationRecord")
            identifier: Key-value pairs used in the search (e.g., {"id": "..."})
        """
        self.model_name = model_name
        self.identifier = identifier

        id_str = ", ".join(f"{k}={v!r}" for k, v in identifier.items())
        message = f"{model_name} not found with {id_str}"

        super().__init__(message, details={"model": model_name, **identifier})

    def __repr__(self) -> str:
        """Repr for debugging."""
        return f"NotFoundError(model={self.model_name!r}, identifier={self.identifier!r})"


class StaleDataError(RepositoryError):
    """Conditional update matched no row although the entity exists.

    Raised when an UPDATE guarded by expected column values affects zero rows,
    meaning another writer changed the row since it was read.

    Attributes:
        model_name: Name of the model class
        identifier: Primary key of the entity
        expected: Column values the update was conditioned on
    """

    def __init__(self, model_name: str, identifier: dict[str, Any], expected: dict[str, Any]):
        """Initialize stale data error.

        Args:
            model_name: Name of the model
            identifier: Key-value pairs identifying the row
            expected: Expected column values that did not match
        """
        self.model_name = model_name
        self.identifier = identifier
        self.expected = expected
        super().__init__(
            f"{model_name} was modified concurrently",
            details={"model": model_name, **identifier},
        )


__all__ = ["NotFoundError", "RepositoryError", "StaleDataError"]
