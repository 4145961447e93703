"""Context management for structured logging.

Provides automatic context injection into log records using contextvars,
so request IDs, notification IDs, and batch IDs are included in every log
message without explicit passing. Each asyncio task gets its own copy of the
context, which keeps concurrent dispatch fan-out tasks isolated.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

# Each async task gets its own copy automatically
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for the current async task.

    All subsequent log calls in this context include these fields in the
    log record's extra dict.

    Args:
        **kwargs: Key-value pairs to add to logging context.
            Common examples: request_id, notification_id, batch_id

    Example:
        ```python
        set_log_context(request_id="abc-123")
        logger.info("Dispatching")  # Includes request_id
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get current logging context.

    Returns:
        Dictionary of current context key-value pairs.
    """
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for the current async task."""
    _log_context.set({})


class ContextInjectingFilter(logging.Filter):
    """Logging filter that injects the contextvars log context into LogRecord.

    Applied to the root logger so all loggers benefit from automatic context
    injection and JSONFormatter picks the fields up as top-level keys.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject context into log record.

        Args:
            record: The log record to enhance with context.

        Returns:
            True (always allow the record to be logged).
        """
        for key, value in _log_context.get().items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)
        return True

