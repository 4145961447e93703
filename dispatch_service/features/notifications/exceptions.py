"""Notification error taxonomy.

Every error carries a stable machine-readable ``type`` code and an HTTP
status, so the exception handlers can render it in the response envelope
without per-error branching.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from dispatch_service.core.exceptions import (
    AppException,
    BadGatewayException,
    ConflictException,
    NotFoundException,
    ServiceUnavailableException,
    ValidationException,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from dispatch_service.features.notifications.enums import (
        NotificationChannel,
        NotificationStatus,
    )


class NotificationError(AppException):
    """Base class for notification errors."""

    @property
    def code(self) -> str:
        """Stable error code (alias of ``type``)."""
        return self.type


class ValidationError(NotificationError, ValidationException):
    """Malformed request, filter, or template."""

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        ValidationException.__init__(self, detail=detail, type="VALIDATION_ERROR", extra=extra)


# ============================================================================
# Rendering errors
# ============================================================================


class RenderError(NotificationError, ValidationException):
    """Base class for template rendering failures."""


class TemplateMissingForChannel(RenderError):
    """The template has no sub-template for the requested channel."""

    def __init__(self, template_id: str, channel: NotificationChannel) -> None:
        self.template_id = template_id
        self.channel = channel
        ValidationException.__init__(
            self,
            detail=f"Template {template_id} has no {channel.value} content",
            type="TEMPLATE_MISSING_FOR_CHANNEL",
            extra={"template_id": template_id, "channel": channel.value},
        )


class MissingRequiredVariable(RenderError):
    """One or more placeholders could not be resolved.

    Attributes:
        missing: Sorted, de-duplicated variable names
    """

    def __init__(self, template_id: str, missing: Iterable[str]) -> None:
        self.template_id = template_id
        self.missing = sorted(set(missing))
        ValidationException.__init__(
            self,
            detail=f"Missing required variables: {', '.join(self.missing)}",
            type="MISSING_REQUIRED_VARIABLE",
            extra={"template_id": template_id, "missing": self.missing},
        )


class ContentTooLong(RenderError):
    """Rendered content exceeds the channel limit and truncation is disabled."""

    def __init__(self, channel: NotificationChannel, length: int, max_length: int) -> None:
        self.channel = channel
        self.length = length
        self.max_length = max_length
        ValidationException.__init__(
            self,
            detail=f"{channel.value} content is {length} characters, limit is {max_length}",
            type="CONTENT_TOO_LONG",
            extra={"channel": channel.value, "length": length, "max_length": max_length},
        )


# ============================================================================
# Lifecycle errors
# ============================================================================


class InvalidStateTransition(NotificationError, ConflictException):
    """A status change not permitted by the lifecycle state machine."""

    def __init__(
        self,
        notification_id: str,
        current: NotificationStatus,
        requested: NotificationStatus,
    ) -> None:
        self.notification_id = notification_id
        self.current = current
        self.requested = requested
        ConflictException.__init__(
            self,
            detail=f"Cannot move notification {notification_id} from {current.value} to {requested.value}",
            type="INVALID_STATE_TRANSITION",
            extra={
                "notification_id": notification_id,
                "current": current.value,
                "requested": requested.value,
            },
        )


class RetriesExhausted(NotificationError, ConflictException):
    """The record has used all its retries and is terminally FAILED."""

    def __init__(self, notification_id: str, retry_count: int, max_retries: int) -> None:
        self.notification_id = notification_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        ConflictException.__init__(
            self,
            detail=f"Notification {notification_id} exhausted {max_retries} retries",
            type="RETRIES_EXHAUSTED",
            extra={
                "notification_id": notification_id,
                "retry_count": retry_count,
                "max_retries": max_retries,
            },
        )


class ConcurrentUpdateConflict(NotificationError, ConflictException):
    """A conditional update lost a race with another writer."""

    def __init__(self, notification_id: str) -> None:
        self.notification_id = notification_id
        ConflictException.__init__(
            self,
            detail=f"Notification {notification_id} was modified concurrently",
            type="CONCURRENT_UPDATE_CONFLICT",
            extra={"notification_id": notification_id},
        )


class NotFound(NotificationError, NotFoundException):
    """Base class for unknown identifiers."""


class NotificationNotFound(NotFound):
    """No notification record with this id."""

    def __init__(self, notification_id: str) -> None:
        self.notification_id = notification_id
        NotFoundException.__init__(
            self,
            detail=f"Notification {notification_id} not found",
            type="NOTIFICATION_NOT_FOUND",
            extra={"notification_id": notification_id},
        )


class TemplateNotFound(NotFound):
    """No template with this id."""

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        NotFoundException.__init__(
            self,
            detail=f"Template {template_id} not found",
            type="TEMPLATE_NOT_FOUND",
            extra={"template_id": template_id},
        )


# ============================================================================
# Sender errors
# ============================================================================


class TransientSendFailure(NotificationError, ServiceUnavailableException):
    """Provider timeout, rate limit, 5xx or connection error. Retryable."""

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        ServiceUnavailableException.__init__(
            self, detail=detail, type="TRANSIENT_SEND_FAILURE", extra=extra
        )


class PermanentSendFailure(NotificationError, BadGatewayException):
    """Invalid address, unsubscribed recipient or malformed payload. Not retryable."""

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        BadGatewayException.__init__(
            self, detail=detail, type="PERMANENT_SEND_FAILURE", extra=extra
        )


__all__ = [
    "ConcurrentUpdateConflict",
    "ContentTooLong",
    "InvalidStateTransition",
    "MissingRequiredVariable",
    "NotFound",
    "NotificationError",
    "NotificationNotFound",
    "PermanentSendFailure",
    "RenderError",
    "RetriesExhausted",
    "TemplateMissingForChannel",
    "TemplateNotFound",
    "TransientSendFailure",
    "ValidationError",
]
