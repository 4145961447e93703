"""Uniform response envelope for API responses."""

from __future__ import annotations

from datetime import UTC, datetime
import time
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from starlette.requests import Request


class ErrorInfo(BaseModel):
    """Machine-readable error carried by a failed response."""

    code: str = Field(..., description="Stable error code, e.g. NOTIFICATION_NOT_FOUND")
    message: str = Field(..., description="Human-readable description")
    details: dict[str, Any] | None = Field(default=None, description="Error-specific context")


class ResponseMetadata(BaseModel):
    """Request correlation and timing attached to every response."""

    request_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    processing_time_ms: float = 0.0

    @classmethod
    def from_request(cls, request: Request) -> ResponseMetadata:
        """Build metadata from the request id and start time set by RequestIDMiddleware."""
        started_at = getattr(request.state, "started_at", None)
        elapsed = (time.perf_counter() - started_at) * 1000 if started_at is not None else 0.0
        return cls(
            request_id=getattr(request.state, "request_id", None),
            processing_time_ms=round(elapsed, 3),
        )


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope wrapping every API response.

    Example:
        ApiResponse[BaseNotification](
            success=True,
            message="Notification retrieved",
            data=notification,
        )
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    data: T | None = None
    error: ErrorInfo | None = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)

    @classmethod
    def ok(cls, request: Request, data: T | None = None, message: str = "OK") -> ApiResponse[T]:
        """Successful envelope for ``data``."""
        return cls(success=True, message=message, data=data, metadata=ResponseMetadata.from_request(request))


def error_envelope(
    request: Request,
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """JSON-ready failed envelope, as rendered by the exception handlers."""
    envelope: ApiResponse[None] = ApiResponse(
        success=False,
        message=message,
        error=ErrorInfo(code=code, message=message, details=details or None),
        metadata=ResponseMetadata.from_request(request),
    )
    return envelope.model_dump(mode="json")


__all__ = ["ApiResponse", "ErrorInfo", "ResponseMetadata", "error_envelope"]
