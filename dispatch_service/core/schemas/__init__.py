"""Shared API schemas."""

from dispatch_service.core.schemas.envelope import (
    ApiResponse,
    ErrorInfo,
    ResponseMetadata,
    error_envelope,
)

__all__ = ["ApiResponse", "ErrorInfo", "ResponseMetadata", "error_envelope"]
