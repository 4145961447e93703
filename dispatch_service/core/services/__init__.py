"""Core service base classes."""

from dispatch_service.core.services.base import BaseService

__all__ = ["BaseService"]
