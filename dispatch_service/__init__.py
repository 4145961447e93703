"""Notification dispatch and delivery tracking service."""

__version__ = "1.0.0"
