"""SQLAlchemy models for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from dispatch_service.core.database import Base, StringUUIDv7PKMixin, TimestampMixin, UTCDateTime

# JSONB on PostgreSQL, JSON text elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class NotificationRecord(Base, StringUUIDv7PKMixin, TimestampMixin):
    """One message on one channel to one recipient.

    Status changes are written with conditional updates (see
    ``BaseRepository.update_where``) so concurrent writers cannot overwrite
    each other's transitions.

    Indexes:
        - (status, next_retry_at) for the due-retry sweep
        - (status, scheduled_at) for the due-scheduled sweep
        - (channel, created_at) for analytics
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_status_next_retry_at", "status", "next_retry_at"),
        Index("ix_notifications_status_scheduled_at", "status", "scheduled_at"),
        Index("ix_notifications_channel_created_at", "channel", "created_at"),
    )

    trigger_event: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="NORMAL")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text(), nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="Event metadata used for rendering",
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING", index=True)
    recipient_admin_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    recipient_address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    template_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    channel_payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Rendered channel extras (html body, Slack overrides, webhook payload)",
    )

    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(Text(), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer(), nullable=False, default=3)
    attempts: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationRecord(id={self.id}, channel={self.channel}, status={self.status})>"


class NotificationTemplateRecord(Base, StringUUIDv7PKMixin, TimestampMixin):
    """Reusable multi-channel template.

    Each channel sub-template is stored as one JSON document so that the
    template schema can evolve without column migrations.
    """

    __tablename__ = "notification_templates"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    trigger_event: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    channels: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    email: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    slack: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    sms: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    in_app: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    push: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    webhook: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    default_variables: Mapped[dict[str, str]] = mapped_column(JSONType, nullable=False, default=dict)
    frequency: Mapped[str] = mapped_column(String(32), nullable=False, default="IMMEDIATE")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="NORMAL")
    is_active: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True, index=True)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationTemplateRecord(id={self.id}, name={self.name})>"


__all__ = ["JSONType", "NotificationRecord", "NotificationTemplateRecord"]
