"""Pydantic schemas for the notifications feature.

Domain records (``BaseNotification``, ``NotificationTemplate``) and the
request/response payloads of the service facade and HTTP API.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator

from dispatch_service.features.notifications.enums import (
    ConditionOperator,
    LogicalOperator,
    NotificationChannel,
    NotificationFrequency,
    NotificationPriority,
    NotificationStatus,
    NotificationTriggerEvent,
)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# ============================================================================
# Metadata
# ============================================================================


class NotificationMetadata(BaseModel):
    """Contextual data attached to a notification.

    Fields are flattened into template variables (see ``as_variables``).
    """

    resource_type: str | None = None
    resource_id: str | None = None
    user_id: str | None = None
    user_email: str | None = None
    user_name: str | None = None
    admin_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    city: str | None = None
    date_time: datetime | None = None
    action_url: str | None = None
    action_text: str | None = None
    additional_data: dict[str, Any] = Field(default_factory=dict)
    template_variables: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def as_variables(self) -> dict[str, str]:
        """Flatten into template variables.

        Order of precedence (later wins): scalar fields, ``additional_data``,
        ``template_variables``.
        """
        variables: dict[str, str] = {}
        for name, value in self:
            if name in ("additional_data", "template_variables") or value is None:
                continue
            variables[name] = value.isoformat() if isinstance(value, datetime) else str(value)
        variables.update({key: str(value) for key, value in self.additional_data.items()})
        variables.update(self.template_variables)
        return variables


# ============================================================================
# Templates
# ============================================================================


class EmailTemplate(BaseModel):
    """Email sub-template."""

    subject: str = Field(..., min_length=1, max_length=500)
    html_content: str | None = None
    text_content: str = Field(..., min_length=1)
    from_name: str | None = None
    from_email: str | None = None
    reply_to: str | None = None
    variables: list[str] = Field(default_factory=list)


class SlackTemplate(BaseModel):
    """Slack sub-template."""

    channel: str | None = None
    message: str = Field(..., min_length=1)
    icon_emoji: str | None = None
    username: str | None = None
    variables: list[str] = Field(default_factory=list)


class SmsTemplate(BaseModel):
    """SMS sub-template. ``max_length`` defaults to a single 160-character segment."""

    message: str = Field(..., min_length=1)
    max_length: int = Field(default=160, ge=1, le=1600)
    variables: list[str] = Field(default_factory=list)


class InAppTemplate(BaseModel):
    """In-app inbox sub-template."""

    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    icon: str | None = None
    action_text: str | None = None
    action_url: str | None = None
    category: str | None = None
    variables: list[str] = Field(default_factory=list)


class PushTemplate(BaseModel):
    """Mobile push sub-template."""

    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1)
    variables: list[str] = Field(default_factory=list)


class WebhookTemplate(BaseModel):
    """Outbound webhook sub-template. String values in ``payload`` are rendered."""

    payload: dict[str, Any] = Field(..., min_length=1)
    variables: list[str] = Field(default_factory=list)


class NotificationCondition(BaseModel):
    """Predicate over the flattened variable map deciding template applicability."""

    field: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: Any
    logical_operator: LogicalOperator = LogicalOperator.AND


class _TemplateContent(BaseModel):
    """Content shared by template create payloads and stored templates."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    trigger_event: NotificationTriggerEvent
    channels: list[NotificationChannel] = Field(..., min_length=1)
    email: EmailTemplate | None = None
    slack: SlackTemplate | None = None
    sms: SmsTemplate | None = None
    in_app: InAppTemplate | None = None
    push: PushTemplate | None = None
    webhook: WebhookTemplate | None = None
    default_variables: dict[str, str] = Field(default_factory=dict)
    frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE
    priority: NotificationPriority = NotificationPriority.NORMAL
    is_active: bool = True
    conditions: list[NotificationCondition] = Field(default_factory=list)

    @field_validator("channels")
    @classmethod
    def channels_unique(cls, v: list[NotificationChannel]) -> list[NotificationChannel]:
        """Reject duplicate channels."""
        if len(set(v)) != len(v):
            msg = "channels must not contain duplicates"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def channels_cover_sub_templates(self) -> _TemplateContent:
        """Every populated sub-template must be listed in ``channels``."""
        undeclared = [
            channel.value
            for channel in NotificationChannel
            if getattr(self, channel.template_field) is not None and channel not in self.channels
        ]
        if undeclared:
            msg = f"sub-templates present for channels not listed in channels: {', '.join(undeclared)}"
            raise ValueError(msg)
        return self

    def sub_template(self, channel: NotificationChannel) -> BaseModel | None:
        """Return the sub-template for ``channel`` (None if absent)."""
        return getattr(self, channel.template_field)


class NotificationTemplateCreate(_TemplateContent):
    """Payload for creating a template."""


class NotificationTemplateUpdate(BaseModel):
    """Partial template update. Omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    channels: list[NotificationChannel] | None = None
    email: EmailTemplate | None = None
    slack: SlackTemplate | None = None
    sms: SmsTemplate | None = None
    in_app: InAppTemplate | None = None
    push: PushTemplate | None = None
    webhook: WebhookTemplate | None = None
    default_variables: dict[str, str] | None = None
    frequency: NotificationFrequency | None = None
    priority: NotificationPriority | None = None
    is_active: bool | None = None
    conditions: list[NotificationCondition] | None = None


class NotificationTemplate(_TemplateContent):
    """Stored template."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TemplateTestRequest(BaseModel):
    """Render a template without sending, or send to a test address."""

    channel: NotificationChannel
    variables: dict[str, str] = Field(default_factory=dict)
    metadata: NotificationMetadata = Field(default_factory=NotificationMetadata)
    test_address: str | None = Field(
        default=None,
        description="When set, the rendered content is also handed to the channel sender",
    )


class RenderedContent(BaseModel):
    """Channel-ready content produced by the renderer.

    ``extras`` carries channel-specific fields: html body and sender identity
    for email, icon/username/channel for Slack, action fields for in-app,
    the rendered payload for webhooks.
    """

    channel: NotificationChannel
    title: str
    message: str
    extras: dict[str, Any] = Field(default_factory=dict)
    truncated: bool = False


class TemplateTestResponse(BaseModel):
    """Result of a template test."""

    rendered: RenderedContent
    sent: bool = False
    provider_message_id: str | None = None
    error: str | None = None


# ============================================================================
# Notification records
# ============================================================================


class BaseNotification(BaseModel):
    """One message on one channel to one recipient, tracked through its lifecycle."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    trigger_event: NotificationTriggerEvent
    channel: NotificationChannel
    priority: NotificationPriority = NotificationPriority.NORMAL
    title: str
    message: str
    metadata: NotificationMetadata = Field(default_factory=NotificationMetadata)
    status: NotificationStatus = NotificationStatus.PENDING
    recipient_admin_id: str | None = None
    recipient_address: str | None = None
    template_id: str | None = None
    batch_id: str | None = None
    channel_payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    opened_at: datetime | None = None
    clicked_at: datetime | None = None
    failure_reason: str | None = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    attempts: int = Field(default=0, ge=0)
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    provider_message_id: str | None = None

    @model_validator(mode="after")
    def retry_count_within_budget(self) -> BaseNotification:
        """retry_count never exceeds max_retries."""
        if self.retry_count > self.max_retries:
            msg = "retry_count must not exceed max_retries"
            raise ValueError(msg)
        return self

    @property
    def is_retry_exhausted(self) -> bool:
        """FAILED with every retry used: never retried again."""
        return self.status == NotificationStatus.FAILED and self.retry_count >= self.max_retries


class DispatchRecipient(BaseModel):
    """Addressee of a dispatch.

    ``addresses`` gives per-channel addresses; ``address`` applies to any
    channel without one. ``variables`` override template and metadata values.
    """

    admin_id: str | None = None
    address: str | None = None
    addresses: dict[NotificationChannel, str] = Field(default_factory=dict)
    variables: dict[str, str] = Field(default_factory=dict)

    def label(self) -> str:
        """Readable identification for bulk results and logs."""
        return self.address or self.admin_id or next(iter(self.addresses.values()), "unknown")


class DispatchRequest(BaseModel):
    """Input of the dispatcher: a business event to fan out."""

    trigger_event: NotificationTriggerEvent
    channels: list[NotificationChannel] = Field(..., min_length=1)
    priority: NotificationPriority = NotificationPriority.NORMAL
    title: str | None = None
    message: str | None = None
    template_id: str | None = None
    metadata: NotificationMetadata = Field(default_factory=NotificationMetadata)
    recipients: list[DispatchRecipient] = Field(..., min_length=1)
    scheduled_at: AwareDatetime | None = None
    max_retries: int | None = Field(default=None, ge=0, le=20)
    batch_id: str | None = None


class CreateNotificationRequest(BaseModel):
    """API payload for creating and dispatching a notification."""

    trigger_event: NotificationTriggerEvent
    channels: list[NotificationChannel] = Field(..., min_length=1)
    priority: NotificationPriority = NotificationPriority.NORMAL
    title: str | None = Field(default=None, max_length=255)
    message: str | None = None
    metadata: NotificationMetadata = Field(default_factory=NotificationMetadata)
    recipient_admin_ids: list[str] = Field(default_factory=list)
    recipient_addresses: list[str] = Field(default_factory=list)
    scheduled_at: AwareDatetime | None = None
    template_id: str | None = None
    template_variables: dict[str, str] = Field(default_factory=dict)
    max_retries: int | None = Field(default=None, ge=0, le=20)


class UpdateNotificationRequest(BaseModel):
    """Status change and/or metadata replacement for one record."""

    status: NotificationStatus | None = None
    failure_reason: str | None = Field(default=None, max_length=1000)
    metadata: NotificationMetadata | None = None


class CancelNotificationRequest(BaseModel):
    """Cancel a scheduled, never-attempted notification."""

    reason: str | None = Field(default=None, max_length=1000)


class NotificationQuery(BaseModel):
    """Filters for listing notifications. Empty lists mean no filter."""

    channels: list[NotificationChannel] = Field(default_factory=list)
    trigger_events: list[NotificationTriggerEvent] = Field(default_factory=list)
    statuses: list[NotificationStatus] = Field(default_factory=list)
    priorities: list[NotificationPriority] = Field(default_factory=list)
    start_date: datetime | None = None
    end_date: datetime | None = None
    recipient_admin_id: str | None = None
    batch_id: str | None = None
    template_id: str | None = None
    sort_by: Literal["created_at", "sent_at", "priority"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class NotificationListSummary(BaseModel):
    """Aggregate counts returned with a notification listing."""

    unread_count: int = 0
    critical_count: int = 0
    recent_activity: int = 0


class PaginationInfo(BaseModel):
    """Page position of a listing."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class NotificationListData(BaseModel):
    """Listing payload."""

    notifications: list[BaseNotification]
    pagination: PaginationInfo
    summary: NotificationListSummary


# ============================================================================
# Bulk
# ============================================================================


class BulkNotificationRecipient(BaseModel):
    """One recipient of a bulk send."""

    admin_id: str | None = None
    address: str | None = Field(default=None, description="Channel address (email, phone, Slack channel, URL)")
    channel: NotificationChannel | None = Field(
        default=None, description="Defaults to the template's first channel"
    )
    template_variables: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def has_identity(self) -> BulkNotificationRecipient:
        """A recipient needs an admin id or an address."""
        if not self.admin_id and not self.address:
            msg = "recipient requires admin_id or address"
            raise ValueError(msg)
        return self


class BulkNotificationRequest(BaseModel):
    """Template-based send to many recipients."""

    template_id: str = Field(..., min_length=1)
    recipients: list[BulkNotificationRecipient] = Field(..., min_length=1)
    scheduled_at: AwareDatetime | None = None
    priority: NotificationPriority | None = None
    metadata: NotificationMetadata = Field(default_factory=NotificationMetadata)
    max_retries: int | None = Field(default=None, ge=0, le=20)


class BulkNotificationResult(BaseModel):
    """Outcome for one requested recipient."""

    recipient: str
    notification_id: str | None = None
    success: bool
    error: str | None = None


class BulkNotificationResponse(BaseModel):
    """Aggregate outcome of a bulk send. ``successful + failed == total_requested``."""

    batch_id: str
    total_requested: int
    successful: int
    failed: int
    results: list[BulkNotificationResult]
    estimated_cost: float = 0.0


class BulkRetryRequest(BaseModel):
    """Retry many notifications by id."""

    notification_ids: list[str] = Field(..., min_length=1, max_length=1000)


class BulkRetryResult(BaseModel):
    """Outcome of retrying one notification."""

    notification_id: str
    success: bool
    status: NotificationStatus | None = None
    error: str | None = None


class BulkRetryResponse(BaseModel):
    """Aggregate outcome of a bulk retry."""

    total_requested: int
    successful: int
    failed: int
    results: list[BulkRetryResult]


# ============================================================================
# Analytics
# ============================================================================


class AnalyticsFilter(BaseModel):
    """Time range and optional dimensions for analytics."""

    start: datetime
    end: datetime
    channels: list[NotificationChannel] = Field(default_factory=list)
    events: list[NotificationTriggerEvent] = Field(default_factory=list)


class ChannelPerformance(BaseModel):
    """Per-channel delivery counts."""

    channel: NotificationChannel
    total: int = 0
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    delivery_rate: float = 0.0
    average_delivery_time_seconds: float = 0.0


class EventPerformance(BaseModel):
    """Per-trigger-event delivery counts."""

    event: NotificationTriggerEvent
    total: int = 0
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    top_channel: NotificationChannel | None = None


class TrendPoint(BaseModel):
    """Notification volume for one UTC day."""

    date: str
    count: int


class AnalyticsSummary(BaseModel):
    """Delivery analytics over a filter."""

    total_notifications: int = 0
    total_sent: int = 0
    total_delivered: int = 0
    total_failed: int = 0
    delivery_rate: float = 0.0
    average_delivery_time_seconds: float = 0.0
    channel_performance: list[ChannelPerformance] = Field(default_factory=list)
    event_performance: list[EventPerformance] = Field(default_factory=list)
    trends: list[TrendPoint] = Field(default_factory=list)


class EngagementSummary(BaseModel):
    """Open/click/unsubscribe rates over delivered notifications."""

    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    unsubscribed: int = 0
    open_rate: float = 0.0
    click_rate: float = 0.0
    unsubscribe_rate: float = 0.0


class FailureReasonCount(BaseModel):
    """Count of one failure reason."""

    reason: str
    count: int


class FailureAnalysis(BaseModel):
    """Breakdown of FAILED and BOUNCED notifications."""

    total_failed: int = 0
    failure_rate: float = 0.0
    top_failure_reasons: list[FailureReasonCount] = Field(default_factory=list)
    failures_by_channel: dict[NotificationChannel, int] = Field(default_factory=dict)
    pending_retries: int = 0


class ChannelCost(BaseModel):
    """Estimated spend on one channel."""

    channel: NotificationChannel
    sent: int
    unit_cost: float
    cost: float


class CostAnalysis(BaseModel):
    """Estimated spend over the filter."""

    total_cost: float = 0.0
    cost_per_notification: float = 0.0
    by_channel: list[ChannelCost] = Field(default_factory=list)


# ============================================================================
# Maintenance
# ============================================================================


class PurgeRequest(BaseModel):
    """Delete records older than ``days_old`` days."""

    days_old: int = Field(default=30, ge=1, le=3650)
    dry_run: bool = False


class PurgeResult(BaseModel):
    """Outcome of a purge."""

    cutoff: datetime
    matched: int
    deleted: int
    dry_run: bool


class ProcessDueResult(BaseModel):
    """Outcome of one sweep over due retries and scheduled sends."""

    retries_processed: int = 0
    scheduled_processed: int = 0
