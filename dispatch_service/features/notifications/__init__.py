"""Multi-channel notification dispatch with delivery tracking.

This feature turns a business event into one notification record per
recipient per channel and tracks each record through its delivery
lifecycle:

- Dispatch: template rendering (Jinja2), address resolution, fan-out
- Channels: pluggable senders for email, Slack, SMS, in-app, push, webhook
- Lifecycle: PENDING -> SENT -> DELIVERED -> OPENED -> CLICKED, with
  FAILED, BOUNCED, UNSUBSCRIBED and CANCELLED outcomes
- Retries: priority-scaled exponential backoff with jitter
- Bulk: one template to many recipients with partial-failure results
- Analytics: delivery, engagement, failure and cost reports

Architecture:
    - Container: builds stores, senders and schedulers from settings
    - Service: NotificationService facade used by the router
    - Dispatcher / RetryScheduler / DeferredSendScheduler: send pipeline
    - Stores: in-memory or SQLAlchemy behind the NotificationStore protocol

Example:
    ```python
    container = ServiceContainer.build(get_settings())
    records = await container.service.create_notification(
        CreateNotificationRequest(
            trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
            channels=[NotificationChannel.EMAIL],
            title="Payment failed",
            message="Your card was declined",
            recipient_addresses=["user@example.com"],
        )
    )
    ```
"""

from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationFrequency,
    NotificationPriority,
    NotificationStatus,
    NotificationTriggerEvent,
)

__all__ = [
    "NotificationChannel",
    "NotificationFrequency",
    "NotificationPriority",
    "NotificationStatus",
    "NotificationTriggerEvent",
]
