"""Notification dispatcher: render, fan out, persist, send, classify.

One record is created per recipient per channel. Records are persisted in
PENDING before any send attempt, and every status change is persisted
before it is reported to the caller.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import logging
import time
from typing import TYPE_CHECKING, Any

from dispatch_service.core.database import uuid7_str
from dispatch_service.features.notifications.channels.base import SendResult, SendStatus
from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationFrequency,
    NotificationStatus,
)
from dispatch_service.features.notifications.exceptions import (
    PermanentSendFailure,
    RenderError,
    TransientSendFailure,
    ValidationError,
)
from dispatch_service.features.notifications.metrics import (
    notification_created_total,
    notification_failed_total,
    notification_send_duration_seconds,
    notification_sent_total,
    notification_status_transitions_total,
)
from dispatch_service.features.notifications.schemas import (
    BaseNotification,
    RenderedContent,
)
from dispatch_service.features.notifications.state_machine import transition_changes
from dispatch_service.features.notifications.templates.conditions import evaluate_conditions
from dispatch_service.features.notifications.templates.renderer import resolve_variables
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from dispatch_service.core.settings.notifications import NotificationSettings
    from dispatch_service.features.notifications.channels.base import ChannelSender
    from dispatch_service.features.notifications.channels.registry import ChannelRegistry
    from dispatch_service.features.notifications.locks import RecordLocks
    from dispatch_service.features.notifications.repository import NotificationStore
    from dispatch_service.features.notifications.schemas import (
        DispatchRecipient,
        DispatchRequest,
        NotificationMetadata,
        NotificationTemplate,
    )
    from dispatch_service.features.notifications.templates.renderer import TemplateRenderer
    from dispatch_service.features.notifications.templates.store import TemplateStore

    NotificationHook = Callable[[BaseNotification], Awaitable[object]]

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def resolve_address(
    channel: NotificationChannel,
    recipient: DispatchRecipient,
    metadata: NotificationMetadata,
    content: RenderedContent,
) -> str | None:
    """Pick the delivery address of one recipient on one channel.

    Order: the recipient's per-channel address, the admin id (in-app only),
    the recipient's generic address, then channel fallbacks from metadata
    (user_email for email, admin/user id for in-app) or rendered content
    (Slack channel override).
    """
    address = recipient.addresses.get(channel)
    if address:
        return address
    if channel is NotificationChannel.IN_APP and recipient.admin_id:
        return recipient.admin_id
    if recipient.address:
        return recipient.address
    match channel:
        case NotificationChannel.EMAIL:
            return metadata.user_email
        case NotificationChannel.IN_APP:
            return metadata.admin_id or metadata.user_id
        case NotificationChannel.SLACK:
            return content.extras.get("channel")
    return None


class NotificationDispatcher:
    """Turns a DispatchRequest into persisted, attempted notification records.

    Transient failures are handed to ``on_transient`` (the retry scheduler)
    and future ``scheduled_at`` records to ``on_deferred`` (the deferred send
    scheduler); both hooks are bound by the service container.
    """

    def __init__(
        self,
        store: NotificationStore,
        templates: TemplateStore,
        registry: ChannelRegistry,
        renderer: TemplateRenderer,
        locks: RecordLocks,
        settings: NotificationSettings,
    ) -> None:
        self.store = store
        self.templates = templates
        self.registry = registry
        self.renderer = renderer
        self.locks = locks
        self.settings = settings
        self.on_transient: NotificationHook | None = None
        self.on_deferred: NotificationHook | None = None

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def dispatch(self, request: DispatchRequest) -> list[BaseNotification]:
        """Fan a request out to one record per recipient per channel.

        Validation happens before any record is created. Channels of one
        dispatch run concurrently; a failure on one never blocks the others.

        Args:
            request: Event, channels, recipients and content source

        Returns:
            Created records in (recipient, channel) order, in their state
            after the first attempt (or PENDING when deferred)

        Raises:
            ValidationError: Request is malformed or the template unusable
            TemplateNotFound: ``template_id`` is unknown
            RenderError: Every channel failed to render
        """
        template = await self._validate(request)

        jobs = [
            self._dispatch_one(request, template, recipient, channel)
            for recipient in request.recipients
            for channel in request.channels
        ]
        outcomes = await asyncio.gather(*jobs, return_exceptions=True)

        created: list[BaseNotification] = []
        render_errors: list[RenderError] = []
        for outcome in outcomes:
            if isinstance(outcome, RenderError):
                render_errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                created.append(outcome)

        if render_errors:
            if not created:
                raise render_errors[0]
            for error in render_errors:
                notification_failed_total.labels(channel=error.extra.get("channel", "unknown"), reason="render").inc()
                logger.warning(
                    "Channel skipped: content failed to render",
                    extra={
                        "trigger_event": request.trigger_event.value,
                        "template_id": request.template_id,
                        "error": error.detail,
                        "operation": "dispatcher.dispatch",
                    },
                )

        logger.info(
            "Notification dispatched",
            extra={
                "trigger_event": request.trigger_event.value,
                "records": len(created),
                "batch_id": request.batch_id,
                "operation": "dispatcher.dispatch",
            },
        )
        return created

    async def _validate(self, request: DispatchRequest) -> NotificationTemplate | None:
        if not request.channels:
            raise ValidationError("At least one channel is required")
        if not request.recipients:
            raise ValidationError("At least one recipient is required")
        if len(set(request.channels)) != len(request.channels):
            raise ValidationError("Channels must not contain duplicates")

        if request.template_id is None:
            if not request.title or not request.message:
                raise ValidationError("Either template_id or both title and message are required")
            return None

        template = await self.templates.get(request.template_id)
        if not template.is_active:
            raise ValidationError(
                f"Template {template.id} is inactive", extra={"template_id": template.id}
            )
        if template.frequency == NotificationFrequency.DISABLED:
            raise ValidationError(
                f"Template {template.id} is disabled", extra={"template_id": template.id}
            )
        if template.conditions:
            variables = resolve_variables(template, request.metadata)
            if not evaluate_conditions(template.conditions, variables):
                raise ValidationError(
                    f"Template {template.name} ({template.id}) is not applicable to this event",
                    extra={"template_id": template.id},
                )
        return template

    def _content(
        self,
        request: DispatchRequest,
        template: NotificationTemplate | None,
        recipient: DispatchRecipient,
        channel: NotificationChannel,
    ) -> RenderedContent:
        if template is not None:
            variables = resolve_variables(template, request.metadata, recipient.variables)
            return self.renderer.render(template, channel, variables)

        message = request.message or ""
        truncated = False
        if channel is NotificationChannel.SMS:
            message, truncated = self.renderer.apply_sms_limit(message, self.settings.sms_default_max_length)
        return RenderedContent(
            channel=channel,
            title=request.title or "",
            message=message,
            truncated=truncated,
        )

    async def _dispatch_one(
        self,
        request: DispatchRequest,
        template: NotificationTemplate | None,
        recipient: DispatchRecipient,
        channel: NotificationChannel,
    ) -> BaseNotification:
        content = self._content(request, template, recipient, channel)
        address = resolve_address(channel, recipient, request.metadata, content)
        now = utcnow()

        notification = BaseNotification(
            id=uuid7_str(),
            trigger_event=request.trigger_event,
            channel=channel,
            priority=request.priority,
            title=content.title[:255],
            message=content.message,
            metadata=request.metadata,
            status=NotificationStatus.PENDING,
            recipient_admin_id=recipient.admin_id or request.metadata.admin_id,
            recipient_address=address,
            template_id=template.id if template else None,
            batch_id=request.batch_id,
            channel_payload=content.extras,
            created_at=now,
            updated_at=now,
            scheduled_at=request.scheduled_at,
            retry_count=0,
            max_retries=(
                request.max_retries if request.max_retries is not None else self.settings.default_max_retries
            ),
        )
        notification = await self.store.create(notification)
        notification_created_total.labels(channel=channel.value, trigger_event=request.trigger_event.value).inc()
        lazy_logger.debug(lambda: f"dispatcher.create: {notification.id} {channel.value} -> {address}")

        if address is None:
            notification_failed_total.labels(channel=channel.value, reason="no_address").inc()
            return await self.apply_transition(
                notification.id,
                NotificationStatus.FAILED,
                reason=f"no address for channel {channel.value}",
            )

        if request.scheduled_at is not None and request.scheduled_at > now:
            if self.on_deferred is not None:
                await self.on_deferred(notification)
            return notification

        return await self.attempt(notification)

    # ========================================================================
    # Send attempts
    # ========================================================================

    async def attempt(self, notification: BaseNotification) -> BaseNotification:
        """Claim and run one send attempt for a PENDING record.

        The claim is a conditional update (status PENDING, ``attempts``
        unchanged) incrementing ``attempts``, so two workers never send the
        same attempt.

        Returns:
            The record after the attempt (SENT, FAILED or still PENDING)

        Raises:
            ConcurrentUpdateConflict: Another worker claimed the attempt first
        """
        async with self.locks.hold(notification.id):
            now = utcnow()
            claimed = await self.store.update(
                notification.id,
                {"attempts": notification.attempts + 1, "last_attempt_at": now, "updated_at": now},
                expected={"status": NotificationStatus.PENDING, "attempts": notification.attempts},
            )

            result = await self._send(claimed)
            now = utcnow()
            guard = {"status": NotificationStatus.PENDING, "attempts": claimed.attempts}

            if result.status is SendStatus.ACCEPTED:
                changes = transition_changes(claimed.id, claimed.status, NotificationStatus.SENT, now=now)
                changes.update(
                    provider_message_id=result.provider_message_id,
                    failure_reason=None,
                    next_retry_at=None,
                )
                updated = await self.store.update(claimed.id, changes, expected=guard)
                notification_sent_total.labels(channel=claimed.channel.value).inc()
                self._count_transition(NotificationStatus.PENDING, NotificationStatus.SENT)
                logger.info(
                    "Notification sent",
                    extra={
                        "notification_id": claimed.id,
                        "channel": claimed.channel.value,
                        "provider_message_id": result.provider_message_id,
                        "attempt": claimed.attempts,
                        "operation": "dispatcher.attempt",
                    },
                )
                return updated

            if result.status is SendStatus.PERMANENT:
                changes = transition_changes(
                    claimed.id, claimed.status, NotificationStatus.FAILED, now=now, reason=result.error
                )
                updated = await self.store.update(claimed.id, changes, expected=guard)
                notification_failed_total.labels(channel=claimed.channel.value, reason="permanent").inc()
                self._count_transition(NotificationStatus.PENDING, NotificationStatus.FAILED)
                logger.warning(
                    "Notification failed permanently",
                    extra={
                        "notification_id": claimed.id,
                        "channel": claimed.channel.value,
                        "error": result.error,
                        "operation": "dispatcher.attempt",
                    },
                )
                return updated

            updated = await self.store.update(
                claimed.id,
                {"failure_reason": result.error, "updated_at": now},
                expected=guard,
            )
            notification_failed_total.labels(channel=claimed.channel.value, reason="transient").inc()
            logger.warning(
                "Notification send failed, will retry",
                extra={
                    "notification_id": claimed.id,
                    "channel": claimed.channel.value,
                    "error": result.error,
                    "retry_count": claimed.retry_count,
                    "operation": "dispatcher.attempt",
                },
            )

        if self.on_transient is not None:
            scheduled = await self.on_transient(updated)
            if isinstance(scheduled, BaseNotification):
                return scheduled
        return updated

    async def _send(self, notification: BaseNotification) -> SendResult:
        """Invoke the channel sender under the send timeout and classify the outcome."""
        content = RenderedContent(
            channel=notification.channel,
            title=notification.title,
            message=notification.message,
            extras=notification.channel_payload,
        )
        channel = notification.channel
        start = time.perf_counter()
        try:
            sender: ChannelSender = self.registry.get(channel)
            async with asyncio.timeout(self.settings.send_timeout_seconds):
                result = await sender.send(
                    content,
                    notification.recipient_address or "",
                    notification_id=notification.id,
                )
        except TimeoutError:
            notification_failed_total.labels(channel=channel.value, reason="timeout").inc()
            result = SendResult.transient(f"send timed out after {self.settings.send_timeout_seconds}s")
        except TransientSendFailure as exc:
            result = SendResult.transient(exc.detail)
        except PermanentSendFailure as exc:
            result = SendResult.permanent(exc.detail)
        except Exception as exc:
            logger.exception(
                "Channel sender raised unexpectedly",
                extra={"notification_id": notification.id, "channel": channel.value, "operation": "dispatcher.send"},
            )
            result = SendResult.transient(f"{type(exc).__name__}: {exc}")
        finally:
            notification_send_duration_seconds.labels(channel=channel.value).observe(time.perf_counter() - start)
        return result

    # ========================================================================
    # Transitions
    # ========================================================================

    async def apply_transition(
        self,
        notification_id: str,
        target: NotificationStatus,
        *,
        reason: str | None = None,
        extra_changes: dict[str, Any] | None = None,
    ) -> BaseNotification:
        """Validate and persist one lifecycle transition.

        Raises:
            NotificationNotFound: Unknown id
            InvalidStateTransition: Transition not permitted; record unchanged
            ConcurrentUpdateConflict: Status changed by another writer
        """
        async with self.locks.hold(notification_id):
            current = await self.store.find_by_id(notification_id)
            changes = transition_changes(notification_id, current.status, target, now=utcnow(), reason=reason)
            changes.update(extra_changes or {})
            updated = await self.store.update(notification_id, changes, expected={"status": current.status})
        self._count_transition(current.status, target)
        lazy_logger.debug(lambda: f"dispatcher.transition: {notification_id} {current.status} -> {target}")
        return updated

    @staticmethod
    def _count_transition(source: NotificationStatus, target: NotificationStatus) -> None:
        notification_status_transitions_total.labels(from_status=source.value, to_status=target.value).inc()


__all__ = ["NotificationDispatcher", "resolve_address"]
