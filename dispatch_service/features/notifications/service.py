"""Core notification service: the operations exposed to callers.

Wraps the dispatcher, retry and deferred schedulers, bulk processor and
analytics aggregator behind one facade used by the HTTP router.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from dispatch_service.core.services.base import BaseService
from dispatch_service.features.notifications.enums import NotificationPriority, NotificationStatus
from dispatch_service.features.notifications.exceptions import ValidationError
from dispatch_service.features.notifications.schemas import (
    DispatchRecipient,
    DispatchRequest,
    NotificationListData,
    NotificationListSummary,
    PaginationInfo,
    PurgeRequest,
    PurgeResult,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dispatch_service.features.notifications.analytics import AnalyticsAggregator
    from dispatch_service.features.notifications.bulk import BulkBatchProcessor
    from dispatch_service.features.notifications.dispatcher import NotificationDispatcher
    from dispatch_service.features.notifications.locks import RecordLocks
    from dispatch_service.features.notifications.repository import NotificationStore
    from dispatch_service.features.notifications.retry import RetryScheduler
    from dispatch_service.features.notifications.scheduler import (
        DeferredSendScheduler,
        SweepScheduler,
    )
    from dispatch_service.features.notifications.schemas import (
        AnalyticsFilter,
        AnalyticsSummary,
        BaseNotification,
        BulkNotificationRequest,
        BulkNotificationResponse,
        BulkRetryResponse,
        CostAnalysis,
        CreateNotificationRequest,
        EngagementSummary,
        FailureAnalysis,
        NotificationQuery,
        ProcessDueResult,
        UpdateNotificationRequest,
    )

UNREAD_STATUSES = (NotificationStatus.SENT, NotificationStatus.DELIVERED)
RECENT_ACTIVITY_WINDOW = timedelta(hours=24)


class NotificationService(BaseService):
    """Service for creating, tracking and maintaining notifications.

    Provides:
    - Single and bulk dispatch with per-recipient fan-out
    - Status tracking (delivery callbacks) through the lifecycle state machine
    - Manual and bulk retry, cancellation of scheduled sends
    - Analytics reports and retention purge
    """

    def __init__(
        self,
        store: NotificationStore,
        dispatcher: NotificationDispatcher,
        retry: RetryScheduler,
        deferred: DeferredSendScheduler,
        bulk: BulkBatchProcessor,
        analytics: AnalyticsAggregator,
        sweeper: SweepScheduler,
        locks: RecordLocks,
        *,
        purge_default_days: int = 30,
    ) -> None:
        super().__init__()
        self.store = store
        self.dispatcher = dispatcher
        self.retry = retry
        self.deferred = deferred
        self.bulk = bulk
        self.analytics = analytics
        self.sweeper = sweeper
        self.locks = locks
        self.purge_default_days = purge_default_days

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def create_notification(self, request: CreateNotificationRequest) -> list[BaseNotification]:
        """Create and dispatch one record per recipient per channel.

        Recipients come from ``recipient_admin_ids`` and
        ``recipient_addresses``; when both are empty the recipient is taken
        from ``metadata.admin_id`` / ``metadata.user_email``.

        Raises:
            ValidationError: No recipient could be determined
        """
        recipients = [
            DispatchRecipient(admin_id=admin_id, variables=request.template_variables)
            for admin_id in request.recipient_admin_ids
        ]
        recipients.extend(
            DispatchRecipient(address=address, variables=request.template_variables)
            for address in request.recipient_addresses
        )
        if not recipients:
            if not (request.metadata.admin_id or request.metadata.user_email):
                raise ValidationError(
                    "At least one recipient is required (recipient_admin_ids, recipient_addresses, "
                    "metadata.admin_id or metadata.user_email)"
                )
            recipients.append(
                DispatchRecipient(admin_id=request.metadata.admin_id, variables=request.template_variables)
            )

        records = await self.dispatcher.dispatch(
            DispatchRequest(
                trigger_event=request.trigger_event,
                channels=request.channels,
                priority=request.priority,
                title=request.title,
                message=request.message,
                template_id=request.template_id,
                metadata=request.metadata,
                recipients=recipients,
                scheduled_at=request.scheduled_at,
                max_retries=request.max_retries,
            )
        )
        self.logger.info(
            "Notification created",
            extra={
                "trigger_event": request.trigger_event.value,
                "channels": [c.value for c in request.channels],
                "recipients": len(recipients),
                "records": len(records),
            },
        )
        return records

    async def bulk_send(self, request: BulkNotificationRequest) -> BulkNotificationResponse:
        return await self.bulk.send_bulk(request)

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_notification(self, notification_id: str) -> BaseNotification:
        return await self.store.find_by_id(notification_id)

    async def list_notifications(
        self,
        query: NotificationQuery,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> NotificationListData:
        """Return one page of matching records with pagination and a summary.

        The summary counts are scoped by the same filters: unread (SENT or
        DELIVERED), critical priority, and created in the last 24 hours.
        """
        result = await self.store.find_all(query, limit=limit, offset=(page - 1) * limit)
        summary = await self._summary(query)
        self._lazy.debug(lambda: f"list_notifications: page {page} -> {len(result.items)}/{result.total}")
        return NotificationListData(
            notifications=list(result.items),
            pagination=PaginationInfo(
                page=page,
                limit=limit,
                total=result.total,
                total_pages=result.pages,
                has_next=result.has_next,
                has_prev=result.has_prev,
            ),
            summary=summary,
        )

    async def _summary(self, query: NotificationQuery) -> NotificationListSummary:
        unread_statuses = [s for s in UNREAD_STATUSES if not query.statuses or s in query.statuses]
        unread = (
            await self.store.count(query.model_copy(update={"statuses": unread_statuses}))
            if unread_statuses
            else 0
        )

        critical = 0
        if not query.priorities or NotificationPriority.CRITICAL in query.priorities:
            critical = await self.store.count(
                query.model_copy(update={"priorities": [NotificationPriority.CRITICAL]})
            )

        window_start = datetime.now(UTC) - RECENT_ACTIVITY_WINDOW
        if query.start_date is not None and query.start_date > window_start:
            window_start = query.start_date
        recent = await self.store.count(query.model_copy(update={"start_date": window_start}))

        return NotificationListSummary(unread_count=unread, critical_count=critical, recent_activity=recent)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def update_status(
        self, notification_id: str, request: UpdateNotificationRequest
    ) -> BaseNotification:
        """Apply a status change (e.g. a delivery callback) and/or replace metadata.

        CANCELLED is routed through the cancellation rules (PENDING and never
        attempted).

        Raises:
            NotificationNotFound: Unknown id
            InvalidStateTransition: Status change not permitted
            ValidationError: Nothing to update
        """
        if request.status is None and request.metadata is None:
            raise ValidationError("Either status or metadata must be provided")

        if request.status is NotificationStatus.CANCELLED:
            updated = await self.deferred.cancel(notification_id, request.failure_reason)
            if request.metadata is not None:
                updated = await self._replace_metadata(notification_id, request)
            return updated

        if request.status is not None:
            extra_changes = {"metadata": request.metadata} if request.metadata is not None else None
            updated = await self.dispatcher.apply_transition(
                notification_id,
                request.status,
                reason=request.failure_reason,
                extra_changes=extra_changes,
            )
            self.logger.info(
                "Notification status updated",
                extra={"notification_id": notification_id, "status": updated.status.value},
            )
            return updated

        return await self._replace_metadata(notification_id, request)

    async def _replace_metadata(
        self, notification_id: str, request: UpdateNotificationRequest
    ) -> BaseNotification:
        async with self.locks.hold(notification_id):
            current = await self.store.find_by_id(notification_id)
            return await self.store.update(
                notification_id,
                {"metadata": request.metadata, "updated_at": datetime.now(UTC)},
                expected={"status": current.status},
            )

    async def delete_notification(self, notification_id: str) -> None:
        async with self.locks.hold(notification_id):
            await self.store.delete(notification_id)
        self.retry.timers.cancel(notification_id)
        self.deferred.timers.cancel(notification_id)
        self.logger.info("Notification deleted", extra={"notification_id": notification_id})

    async def retry_notification(self, notification_id: str) -> BaseNotification:
        return await self.retry.retry_now(notification_id)

    async def bulk_retry(self, notification_ids: Sequence[str]) -> BulkRetryResponse:
        return await self.retry.retry_many(notification_ids)

    async def cancel_notification(self, notification_id: str, reason: str | None = None) -> BaseNotification:
        return await self.deferred.cancel(notification_id, reason)

    # ========================================================================
    # Analytics
    # ========================================================================

    async def get_analytics(self, analytics_filter: AnalyticsFilter) -> AnalyticsSummary:
        return await self.analytics.analyze(analytics_filter)

    async def get_engagement(self, analytics_filter: AnalyticsFilter) -> EngagementSummary:
        return await self.analytics.engagement(analytics_filter)

    async def get_failure_analysis(self, analytics_filter: AnalyticsFilter) -> FailureAnalysis:
        return await self.analytics.failure_analysis(analytics_filter)

    async def get_cost_analysis(self, analytics_filter: AnalyticsFilter) -> CostAnalysis:
        return await self.analytics.cost_analysis(analytics_filter)

    # ========================================================================
    # Maintenance
    # ========================================================================

    async def purge_old(self, request: PurgeRequest | None = None) -> PurgeResult:
        """Delete records created more than ``days_old`` days ago (or count them on dry run).

        Without a request, the configured retention (``NOTIFY_PURGE_DEFAULT_DAYS``) applies.
        """
        request = request or PurgeRequest(days_old=self.purge_default_days)
        cutoff = datetime.now(UTC) - timedelta(days=request.days_old)
        matched = await self.store.purge_before(cutoff, dry_run=request.dry_run)
        self.logger.info(
            "Notification purge",
            extra={"cutoff": cutoff.isoformat(), "matched": matched, "dry_run": request.dry_run},
        )
        return PurgeResult(
            cutoff=cutoff,
            matched=matched,
            deleted=0 if request.dry_run else matched,
            dry_run=request.dry_run,
        )

    async def process_due(self, now: datetime | None = None) -> ProcessDueResult:
        """Run the due-retry and due-scheduled sweeps once, on demand."""
        return await self.sweeper.sweep(now)


__all__ = ["NotificationService"]
