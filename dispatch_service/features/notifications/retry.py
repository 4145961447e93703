"""Retry scheduling with priority-scaled exponential backoff.

delay(n, p) = min(max_delay, base_delay * factor(p) * 2**n * jitter)

with jitter drawn uniformly from [1.0, 1.5]. Each step at least doubles
before jitter, so the delay sequence never decreases and never exceeds
``max_delay``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging
import random
from typing import TYPE_CHECKING

from dispatch_service.features.notifications.enums import NotificationPriority, NotificationStatus
from dispatch_service.features.notifications.exceptions import (
    ConcurrentUpdateConflict,
    NotificationNotFound,
    RetriesExhausted,
    ValidationError,
)
from dispatch_service.features.notifications.metrics import (
    notification_failed_total,
    notification_retries_exhausted_total,
    notification_retries_total,
)
from dispatch_service.features.notifications.schemas import (
    BaseNotification,
    BulkRetryResponse,
    BulkRetryResult,
)
from dispatch_service.features.notifications.state_machine import transition_changes
from dispatch_service.features.notifications.timers import TimerSet
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dispatch_service.core.settings.notifications import NotificationSettings
    from dispatch_service.features.notifications.dispatcher import NotificationDispatcher
    from dispatch_service.features.notifications.locks import RecordLocks
    from dispatch_service.features.notifications.repository import NotificationStore

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

PRIORITY_FACTORS: dict[NotificationPriority, float] = {
    NotificationPriority.CRITICAL: 0.25,
    NotificationPriority.URGENT: 0.5,
    NotificationPriority.HIGH: 0.75,
    NotificationPriority.NORMAL: 1.0,
    NotificationPriority.LOW: 2.0,
}

JITTER_RANGE = (1.0, 1.5)

EXHAUSTED_REASON = "retries exhausted"

MANUAL_RETRY_STATUSES = frozenset({NotificationStatus.PENDING, NotificationStatus.FAILED})


class RetryScheduler:
    """Schedules and runs retries of transiently failed notifications.

    Args:
        store: Record store
        dispatcher: Runs the send attempt of a retry
        locks: Per-record locks shared with the dispatcher
        settings: Backoff and sweep configuration
        rng: Source of jitter (seed it for reproducible delays)
    """

    def __init__(
        self,
        store: NotificationStore,
        dispatcher: NotificationDispatcher,
        locks: RecordLocks,
        settings: NotificationSettings,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.locks = locks
        self.base_delay = settings.retry_base_delay_seconds
        self.max_delay = settings.retry_max_delay_seconds
        self.batch_size = settings.sweep_batch_size
        self.rng = rng or random.Random()
        self.timers = TimerSet("retry")

    # ========================================================================
    # Backoff
    # ========================================================================

    def compute_delay(self, retry_count: int, priority: NotificationPriority) -> float:
        """Delay in seconds before retry number ``retry_count + 1``."""
        jitter = self.rng.uniform(*JITTER_RANGE)
        exponent = min(retry_count, 32)
        return min(self.max_delay, self.base_delay * PRIORITY_FACTORS[priority] * 2**exponent * jitter)

    # ========================================================================
    # Automatic retries
    # ========================================================================

    async def schedule_retry(self, notification: BaseNotification) -> BaseNotification:
        """Persist ``next_retry_at`` and arm a timer, or fail an exhausted record.

        Returns:
            The updated record (PENDING with next_retry_at, or FAILED)
        """
        if notification.retry_count >= notification.max_retries:
            return await self._exhaust(notification.id)

        delay = self.compute_delay(notification.retry_count, notification.priority)
        now = datetime.now(UTC)
        async with self.locks.hold(notification.id):
            updated = await self.store.update(
                notification.id,
                {"next_retry_at": now + timedelta(seconds=delay), "updated_at": now},
                expected={"status": NotificationStatus.PENDING, "attempts": notification.attempts},
            )
        self.timers.arm(updated.id, delay, lambda: self.attempt_retry(updated.id))
        logger.info(
            "Notification retry scheduled",
            extra={
                "notification_id": updated.id,
                "retry_count": updated.retry_count,
                "max_retries": updated.max_retries,
                "delay_seconds": round(delay, 3),
                "operation": "retry.schedule",
            },
        )
        return updated

    async def attempt_retry(self, notification_id: str, *, manual: bool = False) -> BaseNotification:
        """Run one retry: exhaust, or re-enter PENDING and attempt again.

        Automatic retries of records that are no longer PENDING (sent,
        cancelled, retried manually) are skipped.

        Raises:
            RetriesExhausted: Manual retry of a record with no retries left
            NotificationNotFound: Unknown id
        """
        async with self.locks.hold(notification_id):
            current = await self.store.find_by_id(notification_id)
            if not manual and (current.status != NotificationStatus.PENDING or current.next_retry_at is None):
                lazy_logger.debug(lambda: f"retry.skip: {notification_id} is {current.status}")
                return current
            if manual and current.status not in MANUAL_RETRY_STATUSES:
                raise ValidationError(
                    f"Notification {notification_id} cannot be retried from status {current.status.value}",
                    extra={"notification_id": notification_id, "status": current.status.value},
                )

            if current.retry_count >= current.max_retries:
                if not manual:
                    return await self._exhaust_locked(current)
                if current.status == NotificationStatus.PENDING:
                    await self._exhaust_locked(current)
                raise RetriesExhausted(current.id, current.retry_count, current.max_retries)

            now = datetime.now(UTC)
            reentered = await self.store.update(
                current.id,
                {
                    "status": NotificationStatus.PENDING,
                    "retry_count": current.retry_count + 1,
                    "next_retry_at": None,
                    "updated_at": now,
                },
                expected={"status": current.status, "retry_count": current.retry_count},
            )

        notification_retries_total.labels(
            channel=reentered.channel.value, trigger="manual" if manual else "automatic"
        ).inc()
        logger.info(
            "Retrying notification",
            extra={
                "notification_id": reentered.id,
                "retry_count": reentered.retry_count,
                "manual": manual,
                "operation": "retry.attempt",
            },
        )
        return await self.dispatcher.attempt(reentered)

    async def process_due(self, now: datetime | None = None) -> int:
        """Run retries whose ``next_retry_at`` has passed and whose timer was lost.

        Returns:
            Number of records retried
        """
        now = now or datetime.now(UTC)
        due = await self.store.list_due_retries(now, self.batch_size)
        processed = 0
        for notification in due:
            if self.timers.is_armed(notification.id):
                continue
            try:
                await self.attempt_retry(notification.id)
            except (ConcurrentUpdateConflict, NotificationNotFound) as exc:
                lazy_logger.debug(lambda exc=exc: f"retry.sweep: skipped {exc.detail}")
                continue
            processed += 1
        if processed:
            logger.info("Processed due retries", extra={"count": processed, "operation": "retry.process_due"})
        return processed

    # ========================================================================
    # Manual retries
    # ========================================================================

    async def retry_now(self, notification_id: str) -> BaseNotification:
        """Administrator retry: re-attempt immediately.

        Allowed for PENDING and FAILED records, subject to the same exhaustion
        check as automatic retries.

        Raises:
            ValidationError: Record status does not allow a retry
            RetriesExhausted: No retries left
        """
        current = await self.store.find_by_id(notification_id)
        if current.status not in MANUAL_RETRY_STATUSES:
            raise ValidationError(
                f"Notification {notification_id} cannot be retried from status {current.status.value}",
                extra={"notification_id": notification_id, "status": current.status.value},
            )
        if current.retry_count >= current.max_retries:
            if current.status == NotificationStatus.PENDING:
                await self._exhaust(current.id)
            raise RetriesExhausted(current.id, current.retry_count, current.max_retries)

        self.timers.cancel(notification_id)
        return await self.attempt_retry(notification_id, manual=True)

    async def retry_many(self, notification_ids: Sequence[str]) -> BulkRetryResponse:
        """Retry each id independently; one failure never aborts the rest."""
        results: list[BulkRetryResult] = []
        for notification_id in notification_ids:
            try:
                updated = await self.retry_now(notification_id)
            except (ValidationError, RetriesExhausted, NotificationNotFound, ConcurrentUpdateConflict) as exc:
                results.append(BulkRetryResult(notification_id=notification_id, success=False, error=exc.detail))
                continue
            results.append(
                BulkRetryResult(
                    notification_id=notification_id,
                    success=updated.status != NotificationStatus.FAILED,
                    status=updated.status,
                    error=updated.failure_reason if updated.status == NotificationStatus.FAILED else None,
                )
            )
        successful = sum(1 for result in results if result.success)
        return BulkRetryResponse(
            total_requested=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def wait_idle(self) -> None:
        """Wait for every armed retry timer (and the retries they arm) to finish."""
        await self.timers.wait_idle()

    async def shutdown(self) -> None:
        """Cancel pending retry timers; the sweep recovers them after restart."""
        await self.timers.shutdown()

    # ========================================================================
    # Internals
    # ========================================================================

    async def _exhaust(self, notification_id: str) -> BaseNotification:
        async with self.locks.hold(notification_id):
            current = await self.store.find_by_id(notification_id)
            return await self._exhaust_locked(current)

    async def _exhaust_locked(self, current: BaseNotification) -> BaseNotification:
        changes = transition_changes(
            current.id,
            current.status,
            NotificationStatus.FAILED,
            now=datetime.now(UTC),
            reason=EXHAUSTED_REASON,
        )
        updated = await self.store.update(current.id, changes, expected={"status": current.status})
        notification_retries_exhausted_total.labels(channel=current.channel.value).inc()
        notification_failed_total.labels(channel=current.channel.value, reason="exhausted").inc()
        logger.warning(
            "Notification retries exhausted",
            extra={
                "notification_id": current.id,
                "retry_count": current.retry_count,
                "max_retries": current.max_retries,
                "last_error": current.failure_reason,
                "operation": "retry.exhaust",
            },
        )
        return updated


__all__ = [
    "EXHAUSTED_REASON",
    "JITTER_RANGE",
    "PRIORITY_FACTORS",
    "RetryScheduler",
]
