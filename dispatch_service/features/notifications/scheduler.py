"""Deferred sends, cancellation and the periodic due-record sweep.

Records with a future ``scheduled_at`` are created PENDING and attempted
when an in-process timer fires. An APScheduler interval job sweeps due
retries and due scheduled sends so timers lost to a restart are recovered.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from dispatch_service.features.notifications.enums import NotificationStatus
from dispatch_service.features.notifications.exceptions import (
    ConcurrentUpdateConflict,
    InvalidStateTransition,
    NotificationNotFound,
)
from dispatch_service.features.notifications.metrics import notification_status_transitions_total
from dispatch_service.features.notifications.schemas import ProcessDueResult
from dispatch_service.features.notifications.state_machine import transition_changes
from dispatch_service.features.notifications.timers import TimerSet
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from dispatch_service.core.settings.notifications import NotificationSettings
    from dispatch_service.features.notifications.dispatcher import NotificationDispatcher
    from dispatch_service.features.notifications.locks import RecordLocks
    from dispatch_service.features.notifications.repository import NotificationStore
    from dispatch_service.features.notifications.retry import RetryScheduler
    from dispatch_service.features.notifications.schemas import BaseNotification

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


class DeferredSendScheduler:
    """Runs the first attempt of scheduled notifications when they fall due."""

    def __init__(
        self,
        store: NotificationStore,
        dispatcher: NotificationDispatcher,
        locks: RecordLocks,
        settings: NotificationSettings,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.locks = locks
        self.batch_size = settings.sweep_batch_size
        self.timers = TimerSet("deferred")

    async def defer(self, notification: BaseNotification) -> BaseNotification:
        """Arm a timer for ``scheduled_at``."""
        scheduled_at = notification.scheduled_at or datetime.now(UTC)
        delay = (scheduled_at - datetime.now(UTC)).total_seconds()
        self.timers.arm(notification.id, delay, lambda: self.send_due(notification.id))
        logger.info(
            "Notification deferred",
            extra={
                "notification_id": notification.id,
                "scheduled_at": scheduled_at.isoformat(),
                "operation": "deferred.defer",
            },
        )
        return notification

    async def send_due(self, notification_id: str) -> BaseNotification | None:
        """Attempt a scheduled record if it is still PENDING and never attempted.

        Returns:
            The record after the attempt, or None when it was skipped
        """
        try:
            current = await self.store.find_by_id(notification_id)
        except NotificationNotFound:
            lazy_logger.debug(lambda: f"deferred.skip: {notification_id} deleted")
            return None
        if current.status != NotificationStatus.PENDING or current.attempts > 0:
            lazy_logger.debug(lambda: f"deferred.skip: {notification_id} is {current.status}")
            return None
        try:
            return await self.dispatcher.attempt(current)
        except ConcurrentUpdateConflict:
            lazy_logger.debug(lambda: f"deferred.skip: {notification_id} claimed elsewhere")
            return None

    async def cancel(self, notification_id: str, reason: str | None = None) -> BaseNotification:
        """Cancel a PENDING record that has never been attempted.

        Raises:
            NotificationNotFound: Unknown id
            InvalidStateTransition: Record was attempted or is not PENDING
        """
        async with self.locks.hold(notification_id):
            current = await self.store.find_by_id(notification_id)
            if current.status != NotificationStatus.PENDING or current.attempts > 0:
                raise InvalidStateTransition(notification_id, current.status, NotificationStatus.CANCELLED)
            changes = transition_changes(
                notification_id,
                current.status,
                NotificationStatus.CANCELLED,
                now=datetime.now(UTC),
                reason=reason or "cancelled by administrator",
            )
            try:
                updated = await self.store.update(
                    notification_id,
                    changes,
                    expected={"status": NotificationStatus.PENDING, "attempts": 0},
                )
            except ConcurrentUpdateConflict:
                latest = await self.store.find_by_id(notification_id)
                raise InvalidStateTransition(
                    notification_id, latest.status, NotificationStatus.CANCELLED
                ) from None

        self.timers.cancel(notification_id)
        notification_status_transitions_total.labels(
            from_status=NotificationStatus.PENDING.value, to_status=NotificationStatus.CANCELLED.value
        ).inc()
        logger.info(
            "Notification cancelled",
            extra={"notification_id": notification_id, "reason": updated.failure_reason, "operation": "deferred.cancel"},
        )
        return updated

    async def process_due(self, now: datetime | None = None) -> int:
        """Attempt due scheduled records whose timer is not armed.

        Returns:
            Number of records attempted
        """
        now = now or datetime.now(UTC)
        due = await self.store.list_due_scheduled(now, self.batch_size)
        processed = 0
        for notification in due:
            if self.timers.is_armed(notification.id):
                continue
            if await self.send_due(notification.id) is not None:
                processed += 1
        if processed:
            logger.info("Processed due scheduled sends", extra={"count": processed, "operation": "deferred.process_due"})
        return processed

    async def wait_idle(self) -> None:
        await self.timers.wait_idle()

    async def shutdown(self) -> None:
        await self.timers.shutdown()


class SweepScheduler:
    """APScheduler interval job sweeping due retries and scheduled sends.

    Example:
        sweeper = SweepScheduler(retry, deferred, interval_seconds=30)
        sweeper.start()
        ...
        sweeper.stop()
    """

    JOB_ID = "notification_due_sweep"

    def __init__(
        self,
        retry: RetryScheduler,
        deferred: DeferredSendScheduler,
        *,
        interval_seconds: int,
    ) -> None:
        self.retry = retry
        self.deferred = deferred
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine multiple pending executions into one
                "max_instances": 1,  # Only one sweep at a time
                "misfire_grace_time": max(interval_seconds, 30),
            },
        )

    async def sweep(self, now: datetime | None = None) -> ProcessDueResult:
        """Run both sweeps once."""
        now = now or datetime.now(UTC)
        retries = await self.retry.process_due(now)
        scheduled = await self.deferred.process_due(now)
        return ProcessDueResult(retries_processed=retries, scheduled_processed=scheduled)

    async def _run_sweep(self) -> None:
        try:
            await self.sweep()
        except Exception:
            logger.exception("Due-record sweep failed", extra={"operation": "sweep.run"})
            raise

    def start(self) -> None:
        """Register the sweep job and start the scheduler (requires a running loop)."""
        if self.scheduler.running:
            logger.warning("Sweep scheduler is already running")
            return
        self.scheduler.add_job(
            func=self._run_sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            name="Sweep due retries and scheduled sends",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "Sweep scheduler started",
            extra={"interval_seconds": self.interval_seconds, "operation": "sweep.start"},
        )

    def stop(self) -> None:
        """Stop the scheduler without waiting for a running sweep."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sweep scheduler stopped", extra={"operation": "sweep.stop"})

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)


__all__ = ["DeferredSendScheduler", "SweepScheduler"]
