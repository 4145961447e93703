"""Unit tests for RetryScheduler backoff, exhaustion and manual retries."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import random
from unittest.mock import MagicMock

import pytest

from dispatch_service.core.database import uuid7_str
from dispatch_service.core.settings import NotificationSettings
from dispatch_service.features.notifications.channels import ChannelRegistry, SendResult
from dispatch_service.features.notifications.container import ServiceContainer
from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
    NotificationTriggerEvent,
)
from dispatch_service.features.notifications.exceptions import RetriesExhausted, ValidationError
from dispatch_service.features.notifications.locks import RecordLocks
from dispatch_service.features.notifications.retry import EXHAUSTED_REASON, RetryScheduler
from dispatch_service.features.notifications.schemas import (
    BaseNotification,
    DispatchRecipient,
    DispatchRequest,
)

SMS = NotificationChannel.SMS


def sms_request(**kwargs) -> DispatchRequest:
    return DispatchRequest(
        trigger_event=NotificationTriggerEvent.PAYMENT_FAILED,
        channels=[SMS],
        title="Payment failed",
        message="Your card was declined",
        recipients=[DispatchRecipient(address="+15550001")],
        **kwargs,
    )


async def stored_notification(container: ServiceContainer, **overrides) -> BaseNotification:
    """Insert an SMS record directly into the store."""
    fields = {
        "id": uuid7_str(),
        "trigger_event": NotificationTriggerEvent.PAYMENT_FAILED,
        "channel": SMS,
        "title": "Payment failed",
        "message": "Your card was declined",
        "recipient_address": "+15550001",
    }
    fields.update(overrides)
    return await container.store.create(BaseNotification(**fields))


@pytest.fixture
def backoff() -> RetryScheduler:
    """Scheduler with production delays, used for delay arithmetic only."""
    settings = NotificationSettings(retry_base_delay_seconds=30, retry_max_delay_seconds=3600)
    return RetryScheduler(MagicMock(), MagicMock(), RecordLocks(), settings, rng=random.Random(7))


class TestComputeDelay:
    """Test the backoff formula."""

    @pytest.mark.parametrize(
        ("priority", "low", "high"),
        [
            (NotificationPriority.CRITICAL, 7.5, 11.25),
            (NotificationPriority.URGENT, 15.0, 22.5),
            (NotificationPriority.HIGH, 22.5, 33.75),
            (NotificationPriority.NORMAL, 30.0, 45.0),
            (NotificationPriority.LOW, 60.0, 90.0),
        ],
    )
    def test_first_retry_bounds(self, backoff: RetryScheduler, priority: NotificationPriority, low: float, high: float):
        """Test the first delay is base * factor scaled by jitter in [1.0, 1.5]."""
        for _ in range(50):
            assert low <= backoff.compute_delay(0, priority) <= high

    def test_grows_exponentially(self, backoff: RetryScheduler):
        """Test the n-th delay lies within base * 2**n * [1.0, 1.5]."""
        for retry_count in range(5):
            delay = backoff.compute_delay(retry_count, NotificationPriority.NORMAL)
            assert 30 * 2**retry_count <= delay <= 45 * 2**retry_count

    def test_never_decreases(self, backoff: RetryScheduler):
        """Test the delay sequence is non-decreasing whatever the jitter."""
        delays = [backoff.compute_delay(n, NotificationPriority.HIGH) for n in range(12)]

        assert delays == sorted(delays)

    def test_capped_at_max_delay(self, backoff: RetryScheduler):
        """Test large retry counts are capped at the maximum delay."""
        assert backoff.compute_delay(20, NotificationPriority.LOW) == 3600
        assert backoff.compute_delay(1000, NotificationPriority.NORMAL) == 3600

    def test_higher_priority_retries_sooner(self, backoff: RetryScheduler):
        """Test priority factors order delays for equal jitter."""
        backoff.rng = MagicMock(uniform=MagicMock(return_value=1.0))

        delays = [backoff.compute_delay(1, priority) for priority in NotificationPriority]

        # LOW, NORMAL, HIGH, URGENT, CRITICAL
        assert delays == [120.0, 60.0, 45.0, 30.0, 15.0]

    def test_seeded_rng_is_reproducible(self):
        """Test the same seed yields the same delays."""
        settings = NotificationSettings()
        first = RetryScheduler(MagicMock(), MagicMock(), RecordLocks(), settings, rng=random.Random(99))
        second = RetryScheduler(MagicMock(), MagicMock(), RecordLocks(), settings, rng=random.Random(99))

        assert [first.compute_delay(n, NotificationPriority.NORMAL) for n in range(4)] == [
            second.compute_delay(n, NotificationPriority.NORMAL) for n in range(4)
        ]


class TestAutomaticRetries:
    """Test the transient failure retry loop."""

    async def test_exhaustion_after_max_retries(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test four transient failures with max_retries=3 end FAILED."""
        sender = registry.get(SMS)
        sender.script(*(SendResult.transient("gateway 503") for _ in range(4)))

        records = await container.dispatcher.dispatch(sms_request(max_retries=3))
        await container.retry.wait_idle()

        final = await container.store.find_by_id(records[0].id)
        assert final.status is NotificationStatus.FAILED
        assert final.failure_reason == EXHAUSTED_REASON
        assert final.retry_count == 3
        assert final.attempts == 4
        assert final.next_retry_at is None
        assert final.is_retry_exhausted
        assert sender.call_count == 4

    async def test_success_after_retries(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test a send accepted on the third attempt ends SENT."""
        registry.get(SMS).script(SendResult.transient("timeout"), SendResult.transient("timeout"))

        records = await container.dispatcher.dispatch(sms_request())
        await container.retry.wait_idle()

        final = await container.store.find_by_id(records[0].id)
        assert final.status is NotificationStatus.SENT
        assert final.retry_count == 2
        assert final.attempts == 3
        assert final.failure_reason is None

    async def test_zero_retries_fails_on_first_transient(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test max_retries=0 fails immediately on a transient error."""
        registry.get(SMS).script(SendResult.transient("gateway 503"))

        records = await container.dispatcher.dispatch(sms_request(max_retries=0))

        assert records[0].status is NotificationStatus.FAILED
        assert records[0].failure_reason == EXHAUSTED_REASON
        assert records[0].retry_count == 0

    async def test_retry_of_non_pending_record_is_skipped(self, container: ServiceContainer):
        """Test an automatic retry of a record that was sent meanwhile does nothing."""
        record = await stored_notification(container, status=NotificationStatus.SENT, attempts=1)

        result = await container.retry.attempt_retry(record.id)

        assert result.status is NotificationStatus.SENT
        assert result.retry_count == 0


class TestProcessDue:
    """Test recovery of lost retry timers."""

    async def test_due_retry_without_timer_is_processed(
        self, container: ServiceContainer, registry: ChannelRegistry
    ):
        """Test a PENDING record past next_retry_at is retried by the sweep."""
        now = datetime.now(UTC)
        record = await stored_notification(
            container, attempts=1, failure_reason="gateway 503", next_retry_at=now - timedelta(seconds=1)
        )

        processed = await container.retry.process_due(now)

        assert processed == 1
        final = await container.store.find_by_id(record.id)
        assert final.status is NotificationStatus.SENT
        assert final.retry_count == 1
        assert registry.get(SMS).call_count == 1

    async def test_future_retry_is_left_alone(self, container: ServiceContainer):
        """Test records not yet due are not processed."""
        now = datetime.now(UTC)
        await stored_notification(container, attempts=1, next_retry_at=now + timedelta(minutes=5))

        assert await container.retry.process_due(now) == 0


class TestManualRetry:
    """Test administrator retries."""

    async def test_retry_failed_record(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test a FAILED record with retries left is re-attempted."""
        registry.get(SMS).script(SendResult.permanent("carrier rejected"))
        records = await container.dispatcher.dispatch(sms_request())
        assert records[0].status is NotificationStatus.FAILED

        retried = await container.retry.retry_now(records[0].id)

        assert retried.status is NotificationStatus.SENT
        assert retried.retry_count == 1
        assert retried.attempts == 2

    async def test_retry_sent_record_rejected(self, container: ServiceContainer):
        """Test a SENT record cannot be retried."""
        records = await container.dispatcher.dispatch(sms_request())

        with pytest.raises(ValidationError):
            await container.retry.retry_now(records[0].id)

    async def test_retry_exhausted_record(self, container: ServiceContainer):
        """Test a FAILED record with no retries left raises RetriesExhausted."""
        record = await stored_notification(
            container, status=NotificationStatus.FAILED, retry_count=3, max_retries=3, attempts=4
        )

        with pytest.raises(RetriesExhausted) as exc_info:
            await container.retry.retry_now(record.id)

        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "RETRIES_EXHAUSTED"

    async def test_retry_exhausted_pending_record_fails_it(self, container: ServiceContainer):
        """Test a PENDING record with no retries left is failed, then rejected."""
        record = await stored_notification(container, retry_count=2, max_retries=2, attempts=3)

        with pytest.raises(RetriesExhausted):
            await container.retry.retry_now(record.id)

        final = await container.store.find_by_id(record.id)
        assert final.status is NotificationStatus.FAILED
        assert final.failure_reason == EXHAUSTED_REASON

    async def test_retry_many_partial_failure(self, container: ServiceContainer, registry: ChannelRegistry):
        """Test one bad id never aborts a bulk retry."""
        registry.get(SMS).script(SendResult.permanent("carrier rejected"))
        failed = (await container.dispatcher.dispatch(sms_request()))[0]
        sent = (await container.dispatcher.dispatch(sms_request()))[0]

        response = await container.retry.retry_many([failed.id, sent.id, "missing"])

        assert response.total_requested == 3
        assert response.successful == 1
        assert response.failed == 2
        assert [r.success for r in response.results] == [True, False, False]
        assert response.results[0].status is NotificationStatus.SENT
        assert "not found" in response.results[2].error


class TestZeroDelayRetries:
    """Test retries with a ceiling equal to the base delay."""

    @pytest.fixture
    def notification_settings(self) -> NotificationSettings:
        """Settings where every delay is capped at the base delay."""
        return NotificationSettings(
            store_backend="memory",
            sender_mode="fake",
            retry_base_delay_seconds=0.001,
            retry_max_delay_seconds=0.001,
            default_max_retries=1,
        )

    async def test_delay_is_capped(self, container: ServiceContainer):
        """Test compute_delay never exceeds the ceiling."""
        assert container.retry.compute_delay(5, NotificationPriority.LOW) == 0.001
