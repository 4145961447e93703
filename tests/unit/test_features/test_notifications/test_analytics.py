"""Unit tests for AnalyticsAggregator."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from dispatch_service.core.database import uuid7_str
from dispatch_service.core.settings import NotificationSettings
from dispatch_service.features.notifications.analytics import AnalyticsAggregator
from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationStatus,
    NotificationTriggerEvent,
)
from dispatch_service.features.notifications.exceptions import ValidationError
from dispatch_service.features.notifications.repository import InMemoryNotificationStore
from dispatch_service.features.notifications.schemas import AnalyticsFilter, BaseNotification

EMAIL = NotificationChannel.EMAIL
SMS = NotificationChannel.SMS
SLACK = NotificationChannel.SLACK
SIGNUP = NotificationTriggerEvent.NEW_USER_SIGNUP
PAYMENT = NotificationTriggerEvent.PAYMENT_FAILED

DAY1 = datetime(2026, 4, 1, 10, 0, tzinfo=UTC)
DAY2 = DAY1 + timedelta(days=1)
DAY3 = DAY1 + timedelta(days=2)

RANGE = AnalyticsFilter(
    start=datetime(2026, 4, 1, tzinfo=UTC),
    end=datetime(2026, 4, 3, 23, 59, 59, tzinfo=UTC),
)


def record(channel: NotificationChannel, event: NotificationTriggerEvent, created_at: datetime, **fields) -> BaseNotification:
    return BaseNotification(
        id=uuid7_str(),
        trigger_event=event,
        channel=channel,
        title="t",
        message="m",
        created_at=created_at,
        updated_at=created_at,
        **fields,
    )


@pytest.fixture
async def aggregator() -> AnalyticsAggregator:
    """Aggregator over a store seeded with six records in range and one outside."""
    store = InMemoryNotificationStore()
    seconds = timedelta(seconds=1)
    for notification in [
        record(EMAIL, PAYMENT, DAY1, status=NotificationStatus.DELIVERED, sent_at=DAY1, delivered_at=DAY1 + 4 * seconds),
        record(
            EMAIL,
            PAYMENT,
            DAY1,
            status=NotificationStatus.CLICKED,
            sent_at=DAY1,
            delivered_at=DAY1 + 2 * seconds,
            opened_at=DAY1 + 60 * seconds,
            clicked_at=DAY1 + 90 * seconds,
        ),
        record(SMS, PAYMENT, DAY2, status=NotificationStatus.FAILED, failure_reason="invalid number"),
        record(SMS, SIGNUP, DAY2, status=NotificationStatus.BOUNCED, sent_at=DAY2, failure_reason="carrier rejected"),
        record(SLACK, SIGNUP, DAY3, status=NotificationStatus.SENT, sent_at=DAY3),
        record(EMAIL, SIGNUP, DAY3, attempts=1, failure_reason="timeout", next_retry_at=DAY3 + 30 * seconds),
        record(EMAIL, SIGNUP, DAY1 - timedelta(days=12), status=NotificationStatus.SENT, sent_at=DAY1),
    ]:
        await store.create(notification)
    return AnalyticsAggregator(store, NotificationSettings())


class TestAnalyze:
    """Test the delivery summary."""

    async def test_totals(self, aggregator: AnalyticsAggregator):
        """Test headline counts, rate and mean delivery time."""
        summary = await aggregator.analyze(RANGE)

        assert summary.total_notifications == 6
        assert summary.total_sent == 4
        assert summary.total_delivered == 2
        assert summary.total_failed == 2
        assert summary.delivery_rate == 0.3333
        assert summary.average_delivery_time_seconds == 3.0

    async def test_channel_performance(self, aggregator: AnalyticsAggregator):
        """Test per-channel counts in channel order."""
        summary = await aggregator.analyze(RANGE)

        by_channel = {p.channel: p for p in summary.channel_performance}
        assert [p.channel for p in summary.channel_performance] == [EMAIL, SLACK, SMS]
        assert (by_channel[EMAIL].total, by_channel[EMAIL].sent, by_channel[EMAIL].delivered) == (3, 2, 2)
        assert by_channel[EMAIL].delivery_rate == 0.6667
        assert by_channel[SMS].failed == 2
        assert by_channel[SLACK].delivery_rate == 0.0

    async def test_event_performance(self, aggregator: AnalyticsAggregator):
        """Test per-event counts and top channel with ties broken by channel order."""
        summary = await aggregator.analyze(RANGE)

        by_event = {p.event: p for p in summary.event_performance}
        assert by_event[PAYMENT].total == 3
        assert by_event[PAYMENT].top_channel is EMAIL
        assert by_event[SIGNUP].total == 3
        assert by_event[SIGNUP].top_channel is EMAIL

    async def test_trends_zero_filled(self, aggregator: AnalyticsAggregator):
        """Test one trend point per day in range."""
        summary = await aggregator.analyze(
            AnalyticsFilter(start=RANGE.start, end=RANGE.end + timedelta(days=2))
        )

        assert [(t.date, t.count) for t in summary.trends] == [
            ("2026-04-01", 2),
            ("2026-04-02", 2),
            ("2026-04-03", 2),
            ("2026-04-04", 0),
            ("2026-04-05", 0),
        ]

    async def test_channel_filter(self, aggregator: AnalyticsAggregator):
        """Test a channel filter restricts every figure."""
        summary = await aggregator.analyze(RANGE.model_copy(update={"channels": [SMS, NotificationChannel.PUSH]}))

        assert summary.total_notifications == 2
        assert [p.channel for p in summary.channel_performance] == [SMS, NotificationChannel.PUSH]
        assert summary.channel_performance[1].total == 0

    async def test_empty_range(self, aggregator: AnalyticsAggregator):
        """Test a range without records yields a zero summary."""
        start = datetime(2025, 1, 1, tzinfo=UTC)
        summary = await aggregator.analyze(AnalyticsFilter(start=start, end=start + timedelta(hours=1)))

        assert summary.total_notifications == 0
        assert summary.delivery_rate == 0.0
        assert summary.average_delivery_time_seconds == 0.0
        assert summary.channel_performance == []
        assert [(t.date, t.count) for t in summary.trends] == [("2025-01-01", 0)]


class TestReports:
    """Test engagement, failure and cost reports."""

    async def test_engagement(self, aggregator: AnalyticsAggregator):
        """Test rates are computed over delivered notifications."""
        engagement = await aggregator.engagement(RANGE)

        assert engagement.delivered == 2
        assert engagement.opened == 1
        assert engagement.clicked == 1
        assert engagement.unsubscribed == 0
        assert engagement.open_rate == 0.5
        assert engagement.click_rate == 0.5

    async def test_failure_analysis(self, aggregator: AnalyticsAggregator):
        """Test failures grouped by reason and channel."""
        failures = await aggregator.failure_analysis(RANGE)

        assert failures.total_failed == 2
        assert failures.failure_rate == 0.3333
        assert [(r.reason, r.count) for r in failures.top_failure_reasons] == [
            ("carrier rejected", 1),
            ("invalid number", 1),
        ]
        assert failures.failures_by_channel == {SMS: 2}
        assert failures.pending_retries == 1

    async def test_cost_analysis(self, aggregator: AnalyticsAggregator):
        """Test spend is sent count times the channel unit cost."""
        cost = await aggregator.cost_analysis(RANGE)

        by_channel = {c.channel: c for c in cost.by_channel}
        assert by_channel[EMAIL].sent == 2
        assert by_channel[EMAIL].cost == pytest.approx(0.0002)
        assert by_channel[SMS].cost == pytest.approx(0.0075)
        assert by_channel[SLACK].cost == 0.0
        assert cost.total_cost == pytest.approx(0.0077)
        assert cost.cost_per_notification == pytest.approx(0.001925)


class TestValidation:
    """Test filter validation."""

    @pytest.mark.parametrize(
        "analytics_filter",
        [
            AnalyticsFilter(start=datetime(2026, 4, 2), end=datetime(2026, 4, 3)),
            AnalyticsFilter(start=datetime(2026, 4, 3, tzinfo=UTC), end=datetime(2026, 4, 2, tzinfo=UTC)),
            AnalyticsFilter(start=datetime(2024, 1, 1, tzinfo=UTC), end=datetime(2026, 1, 1, tzinfo=UTC)),
        ],
        ids=["naive", "inverted", "too-long"],
    )
    async def test_invalid_filters(self, aggregator: AnalyticsAggregator, analytics_filter: AnalyticsFilter):
        """Test malformed filters raise ValidationError."""
        with pytest.raises(ValidationError):
            await aggregator.analyze(analytics_filter)
