"""Read-only delivery analytics over notification records."""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING

from dispatch_service.features.notifications.enums import (
    NotificationChannel,
    NotificationStatus,
    NotificationTriggerEvent,
)
from dispatch_service.features.notifications.exceptions import ValidationError
from dispatch_service.features.notifications.schemas import (
    AnalyticsSummary,
    ChannelCost,
    ChannelPerformance,
    CostAnalysis,
    EngagementSummary,
    EventPerformance,
    FailureAnalysis,
    FailureReasonCount,
    NotificationQuery,
    TrendPoint,
)
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dispatch_service.core.settings.notifications import NotificationSettings
    from dispatch_service.features.notifications.repository import NotificationStore
    from dispatch_service.features.notifications.schemas import AnalyticsFilter, BaseNotification

lazy_logger = get_lazy_logger(__name__)

DELIVERED_STATUSES = frozenset(
    {NotificationStatus.DELIVERED, NotificationStatus.OPENED, NotificationStatus.CLICKED}
)
FAILED_STATUSES = frozenset({NotificationStatus.FAILED, NotificationStatus.BOUNCED})

TOP_FAILURE_REASONS = 10


def _rate(numerator: int, denominator: int) -> float:
    return round(numerator / denominator, 4) if denominator else 0.0


def _mean_delivery_seconds(records: Sequence[BaseNotification]) -> float:
    durations = [
        (n.delivered_at - n.sent_at).total_seconds()
        for n in records
        if n.delivered_at is not None and n.sent_at is not None
    ]
    return round(sum(durations) / len(durations), 3) if durations else 0.0


class AnalyticsAggregator:
    """Aggregates notification records matching an AnalyticsFilter.

    Empty data produces zero-valued summaries; malformed filters raise
    ValidationError.
    """

    def __init__(self, store: NotificationStore, settings: NotificationSettings) -> None:
        self.store = store
        self.max_range = timedelta(days=settings.analytics_max_range_days)
        self.settings = settings

    def validate(self, analytics_filter: AnalyticsFilter) -> None:
        """Reject naive datetimes, inverted ranges and over-long ranges."""
        start, end = analytics_filter.start, analytics_filter.end
        if start.tzinfo is None or end.tzinfo is None:
            raise ValidationError("Analytics start and end must be timezone-aware")
        if start > end:
            raise ValidationError(
                "Analytics start must not be after end",
                extra={"start": start.isoformat(), "end": end.isoformat()},
            )
        if end - start > self.max_range:
            raise ValidationError(
                f"Analytics range must not exceed {self.max_range.days} days",
                extra={"start": start.isoformat(), "end": end.isoformat()},
            )

    async def _records(self, analytics_filter: AnalyticsFilter) -> list[BaseNotification]:
        self.validate(analytics_filter)
        query = NotificationQuery(
            channels=analytics_filter.channels,
            trigger_events=analytics_filter.events,
            start_date=analytics_filter.start,
            end_date=analytics_filter.end,
            sort_order="asc",
        )
        records = await self.store.find_matching(query)
        lazy_logger.debug(
            lambda: f"analytics: {len(records)} records between {analytics_filter.start} and {analytics_filter.end}"
        )
        return records

    # ========================================================================
    # Delivery summary
    # ========================================================================

    async def analyze(self, analytics_filter: AnalyticsFilter) -> AnalyticsSummary:
        """Delivery counts, rates, timings, breakdowns and daily trends."""
        records = await self._records(analytics_filter)
        total = len(records)
        delivered = sum(1 for n in records if n.status in DELIVERED_STATUSES)

        return AnalyticsSummary(
            total_notifications=total,
            total_sent=sum(1 for n in records if n.sent_at is not None),
            total_delivered=delivered,
            total_failed=sum(1 for n in records if n.status in FAILED_STATUSES),
            delivery_rate=_rate(delivered, total),
            average_delivery_time_seconds=_mean_delivery_seconds(records),
            channel_performance=self._channel_performance(records, analytics_filter.channels),
            event_performance=self._event_performance(records, analytics_filter.events),
            trends=self._trends(records, analytics_filter),
        )

    @staticmethod
    def _channel_performance(
        records: Sequence[BaseNotification],
        requested: Sequence[NotificationChannel],
    ) -> list[ChannelPerformance]:
        present = set(requested) | {n.channel for n in records}
        performance = []
        for channel in NotificationChannel:
            if channel not in present:
                continue
            subset = [n for n in records if n.channel == channel]
            delivered = sum(1 for n in subset if n.status in DELIVERED_STATUSES)
            performance.append(
                ChannelPerformance(
                    channel=channel,
                    total=len(subset),
                    sent=sum(1 for n in subset if n.sent_at is not None),
                    delivered=delivered,
                    failed=sum(1 for n in subset if n.status in FAILED_STATUSES),
                    delivery_rate=_rate(delivered, len(subset)),
                    average_delivery_time_seconds=_mean_delivery_seconds(subset),
                )
            )
        return performance

    @staticmethod
    def _event_performance(
        records: Sequence[BaseNotification],
        requested: Sequence[NotificationTriggerEvent],
    ) -> list[EventPerformance]:
        present = set(requested) | {n.trigger_event for n in records}
        performance = []
        for event in NotificationTriggerEvent:
            if event not in present:
                continue
            subset = [n for n in records if n.trigger_event == event]
            channels = Counter(n.channel for n in subset)
            top_channel = min(channels, key=lambda c: (-channels[c], list(NotificationChannel).index(c))) if channels else None
            performance.append(
                EventPerformance(
                    event=event,
                    total=len(subset),
                    sent=sum(1 for n in subset if n.sent_at is not None),
                    delivered=sum(1 for n in subset if n.status in DELIVERED_STATUSES),
                    failed=sum(1 for n in subset if n.status in FAILED_STATUSES),
                    top_channel=top_channel,
                )
            )
        return performance

    @staticmethod
    def _trends(records: Sequence[BaseNotification], analytics_filter: AnalyticsFilter) -> list[TrendPoint]:
        counts = Counter(n.created_at.date() for n in records)
        day = analytics_filter.start.date()
        last = analytics_filter.end.date()
        trends = []
        while day <= last:
            trends.append(TrendPoint(date=day.isoformat(), count=counts.get(day, 0)))
            day += timedelta(days=1)
        return trends

    # ========================================================================
    # Supplementary reports
    # ========================================================================

    async def engagement(self, analytics_filter: AnalyticsFilter) -> EngagementSummary:
        """Open, click and unsubscribe rates over delivered notifications."""
        records = await self._records(analytics_filter)
        delivered = [n for n in records if n.delivered_at is not None]
        opened = sum(1 for n in delivered if n.opened_at is not None)
        clicked = sum(1 for n in delivered if n.clicked_at is not None)
        unsubscribed = sum(1 for n in delivered if n.status == NotificationStatus.UNSUBSCRIBED)
        return EngagementSummary(
            delivered=len(delivered),
            opened=opened,
            clicked=clicked,
            unsubscribed=unsubscribed,
            open_rate=_rate(opened, len(delivered)),
            click_rate=_rate(clicked, len(delivered)),
            unsubscribe_rate=_rate(unsubscribed, len(delivered)),
        )

    async def failure_analysis(self, analytics_filter: AnalyticsFilter) -> FailureAnalysis:
        """Failed and bounced notifications by reason and channel."""
        records = await self._records(analytics_filter)
        failed = [n for n in records if n.status in FAILED_STATUSES]
        reasons = Counter(n.failure_reason or "unknown" for n in failed)
        by_channel = Counter(n.channel for n in failed)
        top = sorted(reasons.items(), key=lambda item: (-item[1], item[0]))[:TOP_FAILURE_REASONS]
        return FailureAnalysis(
            total_failed=len(failed),
            failure_rate=_rate(len(failed), len(records)),
            top_failure_reasons=[FailureReasonCount(reason=reason, count=count) for reason, count in top],
            failures_by_channel={channel: by_channel[channel] for channel in NotificationChannel if by_channel[channel]},
            pending_retries=sum(
                1 for n in records if n.status == NotificationStatus.PENDING and n.next_retry_at is not None
            ),
        )

    async def cost_analysis(self, analytics_filter: AnalyticsFilter) -> CostAnalysis:
        """Estimated provider spend: sent notifications times channel unit cost."""
        records = await self._records(analytics_filter)
        sent = Counter(n.channel for n in records if n.sent_at is not None)
        by_channel = []
        for channel in NotificationChannel:
            if not sent[channel]:
                continue
            unit_cost = self.settings.unit_cost(channel.value)
            by_channel.append(
                ChannelCost(
                    channel=channel,
                    sent=sent[channel],
                    unit_cost=unit_cost,
                    cost=round(sent[channel] * unit_cost, 6),
                )
            )
        total_cost = round(sum(item.cost for item in by_channel), 6)
        total_sent = sum(sent.values())
        return CostAnalysis(
            total_cost=total_cost,
            cost_per_notification=round(total_cost / total_sent, 6) if total_sent else 0.0,
            by_channel=by_channel,
        )


__all__ = ["DELIVERED_STATUSES", "FAILED_STATUSES", "AnalyticsAggregator"]
