"""Prometheus metrics for notification dispatch monitoring.

This module provides metrics for tracking notifications:
- Creation and send outcome counters
- Send duration histograms
- Retry and retry-exhaustion counters
- Bulk batch counters

Usage:
    from dispatch_service.features.notifications.metrics import (
        notification_created_total,
        notification_sent_total,
    )

    notification_created_total.labels(channel="EMAIL", trigger_event="DATE_CURATED").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Notification Lifecycle Metrics
# =============================================================================

notification_created_total = Counter(
    "notification_created_total",
    "Total number of notification records created",
    labelnames=["channel", "trigger_event"],
)
"""
Counter for tracking record creation (one per recipient per channel).

Labels:
    channel: Delivery channel (EMAIL, SMS, SLACK, ...)
    trigger_event: Business event that caused the notification
"""

notification_sent_total = Counter(
    "notification_sent_total",
    "Total number of notifications accepted by a channel provider",
    labelnames=["channel"],
)
"""
Counter for tracking accepted sends.

Labels:
    channel: Delivery channel
"""

notification_failed_total = Counter(
    "notification_failed_total",
    "Total number of failed send attempts by channel and failure class",
    labelnames=["channel", "reason"],
)
"""
Counter for tracking failed send attempts.

Labels:
    channel: Delivery channel
    reason: transient, permanent, timeout, no_address, exhausted, render
"""

notification_status_transitions_total = Counter(
    "notification_status_transitions_total",
    "Total number of status transitions applied",
    labelnames=["from_status", "to_status"],
)
"""
Counter for tracking lifecycle transitions, including delivery callbacks.
"""

# =============================================================================
# Delivery Performance Metrics
# =============================================================================

notification_send_duration_seconds = Histogram(
    "notification_send_duration_seconds",
    "Channel send duration in seconds",
    labelnames=["channel"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
"""
Histogram tracking channel send latency distribution.

Buckets optimized for notification delivery latency:
    - 0.05s-0.25s: in-app and console senders
    - 0.5s-2.5s: normal SMTP/HTTP provider calls
    - 5s-30s: slow providers near the send timeout
"""

# =============================================================================
# Retry Metrics
# =============================================================================

notification_retries_total = Counter(
    "notification_retries_total",
    "Total number of retry attempts",
    labelnames=["channel", "trigger"],
)
"""
Counter for tracking retries.

Labels:
    channel: Delivery channel
    trigger: automatic (scheduler) or manual (administrator)
"""

notification_retries_exhausted_total = Counter(
    "notification_retries_exhausted_total",
    "Total number of notifications failed after exhausting retries",
    labelnames=["channel"],
)
"""
Counter for tracking records moved to FAILED with every retry used.
"""

# =============================================================================
# Bulk Metrics
# =============================================================================

notification_bulk_batches_total = Counter(
    "notification_bulk_batches_total",
    "Total number of bulk batches processed",
)

notification_bulk_recipients_total = Counter(
    "notification_bulk_recipients_total",
    "Total number of bulk recipients by outcome",
    labelnames=["outcome"],
)
"""
Counter for tracking bulk recipients.

Labels:
    outcome: success or failure
"""
