"""Notification status lifecycle.

PENDING is the only initial state. Retry is not a transition: it re-enters
PENDING through a conditional update performed by the retry scheduler.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from dispatch_service.features.notifications.enums import NotificationStatus
from dispatch_service.features.notifications.exceptions import InvalidStateTransition

S = NotificationStatus

ALLOWED_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    S.PENDING: frozenset({S.SENT, S.FAILED, S.CANCELLED}),
    S.SENT: frozenset({S.DELIVERED, S.BOUNCED, S.FAILED}),
    S.DELIVERED: frozenset({S.OPENED, S.UNSUBSCRIBED}),
    S.OPENED: frozenset({S.CLICKED, S.UNSUBSCRIBED}),
    S.FAILED: frozenset(),
    S.BOUNCED: frozenset(),
    S.CLICKED: frozenset(),
    S.UNSUBSCRIBED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Statuses that require a failure_reason
FAILURE_STATUSES = frozenset({S.FAILED, S.BOUNCED, S.CANCELLED})

# Timestamp column stamped when entering a status
_TIMESTAMP_FIELDS = {
    S.SENT: "sent_at",
    S.DELIVERED: "delivered_at",
    S.OPENED: "opened_at",
    S.CLICKED: "clicked_at",
}

_DEFAULT_REASONS = {
    S.FAILED: "delivery failed",
    S.BOUNCED: "message bounced",
    S.CANCELLED: "cancelled",
}


def can_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    """Return True when ``current -> target`` is a legal transition."""
    return target in ALLOWED_TRANSITIONS[current]


def is_terminal(status: NotificationStatus) -> bool:
    """Return True when no transition leaves ``status``."""
    return status in TERMINAL_STATUSES


def transition_changes(
    notification_id: str,
    current: NotificationStatus,
    target: NotificationStatus,
    *,
    now: datetime,
    reason: str | None = None,
) -> dict[str, Any]:
    """Validate a transition and build the field changes it implies.

    Args:
        notification_id: Record id (for the error message)
        current: Status the record holds now
        target: Requested status
        now: Timestamp for the side-effect fields
        reason: Human-readable failure reason for FAILED/BOUNCED/CANCELLED

    Returns:
        Mapping of field name to new value, including ``status`` and ``updated_at``

    Raises:
        InvalidStateTransition: If the transition is not permitted
    """
    if not can_transition(current, target):
        raise InvalidStateTransition(notification_id, current, target)

    changes: dict[str, Any] = {"status": target, "updated_at": now}
    timestamp_field = _TIMESTAMP_FIELDS.get(target)
    if timestamp_field:
        changes[timestamp_field] = now
    if target in FAILURE_STATUSES:
        changes["failure_reason"] = reason or _DEFAULT_REASONS[target]
    if target in TERMINAL_STATUSES:
        changes["next_retry_at"] = None
    return changes


__all__ = [
    "ALLOWED_TRANSITIONS",
    "FAILURE_STATUSES",
    "TERMINAL_STATUSES",
    "can_transition",
    "is_terminal",
    "transition_changes",
]
