"""Notification taxonomy enumerations."""

from __future__ import annotations

from enum import StrEnum


class NotificationTriggerEvent(StrEnum):
    """Business events that cause notifications to be sent."""

    NEW_USER_SIGNUP = "NEW_USER_SIGNUP"
    USER_PROFILE_COMPLETED = "USER_PROFILE_COMPLETED"
    DATE_CURATED = "DATE_CURATED"
    DATE_CONFIRMED = "DATE_CONFIRMED"
    DATE_CANCELLED = "DATE_CANCELLED"
    PAYMENT_SUCCESSFUL = "PAYMENT_SUCCESSFUL"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    ADMIN_LOGIN = "ADMIN_LOGIN"


class NotificationChannel(StrEnum):
    """Delivery medium. One record is produced per channel per recipient."""

    EMAIL = "EMAIL"
    SLACK = "SLACK"
    SMS = "SMS"
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"
    PUSH = "PUSH"

    @property
    def template_field(self) -> str:
        """Name of the matching sub-template attribute on NotificationTemplate."""
        return self.value.lower()


_PRIORITY_RANK = {
    "LOW": 0,
    "NORMAL": 1,
    "HIGH": 2,
    "URGENT": 3,
    "CRITICAL": 4,
}


class NotificationPriority(StrEnum):
    """Ordered urgency level.

    Ordering follows ``LOW < NORMAL < HIGH < URGENT < CRITICAL`` rather than
    string order.
    """

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank >= other.rank


class NotificationStatus(StrEnum):
    """Delivery lifecycle status. See ``state_machine`` for legal transitions."""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    BOUNCED = "BOUNCED"
    OPENED = "OPENED"
    CLICKED = "CLICKED"
    UNSUBSCRIBED = "UNSUBSCRIBED"
    CANCELLED = "CANCELLED"


class NotificationFrequency(StrEnum):
    """Template delivery cadence. ``DISABLED`` templates cannot be dispatched."""

    IMMEDIATE = "IMMEDIATE"
    BATCHED_5MIN = "BATCHED_5MIN"
    BATCHED_15MIN = "BATCHED_15MIN"
    BATCHED_HOURLY = "BATCHED_HOURLY"
    DAILY_DIGEST = "DAILY_DIGEST"
    WEEKLY_DIGEST = "WEEKLY_DIGEST"
    DISABLED = "DISABLED"


class ConditionOperator(StrEnum):
    """Comparison applied by a template condition."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"


class LogicalOperator(StrEnum):
    """How a condition joins the result accumulated so far."""

    AND = "AND"
    OR = "OR"


__all__ = [
    "ConditionOperator",
    "LogicalOperator",
    "NotificationChannel",
    "NotificationFrequency",
    "NotificationPriority",
    "NotificationStatus",
    "NotificationTriggerEvent",
]
