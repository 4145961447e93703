"""Unit tests for the notification lifecycle state machine."""

from __future__ import annotations

from datetime import UTC, datetime
import itertools

import pytest

from dispatch_service.features.notifications.enums import NotificationStatus as S
from dispatch_service.features.notifications.exceptions import InvalidStateTransition
from dispatch_service.features.notifications.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    can_transition,
    is_terminal,
    transition_changes,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

LEGAL = [
    (S.PENDING, S.SENT),
    (S.PENDING, S.FAILED),
    (S.PENDING, S.CANCELLED),
    (S.SENT, S.DELIVERED),
    (S.SENT, S.BOUNCED),
    (S.SENT, S.FAILED),
    (S.DELIVERED, S.OPENED),
    (S.DELIVERED, S.UNSUBSCRIBED),
    (S.OPENED, S.CLICKED),
    (S.OPENED, S.UNSUBSCRIBED),
]


class TestAllowedTransitions:
    """Test the transition table."""

    @pytest.mark.parametrize(("current", "target"), LEGAL)
    def test_legal_transitions(self, current: S, target: S):
        """Test every documented transition is permitted."""
        assert can_transition(current, target) is True

    def test_everything_else_is_rejected(self):
        """Test no pair outside the documented set is permitted."""
        for current, target in itertools.product(S, S):
            if (current, target) in LEGAL:
                continue
            assert can_transition(current, target) is False, f"{current} -> {target}"

    def test_every_status_has_an_entry(self):
        """Test the table covers the whole enum."""
        assert set(ALLOWED_TRANSITIONS) == set(S)

    @pytest.mark.parametrize("status", [S.FAILED, S.BOUNCED, S.CLICKED, S.UNSUBSCRIBED, S.CANCELLED])
    def test_terminal_statuses(self, status: S):
        """Test terminal statuses have no way out."""
        assert is_terminal(status)
        assert status in TERMINAL_STATUSES

    @pytest.mark.parametrize("status", [S.PENDING, S.SENT, S.DELIVERED, S.OPENED])
    def test_non_terminal_statuses(self, status: S):
        """Test in-flight statuses are not terminal."""
        assert not is_terminal(status)

    def test_unsubscribe_requires_delivery(self):
        """Test SENT cannot jump to UNSUBSCRIBED before delivery."""
        assert can_transition(S.SENT, S.UNSUBSCRIBED) is False


class TestTransitionChanges:
    """Test the field changes implied by a transition."""

    def test_sent_stamps_sent_at(self):
        """Test entering SENT records sent_at and updated_at."""
        changes = transition_changes("n-1", S.PENDING, S.SENT, now=NOW)

        assert changes == {"status": S.SENT, "updated_at": NOW, "sent_at": NOW}

    @pytest.mark.parametrize(
        ("current", "target", "field"),
        [
            (S.SENT, S.DELIVERED, "delivered_at"),
            (S.DELIVERED, S.OPENED, "opened_at"),
            (S.OPENED, S.CLICKED, "clicked_at"),
        ],
    )
    def test_engagement_timestamps(self, current: S, target: S, field: str):
        """Test delivery and engagement transitions stamp their timestamp."""
        changes = transition_changes("n-1", current, target, now=NOW)

        assert changes[field] == NOW
        assert changes["status"] == target

    def test_failure_uses_given_reason(self):
        """Test FAILED keeps the caller's reason."""
        changes = transition_changes("n-1", S.SENT, S.FAILED, now=NOW, reason="mailbox full")

        assert changes["failure_reason"] == "mailbox full"
        assert changes["next_retry_at"] is None

    @pytest.mark.parametrize(
        ("current", "target", "reason"),
        [
            (S.PENDING, S.FAILED, "delivery failed"),
            (S.SENT, S.BOUNCED, "message bounced"),
            (S.PENDING, S.CANCELLED, "cancelled"),
        ],
    )
    def test_failure_default_reason(self, current: S, target: S, reason: str):
        """Test failure statuses always carry a reason."""
        changes = transition_changes("n-1", current, target, now=NOW)

        assert changes["failure_reason"] == reason

    def test_terminal_transition_clears_next_retry(self):
        """Test reaching a terminal status clears next_retry_at."""
        changes = transition_changes("n-1", S.OPENED, S.CLICKED, now=NOW)

        assert changes["next_retry_at"] is None

    def test_illegal_transition_raises(self):
        """Test an illegal transition raises with both statuses recorded."""
        with pytest.raises(InvalidStateTransition) as exc_info:
            transition_changes("n-1", S.DELIVERED, S.PENDING, now=NOW)

        exc = exc_info.value
        assert exc.status_code == 409
        assert exc.code == "INVALID_STATE_TRANSITION"
        assert exc.current is S.DELIVERED
        assert exc.requested is S.PENDING
        assert exc.extra["notification_id"] == "n-1"

    def test_terminal_status_cannot_be_left(self):
        """Test FAILED cannot be moved back to SENT."""
        with pytest.raises(InvalidStateTransition):
            transition_changes("n-1", S.FAILED, S.SENT, now=NOW)
