"""Unit tests for template applicability conditions."""

from __future__ import annotations

import pytest

from dispatch_service.features.notifications.enums import ConditionOperator as Op
from dispatch_service.features.notifications.enums import LogicalOperator
from dispatch_service.features.notifications.schemas import NotificationCondition
from dispatch_service.features.notifications.templates.conditions import (
    evaluate_condition,
    evaluate_conditions,
)

VARIABLES = {"amount": "250.00", "currency": "USD", "city": "San Francisco", "plan": "pro"}


def cond(field: str, operator: Op, value, logical: LogicalOperator = LogicalOperator.AND) -> NotificationCondition:
    return NotificationCondition(field=field, operator=operator, value=value, logical_operator=logical)


class TestEvaluateCondition:
    """Test single conditions."""

    @pytest.mark.parametrize(
        ("condition", "expected"),
        [
            (cond("currency", Op.EQUALS, "USD"), True),
            (cond("currency", Op.EQUALS, "EUR"), False),
            (cond("amount", Op.EQUALS, 250), True),
            (cond("currency", Op.NOT_EQUALS, "EUR"), True),
            (cond("amount", Op.GREATER_THAN, 100), True),
            (cond("amount", Op.GREATER_THAN, "1000"), False),
            (cond("amount", Op.LESS_THAN, 300.5), True),
            (cond("city", Op.CONTAINS, "Francisco"), True),
            (cond("city", Op.CONTAINS, "Oakland"), False),
            (cond("plan", Op.IN, ["free", "pro"]), True),
            (cond("plan", Op.IN, "free, pro"), True),
            (cond("plan", Op.IN, ["free"]), False),
            (cond("plan", Op.NOT_IN, ["free", "trial"]), True),
        ],
    )
    def test_operators(self, condition: NotificationCondition, expected: bool):
        """Test each operator against the variable map."""
        assert evaluate_condition(condition, VARIABLES) is expected

    @pytest.mark.parametrize(
        ("operator", "expected"),
        [
            (Op.EQUALS, False),
            (Op.GREATER_THAN, False),
            (Op.LESS_THAN, False),
            (Op.CONTAINS, False),
            (Op.IN, False),
            (Op.NOT_EQUALS, True),
            (Op.NOT_IN, True),
        ],
    )
    def test_missing_field(self, operator: Op, expected: bool):
        """Test a missing field only satisfies negative operators."""
        assert evaluate_condition(cond("missing", operator, "x"), VARIABLES) is expected

    def test_numeric_comparison_not_lexical(self):
        """Test numbers compare by value ("9" < "10")."""
        assert evaluate_condition(cond("n", Op.LESS_THAN, 10), {"n": "9"}) is True


class TestEvaluateConditions:
    """Test folding a condition list."""

    def test_empty_list_is_applicable(self):
        """Test no conditions means always applicable."""
        assert evaluate_conditions([], VARIABLES) is True

    def test_and_fold(self):
        """Test AND requires every condition."""
        conditions = [
            cond("currency", Op.EQUALS, "USD"),
            cond("amount", Op.GREATER_THAN, 1000),
        ]

        assert evaluate_conditions(conditions, VARIABLES) is False

    def test_or_fold(self):
        """Test OR joins the accumulated result."""
        conditions = [
            cond("currency", Op.EQUALS, "EUR"),
            cond("plan", Op.EQUALS, "pro", LogicalOperator.OR),
        ]

        assert evaluate_conditions(conditions, VARIABLES) is True

    def test_left_to_right(self):
        """Test (false OR true) AND false evaluates left to right."""
        conditions = [
            cond("currency", Op.EQUALS, "EUR"),
            cond("plan", Op.EQUALS, "pro", LogicalOperator.OR),
            cond("city", Op.EQUALS, "Oakland", LogicalOperator.AND),
        ]

        assert evaluate_conditions(conditions, VARIABLES) is False

    def test_first_operator_ignored(self):
        """Test the first condition's logical operator has no effect."""
        conditions = [cond("currency", Op.EQUALS, "USD", LogicalOperator.OR)]

        assert evaluate_conditions(conditions, VARIABLES) is True
