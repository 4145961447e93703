"""Template applicability conditions.

Conditions read fields from the flattened variable map (all values are
strings). Numeric comparison is used when both sides parse as numbers.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from dispatch_service.features.notifications.enums import ConditionOperator, LogicalOperator

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from dispatch_service.features.notifications.schemas import NotificationCondition


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _equal(actual: str | None, expected: Any) -> bool:
    if actual is None:
        return expected is None
    left, right = _as_number(actual), _as_number(expected)
    if left is not None and right is not None:
        return left == right
    if isinstance(expected, bool):
        return actual.lower() == str(expected).lower()
    return actual == str(expected)


def _as_collection(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    if isinstance(value, str):
        return [item.strip() for item in value.split(",")]
    return [value]


def evaluate_condition(condition: NotificationCondition, variables: Mapping[str, str]) -> bool:
    """Evaluate a single condition against the variable map.

    A missing field only satisfies ``not_equals`` and ``not_in``.
    """
    actual = variables.get(condition.field)
    expected = condition.value

    match condition.operator:
        case ConditionOperator.EQUALS:
            return _equal(actual, expected)
        case ConditionOperator.NOT_EQUALS:
            return not _equal(actual, expected)
        case ConditionOperator.GREATER_THAN | ConditionOperator.LESS_THAN:
            left, right = _as_number(actual), _as_number(expected)
            if left is None or right is None:
                if actual is None or expected is None:
                    return False
                left_s, right_s = actual, str(expected)
                return left_s > right_s if condition.operator is ConditionOperator.GREATER_THAN else left_s < right_s
            return left > right if condition.operator is ConditionOperator.GREATER_THAN else left < right
        case ConditionOperator.CONTAINS:
            return actual is not None and str(expected) in actual
        case ConditionOperator.IN:
            return actual is not None and any(_equal(actual, item) for item in _as_collection(expected))
        case ConditionOperator.NOT_IN:
            return actual is None or not any(_equal(actual, item) for item in _as_collection(expected))
    return False


def evaluate_conditions(
    conditions: Sequence[NotificationCondition],
    variables: Mapping[str, str],
) -> bool:
    """Fold conditions left to right.

    Each condition joins the accumulated result with its own
    ``logical_operator``; the first condition's operator is ignored.
    An empty list is always applicable.

    Example:
        >>> evaluate_conditions([], {})
        True
    """
    result: bool | None = None
    for condition in conditions:
        outcome = evaluate_condition(condition, variables)
        if result is None:
            result = outcome
        elif condition.logical_operator is LogicalOperator.OR:
            result = result or outcome
        else:
            result = result and outcome
    return True if result is None else result


__all__ = ["evaluate_condition", "evaluate_conditions"]
