"""
Condition Evaluator - single decision matrix condition against attribute values

Conditions fail closed: a missing attribute, a value of the wrong shape or
an unparseable number makes the condition non-matching. Nothing here
raises for data-shape reasons, so a bad rule can never block a
classification.
"""

import logging
from typing import Any, Dict, Mapping

from decision_matrix import (
    BooleanValue,
    CategoricalValue,
    Condition,
    ConditionOperator,
    ExtractedAttributeValue,
    NumericValue,
    parse_boolean,
    parse_number,
)

logger = logging.getLogger(__name__)


def unwrap_value(value: Any) -> Any:
    """Reduce ExtractedAttributeValue / AttributeValue wrappers to the raw value."""
    if isinstance(value, ExtractedAttributeValue):
        return value.raw
    if isinstance(value, (NumericValue, CategoricalValue, BooleanValue)):
        return value.raw
    if isinstance(value, Mapping) and "value" in value:
        # Serialized ExtractedAttributeValue from session storage
        return value["value"]
    return value


def values_equal(actual: Any, expected: Any) -> bool:
    """
    Equality used by equals / not_equals / in / not_in.

    Numbers compare numerically, booleans compare as booleans (accepting
    "yes"/"no"/"true"/"false"), everything else compares as trimmed,
    case-insensitive text.
    """
    if isinstance(actual, bool) or isinstance(expected, bool):
        left = parse_boolean(actual)
        right = parse_boolean(expected)
        return left is not None and right is not None and left == right

    left_num = parse_number(actual)
    right_num = parse_number(expected)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    if actual is None or expected is None:
        return False
    return str(actual).strip().lower() == str(expected).strip().lower()


def _compare_numbers(operator: ConditionOperator, actual: Any, expected: Any) -> bool:
    left = parse_number(actual)
    right = parse_number(expected)
    if left is None or right is None:
        return False

    if operator == ConditionOperator.GREATER_THAN:
        return left > right
    if operator == ConditionOperator.LESS_THAN:
        return left < right
    if operator == ConditionOperator.GREATER_OR_EQUAL:
        return left >= right
    return left <= right


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        if expected is None:
            return False
        return str(expected).strip().lower() in actual.lower()
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(values_equal(item, expected) for item in actual)
    return False


def evaluate_condition(condition: Condition, attribute_values: Dict[str, Any]) -> bool:
    """
    Evaluate one condition against the extracted attribute values.

    Args:
        condition: The condition to check
        attribute_values: Attribute name -> raw value, AttributeValue or
            ExtractedAttributeValue

    Returns:
        True only when the attribute is present and the comparison holds
    """
    if condition.attribute not in attribute_values:
        return False

    actual = unwrap_value(attribute_values[condition.attribute])
    if actual is None:
        return False

    operator = condition.operator
    expected = condition.value

    if operator == ConditionOperator.EQUALS:
        return values_equal(actual, expected)

    if operator == ConditionOperator.NOT_EQUALS:
        if expected is None:
            return False
        return not values_equal(actual, expected)

    if operator.is_numeric:
        return _compare_numbers(operator, actual, expected)

    if operator == ConditionOperator.CONTAINS:
        return _contains(actual, expected)

    if operator.expects_list:
        if not isinstance(expected, (list, tuple)):
            logger.debug(
                f"Operator '{operator.value}' on '{condition.attribute}' needs a list, got {expected!r}"
            )
            return False
        member = any(values_equal(actual, option) for option in expected)
        return member if operator == ConditionOperator.IN else not member

    return False
