"""
Tests for single-condition evaluation.

Every operator must fail closed: a missing attribute or a value of the
wrong shape is a non-match, never an exception.
"""

import pytest

from decision_matrix import (
    BooleanValue,
    CategoricalValue,
    Condition,
    ConditionOperator,
    ExtractedAttributeValue,
    NumericValue,
)
from nodes.condition_evaluator import evaluate_condition, values_equal


def cond(attribute, operator, value):
    return Condition(attribute, ConditionOperator(operator), value)


# ============================================================================
# Fail-Closed Behaviour
# ============================================================================

class TestFailClosed:
    """Missing attributes never match, whatever the operator."""

    @pytest.mark.parametrize("operator,value", [
        ("equals", "high"),
        ("not_equals", "high"),
        ("greater_than", 10),
        ("less_than", 10),
        ("greater_or_equal", 10),
        ("less_or_equal", 10),
        ("contains", "x"),
        ("in", ["high", "low"]),
        ("not_in", ["high", "low"]),
    ])
    def test_missing_attribute_is_false(self, operator, value):
        assert evaluate_condition(cond("volume", operator, value), {}) is False

    @pytest.mark.parametrize("operator", ["equals", "not_equals", "greater_than", "contains", "in", "not_in"])
    def test_none_value_is_false(self, operator):
        value = ["a"] if operator in ("in", "not_in") else "a"
        assert evaluate_condition(cond("volume", operator, value), {"volume": None}) is False

    def test_numeric_operator_on_text_is_false(self):
        assert evaluate_condition(cond("volume", "greater_than", 5), {"volume": "lots"}) is False

    def test_numeric_operator_with_text_threshold_is_false(self):
        assert evaluate_condition(cond("hours", "less_than", "many"), {"hours": 3}) is False

    def test_boolean_is_not_a_number(self):
        assert evaluate_condition(cond("flag", "greater_than", 0), {"flag": True}) is False

    def test_in_with_non_list_is_false(self):
        assert evaluate_condition(cond("volume", "in", "high"), {"volume": "high"}) is False
        assert evaluate_condition(cond("volume", "not_in", "high"), {"volume": "low"}) is False

    def test_contains_on_number_is_false(self):
        assert evaluate_condition(cond("hours", "contains", "4"), {"hours": 40}) is False


# ============================================================================
# Operator Semantics
# ============================================================================

class TestOperators:
    """Tests for each operator on present values."""

    def test_equals_is_case_insensitive_and_trimmed(self):
        assert evaluate_condition(cond("volume", "equals", "High"), {"volume": "  high "}) is True

    def test_equals_compares_numbers_numerically(self):
        assert evaluate_condition(cond("hours", "equals", 40), {"hours": "40.0"}) is True

    def test_equals_compares_booleans(self):
        assert evaluate_condition(cond("flag", "equals", True), {"flag": "yes"}) is True
        assert evaluate_condition(cond("flag", "equals", False), {"flag": True}) is False

    def test_not_equals(self):
        assert evaluate_condition(cond("risk", "not_equals", "low"), {"risk": "high"}) is True
        assert evaluate_condition(cond("risk", "not_equals", "low"), {"risk": "LOW"}) is False

    @pytest.mark.parametrize("operator,threshold,expected", [
        ("greater_than", 39, True),
        ("greater_than", 40, False),
        ("less_than", 41, True),
        ("greater_or_equal", 40, True),
        ("less_or_equal", 40, True),
        ("less_or_equal", 39, False),
    ])
    def test_numeric_comparisons(self, operator, threshold, expected):
        assert evaluate_condition(cond("hours", operator, threshold), {"hours": 40}) is expected

    def test_contains_substring(self):
        assert evaluate_condition(cond("tools", "contains", "Excel"), {"tools": "email and excel"}) is True

    def test_contains_list_membership(self):
        assert evaluate_condition(cond("tools", "contains", "sap"), {"tools": ["SAP", "Excel"]}) is True

    def test_in_and_not_in(self):
        values = {"frequency": "Daily"}
        assert evaluate_condition(cond("frequency", "in", ["daily", "hourly"]), values) is True
        assert evaluate_condition(cond("frequency", "not_in", ["daily", "hourly"]), values) is False
        assert evaluate_condition(cond("frequency", "not_in", ["weekly"]), values) is True


# ============================================================================
# Value Wrappers
# ============================================================================

class TestValueWrappers:
    """Typed and extracted values are unwrapped before comparison."""

    def test_extracted_value(self):
        values = {"volume": ExtractedAttributeValue(CategoricalValue("high"), confidence=0.9)}
        assert evaluate_condition(cond("volume", "equals", "high"), values) is True

    def test_typed_values(self):
        assert evaluate_condition(cond("hours", "greater_than", 10), {"hours": NumericValue(12)}) is True
        assert evaluate_condition(cond("flag", "equals", True), {"flag": BooleanValue(True)}) is True

    def test_serialized_extracted_value(self):
        values = {"volume": {"value": "high", "type": "categorical", "confidence": 0.8}}
        assert evaluate_condition(cond("volume", "equals", "high"), values) is True

    def test_values_equal_none(self):
        assert values_equal(None, None) is False
