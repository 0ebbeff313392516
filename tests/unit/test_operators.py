"""
Unit tests for operator semantics and field resolution.
"""

import copy

import pytest

from automation_engine.core.errors import EvaluationError
from automation_engine.core.models import FilterLogic, FilterRule, Operator
from automation_engine.core.operators import (
    UNDEFINED,
    apply_operator,
    evaluate_filter,
    evaluate_predicate,
    resolve_field,
    validate_operand,
)


class TestResolveField:
    """Dotted path resolution."""

    def test_nested_dict(self):
        assert resolve_field({"user": {"kycLevel": "L2"}}, "user.kycLevel") == "L2"

    def test_list_index(self):
        context = {"items": [{"sku": "BTC"}, {"sku": "ETH"}]}

        assert resolve_field(context, "items.1.sku") == "ETH"
        assert resolve_field(context, "items.-1.sku") == "ETH"
        assert resolve_field(context, "items.5.sku") is UNDEFINED

    def test_missing_is_undefined_not_none(self):
        """Test a missing path differs from an explicit null."""
        assert resolve_field({"user": {}}, "user.kycLevel") is UNDEFINED
        assert resolve_field({"user": {"kycLevel": None}}, "user.kycLevel") is None

    def test_no_attribute_access(self):
        assert resolve_field({"name": "abc"}, "name.upper") is UNDEFINED

    def test_undefined_is_a_singleton(self):
        assert copy.deepcopy(UNDEFINED) is UNDEFINED
        assert not UNDEFINED


class TestApplyOperator:
    """Operator table."""

    @pytest.mark.parametrize(
        "operator,actual,expected,result",
        [
            ("==", 5, 5, True),
            ("==", {"a": [1, 2]}, {"a": [1, 2]}, True),
            ("==", True, 1, False),
            ("!=", "EUR", "USD", True),
            (">", 5000, 1000, True),
            (">", 500, 1000, False),
            ("<=", 1000, 1000, True),
            (">=", 2.5, 3, False),
            ("in", "L1", ["L1", "L2"], True),
            ("not_in", "L3", ["L1", "L2"], True),
            ("contains", "Hello World", "WORLD", True),
            ("contains", ["DE", "FR"], "FR", True),
            ("contains", ["DE", "FR"], "IT", False),
            ("matches", "alice@Example.com", r"@example\.com$", True),
            ("matches", "alice@example.org", r"@example\.com$", False),
        ],
    )
    def test_operator_table(self, operator, actual, expected, result):
        assert apply_operator(operator, actual, expected) is result

    @pytest.mark.parametrize("operator", ["==", ">", "<", ">=", "<=", "in", "not_in", "contains", "matches"])
    def test_undefined_is_false(self, operator):
        """Test every operator except != is false against a missing field."""
        value = ["x"] if operator in ("in", "not_in") else 1
        assert apply_operator(operator, UNDEFINED, value) is False

    def test_undefined_not_equal_is_true(self):
        assert apply_operator("!=", UNDEFINED, 1) is True

    def test_bool_is_not_numeric(self):
        with pytest.raises(EvaluationError):
            apply_operator(">", True, 0)

    def test_string_vs_number_ordering_fails(self):
        with pytest.raises(EvaluationError) as exc_info:
            apply_operator(">", "5000", 1000)

        assert exc_info.value.operator == ">"

    def test_membership_requires_list(self):
        with pytest.raises(EvaluationError):
            apply_operator("in", "L1", "L1")

    def test_bad_pattern(self):
        with pytest.raises(EvaluationError):
            apply_operator("matches", "abc", "(")


class TestEvaluatePredicate:
    def test_errors_name_the_field(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate_predicate({"amount": "lots"}, "amount", Operator.GT, 10)

        assert exc_info.value.field == "amount"


class TestEvaluateFilter:
    """Trigger filters."""

    def _rules(self, *rules):
        return [FilterRule(field=f, operator=o, value=v) for f, o, v in rules]

    def test_empty_filter_matches(self):
        assert evaluate_filter([], FilterLogic.AND, {}) is True

    def test_disabled_filter_matches(self):
        rules = self._rules(("amount", ">", 10))
        assert evaluate_filter(rules, FilterLogic.AND, {"amount": 1}, enabled=False) is True

    def test_and_logic(self):
        rules = self._rules(("amount", ">", 10), ("currency", "==", "EUR"))

        assert evaluate_filter(rules, FilterLogic.AND, {"amount": 20, "currency": "EUR"}) is True
        assert evaluate_filter(rules, FilterLogic.AND, {"amount": 20, "currency": "USD"}) is False

    def test_or_logic(self):
        rules = self._rules(("amount", ">", 10), ("currency", "==", "EUR"))

        assert evaluate_filter(rules, FilterLogic.OR, {"amount": 1, "currency": "EUR"}) is True
        assert evaluate_filter(rules, FilterLogic.OR, {"amount": 1, "currency": "USD"}) is False

    def test_erroring_rule_does_not_match(self):
        rules = self._rules(("amount", ">", 10))
        assert evaluate_filter(rules, FilterLogic.AND, {"amount": "twenty"}) is False


class TestValidateOperand:
    def test_problems(self):
        assert validate_operand(Operator.IN, "x") == ["operator 'in' requires a list value"]
        assert validate_operand(Operator.GT, "10") == ["operator '>' requires a numeric value"]
        assert validate_operand(Operator.MATCHES, "[a-z]+") == []
        assert validate_operand(Operator.EQ, {"any": "thing"}) == []
