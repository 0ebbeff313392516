"""
Predicate evaluation shared by Condition branches and trigger filters.

Field resolution is sandboxed the same way template resolution is: only
dict keys and list indices are walked, never attributes.
"""

import logging
import re
from decimal import Decimal
from functools import lru_cache
from typing import Any, Iterable

from automation_engine.core.errors import EvaluationError
from automation_engine.core.models import FilterLogic, FilterRule, Operator

logger = logging.getLogger(__name__)


class _Undefined:
    """Marker for a field path that does not exist in the context (distinct from None)."""

    _instance = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Undefined":
        return self

    def __deepcopy__(self, memo: dict) -> "_Undefined":
        return self


UNDEFINED = _Undefined()

_NUMERIC_OPERATORS = {Operator.GT, Operator.LT, Operator.GTE, Operator.LTE}
_LIST_OPERATORS = {Operator.IN, Operator.NOT_IN}


def resolve_field(context: Any, path: str) -> Any:
    """
    Walk a dotted path ("user.kycLevel", "items.0.sku") into the context.

    Returns UNDEFINED when any segment is missing.
    """
    current = context
    for key in path.split("."):
        if isinstance(current, dict):
            if key not in current:
                return UNDEFINED
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.lstrip("-").isdigit():
            index = int(key)
            if not -len(current) <= index < len(current):
                return UNDEFINED
            current = current[index]
        else:
            return UNDEFINED
    return current


def is_numeric(value: Any) -> bool:
    """Numbers only; bool is deliberately excluded."""
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def structural_equals(left: Any, right: Any) -> bool:
    """Equality that does not conflate booleans with 0/1."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(
            structural_equals(left[k], right[k]) for k in left
        )
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(
            structural_equals(a, b) for a, b in zip(left, right)
        )
    return left == right


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a `matches` pattern (case-insensitive, search semantics)."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise EvaluationError(f"Invalid pattern {pattern!r}: {e}", operator=Operator.MATCHES.value) from e


def _membership(actual: Any, expected: Any, operator: Operator) -> bool:
    if not isinstance(expected, (list, tuple, set, frozenset)):
        raise EvaluationError(
            f"Operator '{operator.value}' requires a list value, got {type(expected).__name__}",
            operator=operator.value,
        )
    return any(structural_equals(actual, item) for item in expected)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        if expected is None:
            return False
        return str(expected).lower() in actual.lower()
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(structural_equals(item, expected) for item in actual)
    if isinstance(actual, dict):
        return expected in actual
    raise EvaluationError(
        f"Operator 'contains' requires a string or list field, got {type(actual).__name__}",
        operator=Operator.CONTAINS.value,
    )


def _matches(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, str):
        raise EvaluationError("Operator 'matches' requires a string pattern", operator=Operator.MATCHES.value)
    if isinstance(actual, str):
        subject = actual
    elif is_numeric(actual):
        subject = str(actual)
    else:
        raise EvaluationError(
            f"Operator 'matches' requires a string field, got {type(actual).__name__}",
            operator=Operator.MATCHES.value,
        )
    return compile_pattern(expected).search(subject) is not None


def apply_operator(operator: Operator | str, actual: Any, expected: Any) -> bool:
    """
    Apply an operator to a resolved field value.

    Any comparison against UNDEFINED is False except `!=`, which is True.

    Raises:
        EvaluationError: on operand type mismatch or an unusable pattern
    """
    operator = Operator(operator)

    if actual is UNDEFINED:
        return operator == Operator.NE

    if operator == Operator.EQ:
        return structural_equals(actual, expected)
    if operator == Operator.NE:
        return not structural_equals(actual, expected)

    if operator in _NUMERIC_OPERATORS:
        if not (is_numeric(actual) and is_numeric(expected)):
            raise EvaluationError(
                f"Operator '{operator.value}' requires numeric operands, "
                f"got {type(actual).__name__} and {type(expected).__name__}",
                operator=operator.value,
            )
        if operator == Operator.GT:
            return actual > expected
        if operator == Operator.LT:
            return actual < expected
        if operator == Operator.GTE:
            return actual >= expected
        return actual <= expected

    if operator == Operator.IN:
        return _membership(actual, expected, operator)
    if operator == Operator.NOT_IN:
        return not _membership(actual, expected, operator)
    if operator == Operator.CONTAINS:
        return _contains(actual, expected)
    if operator == Operator.MATCHES:
        return _matches(actual, expected)

    raise EvaluationError(f"Unsupported operator: {operator.value}", operator=operator.value)


def evaluate_predicate(context: dict[str, Any], field: str, operator: Operator | str, value: Any) -> bool:
    """Resolve `field` in the context and apply the operator, tagging errors with the field."""
    actual = resolve_field(context, field)
    try:
        return apply_operator(operator, actual, value)
    except EvaluationError as e:
        if e.field is None:
            e.field = field
        raise


def evaluate_filter(
    rules: Iterable[FilterRule],
    logic: FilterLogic,
    context: dict[str, Any],
    enabled: bool = True,
) -> bool:
    """
    Evaluate a trigger filter.

    A disabled or empty filter always matches. A rule that raises an
    EvaluationError counts as non-matching.
    """
    rules = list(rules)
    if not enabled or not rules:
        return True

    results = []
    for rule in rules:
        try:
            results.append(evaluate_predicate(context, rule.field, rule.operator, rule.value))
        except EvaluationError as e:
            logger.warning(f"Trigger filter rule on '{rule.field}' failed: {e}")
            results.append(False)

    if logic == FilterLogic.AND:
        return all(results)
    return any(results)


def validate_operand(operator: Operator, value: Any) -> list[str]:
    """Static checks on a configured operand. Returns problems as text."""
    problems = []
    if operator in _LIST_OPERATORS and not isinstance(value, list):
        problems.append(f"operator '{operator.value}' requires a list value")
    elif operator in _NUMERIC_OPERATORS and not is_numeric(value):
        problems.append(f"operator '{operator.value}' requires a numeric value")
    elif operator == Operator.MATCHES:
        if not isinstance(value, str):
            problems.append("operator 'matches' requires a string pattern")
        else:
            try:
                compile_pattern(value)
            except EvaluationError as e:
                problems.append(str(e))
    return problems
