"""Condition evaluator: applies an operator to an expected and an observed value.

Numbers are compared as ``decimal.Decimal``. Floats are converted through
their shortest ``repr`` (``0.1`` becomes ``Decimal('0.1')``), numeric strings
are parsed, and booleans, NaN and infinities are never numeric. This keeps
large registry DWORD/QWORD values exact and avoids binary float drift.

A probe signals "no value" by returning ``None``; only Exists/NotExists look
at presence, every other operator looks at content.
"""

from __future__ import annotations

import json
import re
from decimal import Decimal
from typing import Any, Callable

from ..workflow.errors import EvaluatorError
from ..workflow.schemas import Condition
from ..workflow.types import OperatorType, to_decimal

_SEQUENCE_TYPES = (list, tuple)


# =============================================================================
# Value normalization
# =============================================================================


def as_text(value: Any) -> str:
    """Lexical view of a value: booleans as true/false, None as null."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (dict, *_SEQUENCE_TYPES)):
        return json.dumps(value, default=str)
    return str(value)


def _show(value: Any) -> str:
    return json.dumps(value, default=str)


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, _SEQUENCE_TYPES):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def values_equal(left: Any, right: Any) -> bool:
    """Equality on normalized values.

    Numeric when both sides are numeric, structural for arrays and objects,
    otherwise exact text. ``None`` only equals ``None``.
    """
    if isinstance(left, _SEQUENCE_TYPES) and isinstance(right, _SEQUENCE_TYPES):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(values_equal(left[k], right[k]) for k in left)
    if isinstance(left, (dict, *_SEQUENCE_TYPES)) or isinstance(right, (dict, *_SEQUENCE_TYPES)):
        return False
    if left is None or right is None:
        return left is None and right is None

    left_number, right_number = to_decimal(left), to_decimal(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    return as_text(left) == as_text(right)


# =============================================================================
# Operators
# =============================================================================


def _eval_equals(expected: Any, observed: Any) -> tuple[bool, str]:
    if values_equal(observed, expected):
        return True, f"Observed {_show(observed)} equals expected {_show(expected)}"
    return False, f"Observed {_show(observed)} does not equal expected {_show(expected)}"


def _eval_not_equals(expected: Any, observed: Any) -> tuple[bool, str]:
    if values_equal(observed, expected):
        return False, f"Observed {_show(observed)} equals {_show(expected)}, expected a different value"
    return True, f"Observed {_show(observed)} differs from {_show(expected)}"


def _numeric_pair(operator: OperatorType, expected: Any, observed: Any) -> tuple[Decimal, Decimal]:
    observed_number = to_decimal(observed)
    if observed_number is None:
        raise EvaluatorError(
            f"Type mismatch: {operator.value} requires a numeric observed value, "
            f"got {_kind(observed)} {_show(observed)}"
        )
    expected_number = to_decimal(expected)
    if expected_number is None:
        raise EvaluatorError(
            f"Type mismatch: {operator.value} requires a numeric expected value, "
            f"got {_kind(expected)} {_show(expected)}"
        )
    return observed_number, expected_number


def _eval_greater_than(expected: Any, observed: Any) -> tuple[bool, str]:
    actual, bound = _numeric_pair(OperatorType.GREATER_THAN, expected, observed)
    if actual > bound:
        return True, f"Observed {actual} is greater than {bound}"
    return False, f"Observed {actual} is not greater than {bound}"


def _eval_less_than(expected: Any, observed: Any) -> tuple[bool, str]:
    actual, bound = _numeric_pair(OperatorType.LESS_THAN, expected, observed)
    if actual < bound:
        return True, f"Observed {actual} is less than {bound}"
    return False, f"Observed {actual} is not less than {bound}"


def _contains(operator: OperatorType, expected: Any, observed: Any) -> bool:
    if isinstance(observed, str):
        if expected is None or isinstance(expected, (dict, *_SEQUENCE_TYPES)):
            raise EvaluatorError(
                f"Type mismatch: {operator.value} on text requires a scalar expected value, "
                f"got {_kind(expected)}"
            )
        return as_text(expected) in observed
    if isinstance(observed, (*_SEQUENCE_TYPES, set, frozenset)):
        return any(values_equal(item, expected) for item in observed)
    raise EvaluatorError(
        f"Type mismatch: {operator.value} requires text or an array, "
        f"got {_kind(observed)} {_show(observed)}"
    )


def _eval_contains(expected: Any, observed: Any) -> tuple[bool, str]:
    if _contains(OperatorType.CONTAINS, expected, observed):
        return True, f"Observed {_show(observed)} contains {_show(expected)}"
    return False, f"Observed {_show(observed)} does not contain {_show(expected)}"


def _eval_not_contains(expected: Any, observed: Any) -> tuple[bool, str]:
    if _contains(OperatorType.NOT_CONTAINS, expected, observed):
        return False, f"Observed {_show(observed)} contains {_show(expected)}"
    return True, f"Observed {_show(observed)} does not contain {_show(expected)}"


def _eval_regex_match(expected: Any, observed: Any) -> tuple[bool, str]:
    if not isinstance(expected, str):
        raise EvaluatorError(
            f"Type mismatch: RegexMatch requires a string pattern, got {_kind(expected)}"
        )
    try:
        pattern = re.compile(expected)
    except re.error as exc:
        raise EvaluatorError(f"Invalid regular expression {_show(expected)}: {exc}") from None
    if observed is None or isinstance(observed, (dict, *_SEQUENCE_TYPES)):
        raise EvaluatorError(
            f"Type mismatch: RegexMatch requires a scalar observed value, got {_kind(observed)}"
        )

    text = as_text(observed)
    if pattern.fullmatch(text):
        return True, f"Observed {_show(text)} matches /{expected}/"
    return False, f"Observed {_show(text)} does not match /{expected}/"


def _eval_exists(expected: Any, observed: Any) -> tuple[bool, str]:
    if observed is not None:
        return True, "Probe returned a value"
    return False, "Probe returned no value"


def _eval_not_exists(expected: Any, observed: Any) -> tuple[bool, str]:
    if observed is None:
        return True, "Probe returned no value"
    return False, f"Probe returned a value: {_show(observed)}"


OPERATORS: dict[OperatorType, Callable[[Any, Any], tuple[bool, str]]] = {
    OperatorType.EQUALS: _eval_equals,
    OperatorType.NOT_EQUALS: _eval_not_equals,
    OperatorType.GREATER_THAN: _eval_greater_than,
    OperatorType.LESS_THAN: _eval_less_than,
    OperatorType.CONTAINS: _eval_contains,
    OperatorType.NOT_CONTAINS: _eval_not_contains,
    OperatorType.REGEX_MATCH: _eval_regex_match,
    OperatorType.EXISTS: _eval_exists,
    OperatorType.NOT_EXISTS: _eval_not_exists,
}


def evaluate_condition(operator: OperatorType | str, expected: Any, observed: Any) -> tuple[bool, str]:
    """Apply ``operator`` to ``observed`` against ``expected``.

    Returns:
        (result, explanation)

    Raises:
        EvaluatorError: the operator cannot be applied to these value types.
    """
    try:
        operator = OperatorType(operator)
    except ValueError:
        raise EvaluatorError(f"Unknown operator '{operator}'") from None
    return OPERATORS[operator](expected, observed)


def evaluate(condition: Condition, observed: Any) -> tuple[bool, str]:
    """Evaluate a rule condition against a probed value."""
    return evaluate_condition(condition.operator, condition.expected, observed)
