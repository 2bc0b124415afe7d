"""Pure predicate evaluation for condition nodes."""
from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from typing import Any

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _to_bool(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        candidate = value.strip().lower()
        if candidate in _TRUE_STRINGS:
            return True
        if candidate in _FALSE_STRINGS:
            return False
        return None
    if isinstance(value, (int, float)):
        return value != 0
    return None


def _to_number(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def _to_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _equals(actual: object, expected: object) -> bool:
    """Compare after coercing ``actual`` to the type of the ``expected`` literal."""

    if expected is None or actual is None:
        return actual is None and expected is None

    if isinstance(expected, bool):
        return _to_bool(actual) is expected

    if isinstance(expected, (int, float)):
        number = _to_number(actual)
        return number is not None and number == float(expected)

    if isinstance(expected, str):
        # Editor literals are always strings; numeric fields still compare as numbers.
        if isinstance(actual, (int, float)) and not isinstance(actual, bool):
            number = _to_number(expected)
            if number is not None:
                return float(actual) == number
        return _to_text(actual) == expected

    return actual == expected


def _contains(actual: object, expected: object) -> bool:
    if actual is None:
        return False
    if isinstance(actual, str):
        return _to_text(expected) in actual
    if isinstance(actual, Mapping):
        return _to_text(expected) in {_to_text(key) for key in actual}
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(_equals(item, expected) for item in actual)
    return _to_text(expected) in _to_text(actual)


def _compare(actual: object, expected: object, op: Callable[[float, float], bool]) -> bool:
    left = _to_number(actual)
    right = _to_number(expected)
    if left is None or right is None:
        return False
    return op(left, right)


def _is_empty(actual: object) -> bool:
    if actual is None:
        return True
    if isinstance(actual, str):
        return actual == ""
    if isinstance(actual, (list, tuple, set, frozenset, Mapping)):
        return len(actual) == 0
    return False


_OPERATORS: dict[str, Callable[[object, object], bool]] = {
    "equals": _equals,
    "not_equals": lambda actual, expected: not _equals(actual, expected),
    "contains": _contains,
    "not_contains": lambda actual, expected: not _contains(actual, expected),
    "greater_than": lambda actual, expected: _compare(actual, expected, lambda a, b: a > b),
    "less_than": lambda actual, expected: _compare(actual, expected, lambda a, b: a < b),
    "is_empty": lambda actual, _expected: _is_empty(actual),
    "is_not_empty": lambda actual, _expected: not _is_empty(actual),
    "is_true": lambda actual, _expected: _to_bool(actual) is True,
    "is_false": lambda actual, _expected: _to_bool(actual) is False,
}

OPERATORS = frozenset(_OPERATORS)


def evaluate_condition(
    field: str, operator: str, value: Any, context: Mapping[str, Any]
) -> bool:
    """Evaluate ``context[field] <operator> value``.

    The field is looked up as a flat key. An unknown operator evaluates to
    ``False`` so a malformed condition never takes the ``true`` branch.
    """

    predicate = _OPERATORS.get(operator)
    if predicate is None:
        return False
    return predicate(context.get(field), value)
