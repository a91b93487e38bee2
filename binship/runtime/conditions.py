"""Task condition evaluation.

Contract:
- Inputs: Conditions, plan variables, gathered facts
- Outputs: bool per condition
- Side Effects: None
"""

import logging
from collections.abc import Iterable
from collections.abc import Mapping
from typing import Any

from .errors import ConditionError
from .models import Condition
from .models import ConditionOperator

logger = logging.getLogger(__name__)

MISSING = object()


def resolve_path(path: str, *scopes: Mapping[str, Any]) -> Any:
    """Resolve a dotted path against the first scope that defines it.

    Args:
        path: Dotted path such as ``ansible.os_family`` or ``ports.0``
        *scopes: Mappings searched in order

    Returns:
        Resolved value, or MISSING when no scope defines it
    """
    parts = path.split(".")
    for scope in scopes:
        value: Any = scope
        for part in parts:
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
                value = value[int(part)]
            else:
                value = MISSING
                break
        if value is not MISSING:
            return value
    return MISSING


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _values_equal(left: Any, right: Any) -> bool:
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    if type(left) is type(right):
        return left == right
    # Mixed types compare by their string form
    return str(left) == str(right)


def _compare(left: Any, right: Any) -> int:
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)
    left_str, right_str = str(left), str(right)
    return (left_str > right_str) - (left_str < right_str)


class ConditionEvaluator:
    """Evaluates task conditions against variables and facts.

    Variables take precedence over facts when both define a path.

    Example:
        >>> evaluator = ConditionEvaluator({"env": "prod"}, {})
        >>> evaluator.evaluate(Condition(variable="env", operator="equals", value="prod"))
        True
    """

    def __init__(self, variables: Mapping[str, Any], facts: Mapping[str, Any]) -> None:
        self.variables = variables
        self.facts = facts

    def evaluate_all(self, conditions: Iterable[Condition]) -> bool:
        return all(self.evaluate(condition) for condition in conditions)

    def evaluate(self, condition: Condition) -> bool:
        """Evaluate a single condition.

        Raises:
            ConditionError: If ``contains`` is applied to a scalar value
        """
        actual = resolve_path(condition.variable, self.variables, self.facts)
        operator = condition.operator

        if operator is ConditionOperator.EXISTS:
            return actual is not MISSING
        if operator is ConditionOperator.NOT_EXISTS:
            return actual is MISSING
        if actual is MISSING:
            logger.debug(f"Condition variable {condition.variable} is undefined, treating as false")
            return False

        expected = condition.value
        if operator is ConditionOperator.EQUALS:
            return _values_equal(actual, expected)
        if operator is ConditionOperator.NOT_EQUALS:
            return not _values_equal(actual, expected)
        if operator is ConditionOperator.CONTAINS:
            if isinstance(actual, str):
                return str(expected) in actual
            if isinstance(actual, list):
                return any(_values_equal(item, expected) for item in actual)
            if isinstance(actual, Mapping):
                return str(expected) in actual
            raise ConditionError(
                f"Cannot apply 'contains' to {type(actual).__name__} value of {condition.variable}"
            )
        if operator is ConditionOperator.STARTS_WITH:
            return str(actual).startswith(str(expected))
        if operator is ConditionOperator.ENDS_WITH:
            return str(actual).endswith(str(expected))
        if operator is ConditionOperator.GREATER_THAN:
            return _compare(actual, expected) > 0
        if operator is ConditionOperator.LESS_THAN:
            return _compare(actual, expected) < 0

        raise ConditionError(f"Unsupported operator: {operator}")
