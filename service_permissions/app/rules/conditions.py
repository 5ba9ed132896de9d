"""
Condition evaluation for the Access Permissions engine.

A condition resolves a dotted path (``resource.owner.id``, ``items[0].name``)
against the evaluation context and compares the value found there with the
condition's literal. Evaluation never raises: malformed conditions, bad
regular expressions and non-comparable operands all evaluate to False.
"""

import math
import re
from datetime import datetime
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from shared.logging import get_logger
from .models import Condition, ConditionOperator, ConditionResult, LogicalOperator, PermissionContext

_INDEXED_SEGMENT = re.compile(r"^(.+)\[(\d+)\]$")

# camelCase spellings of context fields accepted in condition paths
FIELD_ALIASES = {
    "userId": "user_id",
    "ipAddress": "ip",
    "ip_address": "ip",
}


def resolve_path(source: Any, path: str) -> Any:
    """Resolve a dotted path over mappings, sequences and dataclass fields.

    Returns None as soon as any segment is absent or None.
    """
    if not path or source is None:
        return None

    current = source
    for segment in path.split("."):
        if current is None:
            return None

        match = _INDEXED_SEGMENT.match(segment)
        if match:
            container = _get_member(current, match.group(1))
            index = int(match.group(2))
            if isinstance(container, (list, tuple)) and index < len(container):
                current = container[index]
            else:
                return None
        else:
            current = _get_member(current, segment)

    return current


def _get_member(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)

    dataclass_fields = getattr(obj, "__dataclass_fields__", None)
    if dataclass_fields is None:
        return None

    name = FIELD_ALIASES.get(name, name)
    if name in dataclass_fields:
        return getattr(obj, name)

    # Context keys the caller passed outside the known fields live in metadata
    if isinstance(obj, PermissionContext) and isinstance(obj.metadata, Mapping):
        return obj.metadata.get(name)
    return None


def _to_number(value: Any) -> Optional[float]:
    """Coerce to a number; None for anything non-numeric (bool and None included)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else value
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return None if math.isnan(number) else number
    return None


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else _to_string(item) for item in value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, (list, tuple)):
        return "sequence"
    return type(value).__name__


def strict_equals(actual: Any, expected: Any) -> bool:
    """Type-and-value equality, structural for mappings and sequences."""
    if actual is None or expected is None:
        return actual is None and expected is None

    if _kind(actual) != _kind(expected):
        return False

    if isinstance(actual, Mapping):
        return actual.keys() == expected.keys() and all(
            strict_equals(actual[key], expected[key]) for key in actual
        )

    if isinstance(actual, (list, tuple)):
        return len(actual) == len(expected) and all(
            strict_equals(a, e) for a, e in zip(actual, expected)
        )

    return actual == expected


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern, re.IGNORECASE)


def _operator_label(operator: Any) -> str:
    return operator.value if isinstance(operator, ConditionOperator) else str(operator)


class ConditionEvaluator:
    """Evaluates conditions against a context and folds their results."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("permissions.conditions")

    def evaluate(self, conditions: Sequence[Condition], context: Any) -> Tuple[bool, List[ConditionResult]]:
        """Evaluate and combine a condition list."""
        results = self.evaluate_conditions(conditions, context)
        return self.combine(results), results

    def evaluate_conditions(self, conditions: Sequence[Condition], context: Any) -> List[ConditionResult]:
        """Evaluate each condition independently, in declaration order."""
        return [self.evaluate_condition(condition, context) for condition in conditions]

    def evaluate_condition(self, condition: Condition, context: Any) -> ConditionResult:
        """Evaluate a single condition."""
        try:
            actual_value = resolve_path(context, condition.field)
            result = self.compare_values(actual_value, condition.operator, condition.value)
        except Exception as e:
            self.logger.warning(
                "Condition evaluation failed",
                field=getattr(condition, "field", None),
                operator=_operator_label(getattr(condition, "operator", None)),
                error=str(e)
            )
            return ConditionResult(
                condition=condition,
                result=False,
                reason=f"Condition error: {e}"
            )

        return ConditionResult(
            condition=condition,
            result=result,
            actual_value=actual_value,
            reason=self._describe(condition, actual_value, result)
        )

    @staticmethod
    def combine(results: Sequence[ConditionResult]) -> bool:
        """Left fold in declaration order.

        OR joins with ``acc or result``, NOT with ``acc and not result``,
        anything else with ``acc and result``. A single condition is its own
        result regardless of its logical operator.
        """
        if not results:
            return True

        if len(results) == 1:
            return results[0].result

        combined = True
        for condition_result in results:
            logical_operator = condition_result.condition.logical_operator
            if logical_operator == LogicalOperator.OR:
                combined = combined or condition_result.result
            elif logical_operator == LogicalOperator.NOT:
                combined = combined and not condition_result.result
            else:
                combined = combined and condition_result.result

        return combined

    @staticmethod
    def explain_failure(results: Sequence[ConditionResult]) -> Optional[str]:
        """Reason naming the condition that left the fold denied, or None if it passed."""
        if not results:
            return None

        if len(results) == 1:
            return None if results[0].result else results[0].reason

        combined = True
        culprit: Optional[ConditionResult] = None
        for condition_result in results:
            logical_operator = condition_result.condition.logical_operator
            if logical_operator == LogicalOperator.OR:
                combined = combined or condition_result.result
            elif logical_operator == LogicalOperator.NOT:
                combined = combined and not condition_result.result
            else:
                combined = combined and condition_result.result

            if not combined and culprit is None:
                culprit = condition_result
            elif combined:
                culprit = None

        if combined or culprit is None:
            return None

        condition = culprit.condition
        if condition.logical_operator == LogicalOperator.NOT and culprit.result:
            return (
                f"Negated condition matched: {condition.field} "
                f"{_operator_label(condition.operator)} {condition.value!r}"
            )
        return culprit.reason

    def compare_values(self, actual: Any, operator: Any, expected: Any) -> bool:
        """Apply ``operator`` to the resolved value and the condition literal."""
        if operator == ConditionOperator.EQ:
            return strict_equals(actual, expected)

        elif operator == ConditionOperator.NE:
            return not strict_equals(actual, expected)

        elif operator == ConditionOperator.IN:
            return isinstance(expected, (list, tuple, set)) and any(
                strict_equals(actual, item) for item in expected
            )

        elif operator == ConditionOperator.NIN:
            return isinstance(expected, (list, tuple, set)) and not any(
                strict_equals(actual, item) for item in expected
            )

        elif operator == ConditionOperator.GT:
            return self._compare_numbers(actual, expected, lambda a, e: a > e)

        elif operator == ConditionOperator.GTE:
            return self._compare_numbers(actual, expected, lambda a, e: a >= e)

        elif operator == ConditionOperator.LT:
            return self._compare_numbers(actual, expected, lambda a, e: a < e)

        elif operator == ConditionOperator.LTE:
            return self._compare_numbers(actual, expected, lambda a, e: a <= e)

        elif operator == ConditionOperator.CONTAINS:
            if actual is None or expected is None:
                return False
            return _to_string(expected).lower() in _to_string(actual).lower()

        elif operator == ConditionOperator.STARTS_WITH:
            if actual is None or expected is None:
                return False
            return _to_string(actual).startswith(_to_string(expected))

        elif operator == ConditionOperator.ENDS_WITH:
            if actual is None or expected is None:
                return False
            return _to_string(actual).endswith(_to_string(expected))

        elif operator == ConditionOperator.REGEX:
            return self._regex_match(actual, expected)

        else:
            self.logger.warning("Unknown condition operator", operator=_operator_label(operator))
            return False

    @staticmethod
    def _compare_numbers(actual: Any, expected: Any, compare) -> bool:
        actual_number = _to_number(actual)
        expected_number = _to_number(expected)

        if actual_number is None or expected_number is None:
            return False

        return compare(actual_number, expected_number)

    def _regex_match(self, actual: Any, pattern: Any) -> bool:
        if actual is None or pattern is None:
            return False
        try:
            regex = _compile_pattern(_to_string(pattern))
        except re.error as e:
            self.logger.warning("Invalid regular expression", pattern=str(pattern), error=str(e))
            return False
        return regex.search(_to_string(actual)) is not None

    @staticmethod
    def _describe(condition: Condition, actual_value: Any, result: bool) -> str:
        operator = _operator_label(condition.operator)
        if result:
            return f"Condition met: {condition.field} {operator} {condition.value!r}"
        return f"Condition not met: {condition.field} ({actual_value!r}) {operator} {condition.value!r}"
