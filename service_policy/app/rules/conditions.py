"""
Condition evaluation for policy rules.

Conditions compare a request attribute, addressed by a dotted path such as
``resource.attributes.area``, against a literal value. Evaluation is total:
unresolvable paths, uncoercible operands and bad regular expressions all
yield a failed condition with a diagnostic reason.
"""

import math
import re
from typing import Any, List, Optional

from pydantic import BaseModel

from shared.logging import get_logger
from .models import AccessRequest, ConditionOperator, ConditionResult, PolicyCondition


class _Missing:
    """Marker for an attribute path that does not resolve."""

    _instance: Optional["_Missing"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

# "{resource.attributes.operator}" refers to another request attribute
_REFERENCE_RE = re.compile(r"^\{([A-Za-z_][\w.]*)\}$")


def _lookup(current: Any, key: str) -> Any:
    if isinstance(current, dict):
        return current[key] if key in current else MISSING

    if isinstance(current, BaseModel):
        fields = type(current).model_fields
        if key in fields:
            return getattr(current, key)
        for name, info in fields.items():
            if info.alias == key:
                return getattr(current, name)
        return MISSING

    if isinstance(current, (list, tuple)) and key.isdigit():
        index = int(key)
        return current[index] if index < len(current) else MISSING

    return MISSING


def resolve_attribute(path: str, request: Any) -> Any:
    """Walk a dotted path through the request.

    Returns ``MISSING`` when any segment is absent or an intermediate value
    is not a container. Model fields resolve by either their Python or wire
    name, so ``context.mfaVerified`` and ``context.mfa_verified`` agree.
    """
    if not isinstance(path, str) or not path:
        return MISSING

    current = request
    for part in path.split("."):
        if current is MISSING or current is None:
            return MISSING
        current = _lookup(current, part)

    return current


def resolve_reference(value: Any, request: AccessRequest) -> Any:
    """Resolve a ``{path}`` reference value; other values pass through."""
    if isinstance(value, str):
        match = _REFERENCE_RE.match(value)
        if match:
            return resolve_attribute(match.group(1), request)
    return value


def coerce_string(value: Any) -> str:
    """String form used by the text operators."""
    if value is MISSING or value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(coerce_string(item) for item in value)
    return str(value)


# Decimal literals only: no digit separators, no "inf" or "nan" spellings
_DECIMAL = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_INFINITY = re.compile(r"^[+-]?Infinity$")


def coerce_number(value: Any) -> float:
    """Numeric form used by the ordering operators; NaN when not numeric."""
    if value is MISSING or value is None:
        return math.nan
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _INFINITY.match(text):
            return -math.inf if text.startswith("-") else math.inf
        if not _DECIMAL.match(text):
            return math.nan
        return float(text)
    return math.nan


def strict_equals(left: Any, right: Any) -> bool:
    """Type-aware equality: ``1`` never equals ``True`` or ``"1"``."""
    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def _display(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    return coerce_string(value)


class ConditionEvaluator:
    """Evaluates policy conditions against access requests."""

    def __init__(self):
        self.logger = get_logger("policy.conditions")

    def evaluate(self, condition: PolicyCondition, request: AccessRequest) -> ConditionResult:
        """Evaluate a single condition."""
        actual = resolve_attribute(condition.attribute, request)
        expected = resolve_reference(condition.value, request)
        operator = condition.operator

        try:
            result, reason = self._apply(operator, actual, expected, condition.case_sensitive)
        except Exception as e:
            self.logger.warning(
                "Error evaluating condition",
                attribute=condition.attribute,
                operator=operator,
                error=str(e)
            )
            result, reason = False, f"Error evaluating condition: {e}"

        return ConditionResult(condition=condition, result=result, reason=reason)

    def evaluate_all(self, conditions: List[PolicyCondition], request: AccessRequest) -> List[ConditionResult]:
        """Evaluate every condition, in order."""
        return [self.evaluate(condition, request) for condition in conditions]

    def _apply(self, operator: str, actual: Any, expected: Any, case_sensitive: bool):
        shown, target = _display(actual), _display(expected)

        if operator == ConditionOperator.EQUALS:
            result = strict_equals(actual, expected)
            return result, f"{shown} {'==' if result else '!='} {target}"

        elif operator == ConditionOperator.NOT_EQUALS:
            result = not strict_equals(actual, expected)
            return result, f"{shown} {'!=' if result else '=='} {target}"

        elif operator == ConditionOperator.CONTAINS:
            result = coerce_string(expected) in coerce_string(actual)
            return result, f'"{shown}" {"contains" if result else "does not contain"} "{target}"'

        elif operator == ConditionOperator.STARTS_WITH:
            result = coerce_string(actual).startswith(coerce_string(expected))
            return result, f'"{shown}" {"starts with" if result else "does not start with"} "{target}"'

        elif operator == ConditionOperator.ENDS_WITH:
            result = coerce_string(actual).endswith(coerce_string(expected))
            return result, f'"{shown}" {"ends with" if result else "does not end with"} "{target}"'

        elif operator == ConditionOperator.REGEX:
            if not isinstance(expected, str):
                raise TypeError(f"regex pattern must be a string, got {type(expected).__name__}")
            flags = 0 if case_sensitive else re.IGNORECASE
            result = re.search(expected, coerce_string(actual), flags) is not None
            return result, f'"{shown}" {"matches" if result else "does not match"} pattern "{target}"'

        elif operator == ConditionOperator.GREATER_THAN:
            result = coerce_number(actual) > coerce_number(expected)
            return result, f"{shown} {'>' if result else '<='} {target}"

        elif operator == ConditionOperator.LESS_THAN:
            result = coerce_number(actual) < coerce_number(expected)
            return result, f"{shown} {'<' if result else '>='} {target}"

        elif operator == ConditionOperator.IN:
            result = isinstance(expected, list) and any(strict_equals(actual, item) for item in expected)
            return result, f"{shown} {'is in' if result else 'is not in'} [{target}]"

        elif operator == ConditionOperator.NOT_IN:
            result = isinstance(expected, list) and not any(strict_equals(actual, item) for item in expected)
            return result, f"{shown} {'is not in' if result else 'is in'} [{target}]"

        self.logger.warning("Unknown condition operator", operator=operator)
        return False, f"Unknown operator: {operator}"


def evaluate_condition(condition: PolicyCondition, request: AccessRequest) -> ConditionResult:
    """Evaluate a single condition."""
    return ConditionEvaluator().evaluate(condition, request)
