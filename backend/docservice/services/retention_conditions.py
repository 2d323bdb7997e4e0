"""
Retention condition evaluation.

Pure functions that decide whether a document matches a policy's
condition list. Every unsupported comparison (unknown field, unknown
operator, type mismatch) fails closed and returns False, so a malformed
condition can never force a policy onto a document.

Documents may be ORM rows, plain objects or mappings.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional

from docservice.models import ConditionOperator
from docservice.utils.time_utils import parse_iso_datetime, to_naive_utc

_MISSING = object()

OPERATORS = frozenset(op.value for op in ConditionOperator)


class ConditionValidationError(ValueError):
    """Raised when a policy's condition list is malformed"""
    pass


@dataclass(frozen=True)
class RetentionCondition:
    """A single field/operator/value test"""
    field: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RetentionCondition":
        operator = data.get("operator")
        if isinstance(operator, ConditionOperator):
            operator = operator.value
        return cls(field=data.get("field"), operator=operator, value=data.get("value"))

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}


def coerce_condition(condition: Any) -> Optional[RetentionCondition]:
    """Accept a RetentionCondition or a {field, operator, value} mapping"""
    if isinstance(condition, RetentionCondition):
        return condition
    if isinstance(condition, Mapping):
        return RetentionCondition.from_dict(condition)
    return None


def get_field(document: Any, field: Any) -> Any:
    """
    Read a named field from a document.

    Returns the module sentinel when the field does not exist. Private
    names are never readable, and on ORM rows only mapped columns are.
    """
    if not isinstance(field, str) or not field or field.startswith("_"):
        return _MISSING

    if isinstance(document, Mapping):
        return document.get(field, _MISSING)

    mapper = getattr(type(document), "__mapper__", None)
    if mapper is not None and field not in mapper.column_attrs:
        return _MISSING

    value = getattr(document, field, _MISSING)
    if callable(value):
        return _MISSING
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _ordering_pair(actual: Any, expected: Any):
    """Coerce both sides of an ordering comparison, or None on mismatch"""
    if _is_number(actual) and _is_number(expected):
        return actual, expected

    if isinstance(actual, datetime):
        if isinstance(expected, str):
            expected = parse_iso_datetime(expected)
        if isinstance(expected, datetime):
            return to_naive_utc(actual), to_naive_utc(expected)
        return None

    if isinstance(actual, date):
        if isinstance(expected, str):
            parsed = parse_iso_datetime(expected)
            expected = parsed.date() if parsed is not None else None
        if isinstance(expected, date) and not isinstance(expected, datetime):
            return actual, expected
        return None

    return None


def matches(document: Any, condition: Any) -> bool:
    """Evaluate one condition against a document"""
    cond = coerce_condition(condition)
    if cond is None:
        return False

    actual = get_field(document, cond.field)
    if actual is _MISSING:
        return False

    operator = cond.operator
    expected = cond.value

    if operator == ConditionOperator.EQUALS.value:
        return actual == expected
    if operator == ConditionOperator.NOT_EQUALS.value:
        return actual != expected

    if operator in (ConditionOperator.CONTAINS.value, ConditionOperator.NOT_CONTAINS.value):
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        found = expected in actual
        return found if operator == ConditionOperator.CONTAINS.value else not found

    if operator in (ConditionOperator.GREATER_THAN.value, ConditionOperator.LESS_THAN.value):
        pair = _ordering_pair(actual, expected)
        if pair is None:
            return False
        left, right = pair
        try:
            if operator == ConditionOperator.GREATER_THAN.value:
                return left > right
            return left < right
        except TypeError:
            return False

    # Unknown operator
    return False


def matches_all(document: Any, conditions: Optional[Iterable[Any]]) -> bool:
    """Conjunction of all conditions; an empty or missing list matches"""
    if not conditions:
        return True
    return all(matches(document, condition) for condition in conditions)


def validate_conditions(
    conditions: Optional[Iterable[Any]],
    allowed_fields: Optional[Iterable[str]] = None,
) -> List[dict]:
    """
    Validate and normalize a condition list at policy create/update time.

    Args:
        conditions: Raw condition list (mappings or RetentionCondition)
        allowed_fields: Optional whitelist of document field names

    Returns:
        Normalized list of {"field", "operator", "value"} dicts

    Raises:
        ConditionValidationError: if any condition is malformed
    """
    if conditions is None:
        return []
    if isinstance(conditions, (str, bytes, Mapping)):
        raise ConditionValidationError("Conditions must be a list")

    allowed = set(allowed_fields) if allowed_fields is not None else None
    normalized = []

    for index, raw in enumerate(conditions):
        cond = coerce_condition(raw)
        if cond is None:
            raise ConditionValidationError(f"Condition {index} must be an object")
        if not isinstance(cond.field, str) or not cond.field or cond.field.startswith("_"):
            raise ConditionValidationError(f"Condition {index} has an invalid field")
        if allowed is not None and cond.field not in allowed:
            raise ConditionValidationError(f"Condition {index} references unknown field '{cond.field}'")
        if cond.operator not in OPERATORS:
            raise ConditionValidationError(f"Condition {index} has unknown operator '{cond.operator}'")

        if cond.operator in (ConditionOperator.CONTAINS.value, ConditionOperator.NOT_CONTAINS.value):
            if not isinstance(cond.value, str):
                raise ConditionValidationError(f"Condition {index}: '{cond.operator}' needs a string value")

        if cond.operator in (ConditionOperator.GREATER_THAN.value, ConditionOperator.LESS_THAN.value):
            orderable = _is_number(cond.value) or (
                isinstance(cond.value, str) and parse_iso_datetime(cond.value) is not None
            )
            if not orderable:
                raise ConditionValidationError(
                    f"Condition {index}: '{cond.operator}' needs a number or ISO-8601 date"
                )

        normalized.append(cond.to_dict())

    return normalized
