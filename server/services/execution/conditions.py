"""Condition evaluation for condition nodes.

Evaluates predicates against the execution variables and the contact to
decide which labeled edge a condition node follows.

Supported operators:
- equals / not_equals: loose equality (numeric when both sides are numbers)
- contains / not_contains: substring test on the string form
- starts_with / ends_with: prefix/suffix test on the string form
- greater_than / less_than / greater_than_or_equal / less_than_or_equal:
  numeric comparison, false when either side is not a number
- is_empty / is_not_empty: None, "", empty list or dict

Unknown operators evaluate to False instead of raising.
"""

from typing import Any, Callable, Dict, List, Optional

from core.logging import get_logger
from .templates import CONTACT_PREFIX, resolve_contact_field

logger = get_logger(__name__)


# Type alias for condition dict
ConditionDict = Dict[str, Any]


def get_nested_value(data: Dict[str, Any], field_path: str) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Examples:
        >>> get_nested_value({"trigger": {"message": "hi"}}, "trigger.message")
        'hi'
        >>> get_nested_value({"items": [{"name": "a"}]}, "items.0.name")
        'a'
    """
    if not data or not field_path:
        return None

    if field_path in data:
        return data[field_path]

    current: Any = data
    for part in field_path.split('.'):
        if current is None:
            return None

        if part.isdigit():
            index = int(part)
            if isinstance(current, (list, tuple)) and 0 <= index < len(current):
                current = current[index]
            else:
                return None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None

    return current


def resolve_field(field: str, variables: Dict[str, Any], contact: Dict[str, Any]) -> Any:
    """Value referenced by a condition: ``contact.X`` or a (dotted) variable name."""
    if field.startswith(CONTACT_PREFIX):
        return resolve_contact_field(contact, field[len(CONTACT_PREFIX):])
    return get_nested_value(variables, field)


def evaluate_condition(condition: ConditionDict, variables: Dict[str, Any],
                       contact: Optional[Dict[str, Any]] = None) -> bool:
    """Evaluate one predicate.

    Args:
        condition: {"field": "contact.engagement_score", "operator": "greater_than", "value": 50}
        variables: Execution variables
        contact: Contact fields, including ``custom_fields``

    Returns:
        True if the predicate holds, False otherwise
    """
    field = condition.get("field") or ""
    operator = condition.get("operator") or ""
    target_value = condition.get("value")

    actual_value = resolve_field(field, variables, contact or {})

    try:
        result = _evaluate_operator(operator, actual_value, target_value)
    except Exception as e:
        logger.warning("Condition evaluation error",
                      field=field,
                      operator=operator,
                      error=str(e))
        return False

    logger.debug("Condition evaluated",
                field=field,
                operator=operator,
                target=target_value,
                actual=actual_value,
                result=result)
    return result


def _evaluate_operator(operator: str, actual: Any, target: Any) -> bool:
    """Evaluate a single operator."""
    # Equality
    if operator == "equals":
        return _loose_equals(actual, target)

    elif operator == "not_equals":
        return not _loose_equals(actual, target)

    # String operators
    elif operator == "contains":
        return _text(target) in _text(actual)

    elif operator == "not_contains":
        return _text(target) not in _text(actual)

    elif operator == "starts_with":
        return _text(actual).startswith(_text(target))

    elif operator == "ends_with":
        return _text(actual).endswith(_text(target))

    # Numeric comparison
    elif operator == "greater_than":
        return _safe_compare(actual, target, lambda a, b: a > b)

    elif operator == "less_than":
        return _safe_compare(actual, target, lambda a, b: a < b)

    elif operator == "greater_than_or_equal":
        return _safe_compare(actual, target, lambda a, b: a >= b)

    elif operator == "less_than_or_equal":
        return _safe_compare(actual, target, lambda a, b: a <= b)

    # Empty checks
    elif operator == "is_empty":
        return _is_empty(actual)

    elif operator == "is_not_empty":
        return not _is_empty(actual)

    else:
        logger.warning("Unknown operator", operator=operator)
        return False


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _to_number(value: Any) -> Optional[float]:
    """Numeric form of ``value``, or None when it is not a number."""
    if value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _loose_equals(actual: Any, target: Any) -> bool:
    if actual is None or target is None:
        return actual is None and target is None

    if type(actual) is type(target):
        return actual == target

    actual_num, target_num = _to_number(actual), _to_number(target)
    if actual_num is not None and target_num is not None:
        return actual_num == target_num

    return _text(actual) == _text(target)


def _safe_compare(actual: Any, target: Any, comparator: Callable[[float, float], bool]) -> bool:
    """Compare both sides as numbers; False if either is not numeric."""
    actual_num, target_num = _to_number(actual), _to_number(target)
    if actual_num is None or target_num is None:
        return False
    return comparator(actual_num, target_num)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple)):
        return len(value) == 0
    return False


def evaluate_conditions(conditions: List[ConditionDict], variables: Dict[str, Any],
                        contact: Optional[Dict[str, Any]] = None,
                        logic: str = "AND") -> bool:
    """Evaluate multiple conditions with AND/OR logic.

    An empty list is true. A combinator other than AND/OR is false.
    """
    if not conditions:
        return True

    results = [evaluate_condition(c, variables, contact) for c in conditions]

    logic = (logic or "AND").upper()
    if logic == "AND":
        return all(results)
    elif logic == "OR":
        return any(results)

    logger.warning("Unknown condition logic", logic=logic)
    return False
