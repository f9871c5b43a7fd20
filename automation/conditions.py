"""Condition evaluation over event payloads.

Every failure mode evaluates to False: an unknown operator, a missing field,
or a value that cannot be compared never raises.
"""
import logging

logger = logging.getLogger("opswatch.automation.conditions")

_MISSING = object()


def _contains(actual, expected):
    if isinstance(actual, (str, list, tuple, set, dict)):
        return expected in actual
    return False


def _in(actual, expected):
    if isinstance(expected, (list, tuple, set)):
        return actual in expected
    if isinstance(expected, str) and isinstance(actual, str):
        return actual in expected
    return False


OPERATOR_MAP = {
    "gt": lambda a, e: a > e,
    "lt": lambda a, e: a < e,
    "gte": lambda a, e: a >= e,
    "lte": lambda a, e: a <= e,
    "eq": lambda a, e: a == e,
    "contains": _contains,
    "in": _in,
}


def resolve_path(payload, path):
    """Walk a dotted path through nested dicts; returns _MISSING when absent."""
    current = payload
    for part in str(path).split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def compare(actual, operator, expected):
    func = OPERATOR_MAP.get(operator)
    if func is None:
        logger.debug(f"Unknown operator: {operator}")
        return False
    try:
        return bool(func(actual, expected))
    except TypeError:
        return False


def evaluate_field(payload, field, operator, expected):
    actual = resolve_path(payload, field)
    if actual is _MISSING or actual is None:
        return False
    return compare(actual, operator, expected)


def condition_holds(condition, payload, confidence=None):
    """Evaluate a DecisionCondition against an event payload.

    The condition also fails when the event confidence is below the
    condition's minimum.
    """
    if confidence is not None and confidence < (condition.confidence or 0):
        return False
    return evaluate_field(payload, condition.field, condition.operator, condition.value)


def all_hold(conditions, payload):
    """Evaluate plain ``{field, operator, value}`` mappings conjunctively.

    Used for workflow triggers and condition steps. An empty list holds.
    """
    for c in conditions:
        if not isinstance(c, dict):
            return False
        if not evaluate_field(payload, c.get("field", ""), c.get("operator"), c.get("value")):
            return False
    return True
