"""Condition evaluation: do all of a rule's predicates hold for an event?

Rule conditions are written by end users, so evaluation never raises:
malformed conditions, unresolved fields, failed numeric coercion and
rejected regular expressions all evaluate to False.
"""

from __future__ import annotations

import json
import logging
import operator as op
import re
from collections.abc import Callable
from typing import Any

import regex
from pydantic import ValidationError

from automation_engine.models import Condition, Event

from .context import context_from_event, resolve_field_path

logger = logging.getLogger(__name__)

MAX_REGEX_LENGTH = 500
MAX_REGEX_SUBJECT_LENGTH = 10_000
REGEX_TIMEOUT_SECONDS = 1.0

# Heuristic shapes prone to catastrophic backtracking
_NESTED_QUANTIFIER = re.compile(r"\([^)]*[+*]\)[+*]")
_QUANTIFIED_ALTERNATION = re.compile(r"\([^)]*\|[^)]*\)[+*]{1,}")
_LARGE_REPETITION = re.compile(r"\{\d*,?\s*(\d{4,})\}")

_NUMERIC_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": op.gt,
    ">=": op.ge,
    "<": op.lt,
    "<=": op.le,
}

__all__ = [
    "MAX_REGEX_LENGTH",
    "MAX_REGEX_SUBJECT_LENGTH",
    "REGEX_TIMEOUT_SECONDS",
    "evaluate_all",
    "evaluate_condition",
    "is_dangerous_pattern",
    "resolve_field_path",
    "safe_regex_match",
]


def evaluate_all(conditions: list[Condition] | None, event: Event) -> bool:
    """Evaluate ALL conditions (AND logic). Empty list returns True."""
    if not conditions:
        return True
    context = context_from_event(event)
    return all(evaluate_condition(c, context) for c in conditions)


def evaluate_condition(condition: Condition | dict[str, Any], context: dict[str, Any]) -> bool:
    """Evaluate a single ``{field, operator, value}`` condition."""
    if isinstance(condition, dict):
        try:
            condition = Condition(**condition)
        except ValidationError:
            return False
    elif not isinstance(condition, Condition):
        return False

    if not condition.field or not condition.operator:
        return False

    actual = resolve_field_path(condition.field, context)
    if actual is None:
        return False

    return _apply_operator(condition.operator, actual, condition.value)


def _apply_operator(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "==":
        return _stringify(actual) == _stringify(expected)
    if operator == "!=":
        return _stringify(actual) != _stringify(expected)
    if operator in _NUMERIC_OPERATORS:
        return _compare_numeric(actual, expected, _NUMERIC_OPERATORS[operator])
    if operator == "contains":
        return _stringify(expected) in _stringify(actual)
    if operator == "not_contains":
        return _stringify(expected) not in _stringify(actual)
    if operator == "matches":
        return safe_regex_match(_stringify(expected), _stringify(actual)) is True
    if operator == "not_matches":
        # A rejected pattern must not read as "does not match"
        return safe_regex_match(_stringify(expected), _stringify(actual)) is False
    return False


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare_numeric(actual: Any, expected: Any, compare: Callable[[float, float], bool]) -> bool:
    a = _to_float(actual)
    e = _to_float(expected)
    if a is None or e is None:
        return False
    return compare(a, e)


def is_dangerous_pattern(pattern: str) -> bool:
    """Return True for patterns known to cause catastrophic backtracking."""
    return bool(
        _NESTED_QUANTIFIER.search(pattern)
        or _QUANTIFIED_ALTERNATION.search(pattern)
        or _LARGE_REPETITION.search(pattern)
    )


def safe_regex_match(pattern: str, text: str) -> bool | None:
    """Match ``pattern`` against ``text`` behind the safety guard.

    Matching runs on the ``regex`` engine with a time limit, so patterns
    the shape checks miss still cannot pin a worker.

    Returns True or False for a match result, or None when the pattern was
    rejected, failed to compile or timed out.
    """
    if len(pattern) > MAX_REGEX_LENGTH:
        logger.debug(f"Rejected regex longer than {MAX_REGEX_LENGTH} chars")
        return None
    if is_dangerous_pattern(pattern):
        logger.warning(f"Rejected dangerous regex pattern: {pattern[:50]}")
        return None
    try:
        compiled = regex.compile(pattern)
    except (regex.error, TypeError, ValueError):
        return None
    try:
        found = compiled.search(text[:MAX_REGEX_SUBJECT_LENGTH], timeout=REGEX_TIMEOUT_SECONDS)
    except TimeoutError:
        logger.warning(f"Regex timed out after {REGEX_TIMEOUT_SECONDS}s: {pattern[:50]}")
        return None
    return found is not None
