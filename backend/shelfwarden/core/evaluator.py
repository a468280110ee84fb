"""Criteria evaluator: decides whether one catalog item matches a rule."""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from shelfwarden.core.field_registry import (
    FieldDescriptor,
    ValueType,
    describe,
    normalize_resolution,
)
from shelfwarden.models.schemas import Condition, ConditionGroup

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

MediaItemSnapshot = Mapping[str, Any]


def evaluate(
    criteria: ConditionGroup,
    item: MediaItemSnapshot,
    now: Optional[datetime] = None,
) -> bool:
    """
    Evaluate a validated criteria tree against one item snapshot.

    Args:
        criteria: Root group of a rule, already validated against the registry
        item: Read-only field map produced by a catalog adapter
        now: Reference time for relative date operators (defaults to current UTC)

    Returns:
        True when the item matches. Missing fields never raise.
    """
    reference = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return _evaluate_node(criteria, item, reference)


def _evaluate_node(node, item: MediaItemSnapshot, now: datetime) -> bool:
    if isinstance(node, ConditionGroup):
        if node.operator == "AND":
            return all(_evaluate_node(child, item, now) for child in node.conditions)
        return any(_evaluate_node(child, item, now) for child in node.conditions)
    return _evaluate_condition(node, item, now)


def _resolve(item: MediaItemSnapshot, field_name: str) -> Any:
    value = item.get(field_name)
    if field_name == "neverWatched" and value is None:
        play_count = item.get("playCount")
        if play_count is not None:
            return play_count == 0
    return value


def _evaluate_condition(condition: Condition, item: MediaItemSnapshot, now: datetime) -> bool:
    descriptor = describe(condition.field)
    if descriptor is None:
        logger.warning("Unknown field in condition: %s", condition.field)
        return False

    value = _resolve(item, condition.field)
    operator = condition.operator

    if operator == "isNull":
        return value is None
    if operator == "isNotNull":
        return value is not None
    if value is None:
        return operator in descriptor.missing_matches

    try:
        if descriptor.value_type == ValueType.BOOLEAN:
            if not isinstance(value, bool):
                return False
            return _compare_equality(operator, value, condition.value)
        if descriptor.value_type == ValueType.NUMBER:
            return _evaluate_number(descriptor, condition, value)
        if descriptor.value_type == ValueType.DATE:
            return _evaluate_date(descriptor, condition, value, now)
        if descriptor.value_type == ValueType.ENUM:
            return _evaluate_ordinal(descriptor, condition, value)
        if descriptor.value_type == ValueType.STRING_SET:
            return _evaluate_set(condition, value)
        if descriptor.value_type == ValueType.STRING:
            return _evaluate_string(condition, value)
    except (TypeError, ValueError) as exc:
        logger.debug("Condition %s could not compare %r: %s", condition.id, value, exc)
        return False
    return False


def _compare_equality(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "equals":
        return actual == expected
    if operator == "notEquals":
        return actual != expected
    return False


def _compare_numbers(operator: str, actual: float, expected: float) -> bool:
    if operator == "lessThan":
        return actual < expected
    if operator == "lessThanOrEqual":
        return actual <= expected
    if operator == "greaterThan":
        return actual > expected
    if operator == "greaterThanOrEqual":
        return actual >= expected
    return _compare_equality(operator, actual, expected)


def _evaluate_number(descriptor: FieldDescriptor, condition: Condition, value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    threshold = condition.value * descriptor.unit_factor(condition.value_unit)
    return _compare_numbers(condition.operator, value, threshold)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, str):
        return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def _evaluate_date(
    descriptor: FieldDescriptor, condition: Condition, value: Any, now: datetime
) -> bool:
    moment = parse_datetime(value)
    if moment is None:
        return False
    elapsed_days = (now - moment).total_seconds() / SECONDS_PER_DAY
    threshold_days = condition.value * descriptor.unit_factor(condition.value_unit)
    if condition.operator == "olderThan":
        return elapsed_days >= threshold_days
    if condition.operator == "newerThan":
        return elapsed_days < threshold_days
    return False


def _evaluate_ordinal(descriptor: FieldDescriptor, condition: Condition, value: Any) -> bool:
    actual = normalize_resolution(value)
    if actual is None:
        return False
    operator = condition.operator
    if operator in ("in", "notIn"):
        allowed = {normalize_resolution(v) for v in condition.value}
        return (actual in allowed) == (operator == "in")

    expected = normalize_resolution(condition.value)
    if expected is None:
        return False
    return _compare_numbers(operator, descriptor.ranks[actual], descriptor.ranks[expected])


def _evaluate_set(condition: Condition, value: Any) -> bool:
    actual = {str(v) for v in value}
    wanted = [str(v) for v in condition.value]
    if condition.operator == "containsAny":
        return any(v in actual for v in wanted)
    if condition.operator == "containsAll":
        return all(v in actual for v in wanted)
    return False


def _evaluate_string(condition: Condition, value: Any) -> bool:
    actual = str(value)
    operator = condition.operator
    if operator in ("in", "notIn"):
        members = {str(v) for v in condition.value}
        return (actual in members) == (operator == "in")
    if operator == "contains":
        return str(condition.value).lower() in actual.lower()
    if operator == "startsWith":
        return actual.lower().startswith(str(condition.value).lower())
    return _compare_equality(operator, actual, str(condition.value))
