"""Criteria parsing, legacy migration, validation and complexity metrics."""

import logging
from typing import Any, Union

from pydantic import ValidationError

from shelfwarden.core.errors import RuleValidationError
from shelfwarden.core.field_registry import (
    LIST_VALUE_OPERATORS,
    NULL_OPERATORS,
    FieldDescriptor,
    ValueType,
    describe,
    normalize_resolution,
)
from shelfwarden.models.schemas import (
    Condition,
    ConditionGroup,
    CriteriaComplexity,
    MediaType,
    generate_node_id,
)

logger = logging.getLogger(__name__)

LEGACY_KEYS = frozenset(
    {
        "neverWatched",
        "lastWatchedBefore",
        "maxPlayCount",
        "addedBefore",
        "minFileSize",
        "maxQuality",
        "maxRating",
        "libraryIds",
        "tags",
        "operator",
    }
)

_LEGACY_SIZE_FACTORS = {"MB": 1024**2, "GB": 1024**3, "TB": 1024**4}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_legacy_criteria(raw: dict) -> bool:
    """Flat pre-tree criteria have neither a node type nor a condition list."""
    return "type" not in raw and "conditions" not in raw and set(raw) <= LEGACY_KEYS


def _legacy_condition(field: str, operator: str, value: Any, unit: str | None = None) -> dict:
    node = {
        "type": "condition",
        "id": generate_node_id(),
        "field": field,
        "operator": operator,
        "value": value,
    }
    if unit is not None:
        node["value_unit"] = unit
    return node


def migrate_legacy_criteria(legacy: dict) -> dict:
    """Convert flat legacy criteria into an equivalent root group."""
    conditions: list[dict] = []

    if legacy.get("neverWatched") is not None:
        conditions.append(_legacy_condition("neverWatched", "equals", legacy["neverWatched"]))

    last_watched = legacy.get("lastWatchedBefore")
    if last_watched:
        conditions.append(
            _legacy_condition(
                "lastWatchedAt", "olderThan", last_watched.get("value"), last_watched.get("unit")
            )
        )

    if legacy.get("maxPlayCount") is not None:
        conditions.append(
            _legacy_condition("playCount", "lessThanOrEqual", legacy["maxPlayCount"])
        )

    added = legacy.get("addedBefore")
    if added:
        conditions.append(
            _legacy_condition("addedAt", "olderThan", added.get("value"), added.get("unit"))
        )

    min_size = legacy.get("minFileSize")
    if min_size:
        factor = _LEGACY_SIZE_FACTORS.get(min_size.get("unit"), _LEGACY_SIZE_FACTORS["MB"])
        value = min_size.get("value")
        bytes_value = value * factor if _is_number(value) else value
        conditions.append(_legacy_condition("fileSize", "greaterThanOrEqual", bytes_value))

    if legacy.get("maxQuality"):
        conditions.append(
            _legacy_condition("resolution", "lessThanOrEqual", legacy["maxQuality"])
        )

    if legacy.get("maxRating") is not None:
        conditions.append(_legacy_condition("rating", "lessThanOrEqual", legacy["maxRating"]))

    if legacy.get("libraryIds"):
        conditions.append(_legacy_condition("libraryId", "in", list(legacy["libraryIds"])))

    if legacy.get("tags"):
        conditions.append(_legacy_condition("labels", "containsAny", list(legacy["tags"])))

    if not conditions:
        conditions.append(_legacy_condition("neverWatched", "equals", True))

    return {
        "type": "group",
        "id": generate_node_id(),
        "operator": legacy.get("operator") or "AND",
        "conditions": conditions,
    }


def _format_pydantic_errors(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location or 'criteria'}: {error.get('msg')}")
    return messages


def parse_criteria(
    raw: Union[dict, ConditionGroup], reject_empty_legacy: bool = False
) -> ConditionGroup:
    """Parse stored or submitted criteria into the typed tree.

    Legacy flat criteria are migrated first. Stored legacy criteria without
    any condition keys fall back to "never watched"; submitted input passes
    ``reject_empty_legacy`` so such input is refused instead. A root that is
    not a group is rejected with RuleValidationError.
    """
    if isinstance(raw, ConditionGroup):
        return raw
    if not isinstance(raw, dict):
        raise RuleValidationError(["criteria: must be an object"])
    if is_legacy_criteria(raw):
        if reject_empty_legacy and not set(raw) - {"operator"}:
            raise RuleValidationError(["criteria: at least one condition is required"])
        logger.info("Migrating legacy flat criteria to condition tree")
        raw = migrate_legacy_criteria(raw)
    if raw.get("type", "group") != "group":
        raise RuleValidationError(["root: criteria root must be a group"])
    try:
        return ConditionGroup.model_validate(raw)
    except ValidationError as exc:
        raise RuleValidationError(_format_pydantic_errors(exc)) from exc


def _validate_value(
    condition: Condition, descriptor: FieldDescriptor, path: str
) -> list[str]:
    errors: list[str] = []
    operator = condition.operator
    value = condition.value

    if operator in NULL_OPERATORS:
        return errors

    if value is None:
        return [f"{path}: value is required for operator '{operator}'"]

    if operator in LIST_VALUE_OPERATORS:
        if not isinstance(value, list) or not value:
            return [f"{path}: operator '{operator}' requires a non-empty list"]
        if descriptor.value_type == ValueType.ENUM:
            unknown = [v for v in value if normalize_resolution(v) is None]
            if unknown:
                errors.append(f"{path}: unknown {descriptor.name} value(s) {unknown}")
        elif not all(isinstance(v, str) for v in value):
            errors.append(f"{path}: '{descriptor.name}' list values must be strings")
        return errors

    if isinstance(value, list):
        return [f"{path}: operator '{operator}' does not accept a list"]

    if descriptor.value_type == ValueType.BOOLEAN:
        if not isinstance(value, bool):
            errors.append(f"{path}: '{descriptor.name}' requires a boolean value")
    elif descriptor.value_type in (ValueType.NUMBER, ValueType.DATE):
        if not _is_number(value):
            errors.append(f"{path}: '{descriptor.name}' requires a numeric value")
        else:
            if descriptor.min_value is not None and value < descriptor.min_value:
                errors.append(
                    f"{path}: '{descriptor.name}' must be >= {descriptor.min_value:g}"
                )
            if descriptor.max_value is not None and value > descriptor.max_value:
                errors.append(
                    f"{path}: '{descriptor.name}' must be <= {descriptor.max_value:g}"
                )
    elif descriptor.value_type == ValueType.ENUM:
        if normalize_resolution(value) is None:
            allowed = ", ".join(descriptor.ranks)
            errors.append(f"{path}: unknown {descriptor.name} '{value}' (expected one of {allowed})")
    elif descriptor.value_type == ValueType.STRING:
        if not isinstance(value, str):
            errors.append(f"{path}: '{descriptor.name}' requires a string value")

    return errors


def _validate_unit(condition: Condition, descriptor: FieldDescriptor, path: str) -> list[str]:
    unit = condition.value_unit
    if condition.operator in NULL_OPERATORS:
        return []
    if unit is None:
        if descriptor.unit_required:
            allowed = ", ".join(descriptor.units)
            return [f"{path}: '{descriptor.name}' requires a unit ({allowed})"]
        return []
    if not descriptor.units:
        return [f"{path}: '{descriptor.name}' does not accept a unit"]
    if unit not in descriptor.units:
        allowed = ", ".join(descriptor.units)
        return [f"{path}: unsupported unit '{unit}' for '{descriptor.name}' (expected {allowed})"]
    return []


def _validate_condition(condition: Condition, media_type: MediaType, path: str) -> list[str]:
    descriptor = describe(condition.field)
    if descriptor is None:
        return [f"{path}: unknown field '{condition.field}'"]
    if not descriptor.applies_to(media_type):
        return [f"{path}: field '{condition.field}' does not apply to {media_type.value}"]
    if condition.operator not in descriptor.operators:
        return [
            f"{path}: operator '{condition.operator}' is not supported for '{condition.field}'"
        ]
    return _validate_unit(condition, descriptor, path) + _validate_value(
        condition, descriptor, path
    )


def _validate_group(group: ConditionGroup, media_type: MediaType, path: str) -> list[str]:
    if not group.conditions:
        return [f"{path}: group must contain at least one condition"]
    errors: list[str] = []
    for index, child in enumerate(group.conditions):
        child_path = f"{path}.conditions[{index}]"
        if isinstance(child, ConditionGroup):
            errors.extend(_validate_group(child, media_type, child_path))
        else:
            errors.extend(_validate_condition(child, media_type, child_path))
    return errors


def validate_criteria(criteria: ConditionGroup, media_type: MediaType) -> list[str]:
    """Return every problem found in ``criteria``; an empty list means valid."""
    return _validate_group(criteria, media_type, "root")


def ensure_valid(raw: Union[dict, ConditionGroup], media_type: MediaType) -> ConditionGroup:
    """Parse and validate submitted criteria, raising RuleValidationError with all messages."""
    criteria = parse_criteria(raw, reject_empty_legacy=True)
    errors = validate_criteria(criteria, media_type)
    if errors:
        raise RuleValidationError(errors)
    return criteria


def criteria_complexity(criteria: ConditionGroup) -> CriteriaComplexity:
    conditions = 0
    groups = 0
    max_depth = 0

    def walk(group: ConditionGroup, depth: int) -> None:
        nonlocal conditions, groups, max_depth
        groups += 1
        max_depth = max(max_depth, depth)
        for child in group.conditions:
            if isinstance(child, ConditionGroup):
                walk(child, depth + 1)
            else:
                conditions += 1

    walk(criteria, 1)

    if conditions > 10 or max_depth > 3:
        label = "complex"
    elif conditions > 5 or max_depth > 2:
        label = "moderate"
    else:
        label = "simple"
    return CriteriaComplexity(
        condition_count=conditions,
        group_count=groups,
        max_depth=max_depth,
        complexity=label,
    )
