"""
Partial update helpers with change detection.

get_changed_fields() compares a record's current values with a proposed
partial update and returns only the columns that actually change, so
update handlers write the minimal patch. Per-field comparators can
override equality, normalize the proposed value, or expand one logical
edit into several columns.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


class _NotProvided:
    """Marker for "no value proposed", distinct from None ("set to empty")."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_PROVIDED"

    def __bool__(self) -> bool:
        return False


NOT_PROVIDED: Any = _NotProvided()


@dataclass
class FieldComparator:
    """
    How to compare and write one field.

    Attributes:
        equals: Custom equality check (current, proposed) -> bool.
        transform: Normalizes the proposed value before comparison,
            e.g. empty string to None. Returning NOT_PROVIDED skips the field.
        map: Called as map(value, current, update) when the field (or any
            field in depends_on) changed. Its dict is merged into the patch
            in place of the field itself and may set sibling fields.
        depends_on: Fields whose change also triggers map.
    """
    equals: Callable[[Any, Any], bool] | None = None
    transform: Callable[[Any], Any] | None = None
    map: Callable[[Any, Mapping[str, Any], Mapping[str, Any]], dict[str, Any]] | None = None
    depends_on: list[str] = field(default_factory=list)


def _is_unset(value: Any) -> bool:
    return value is None or value is NOT_PROVIDED


def values_equal(current: Any, new: Any, comparator: FieldComparator | None = None) -> bool:
    """
    Compare two field values.

    Uses the comparator's equals when given. Otherwise datetimes compare by
    instant, None and NOT_PROVIDED are equivalent, and everything else uses ==.
    """
    if comparator is not None and comparator.equals is not None:
        return comparator.equals(current, new)

    if isinstance(current, (datetime, date)) and isinstance(new, (datetime, date)):
        return date_equals(current, new)

    if _is_unset(current) and _is_unset(new):
        return True

    return current == new


def _dependency_changed(
    depends_on: Iterable[str],
    current_data: Mapping[str, Any],
    update_data: Mapping[str, Any],
) -> bool:
    for dep in depends_on:
        if dep not in update_data or dep not in current_data:
            continue
        dep_value = update_data[dep]
        if dep_value is NOT_PROVIDED:
            continue
        # dependent fields always use default equality
        if not values_equal(current_data[dep], dep_value):
            return True
    return False


def get_changed_fields(
    current_data: Mapping[str, Any],
    update_data: Mapping[str, Any],
    field_comparators: Mapping[str, FieldComparator] | None = None,
    fields_to_check: Iterable[str] | None = None,
) -> dict[str, Any]:
    """
    Return only the fields of update_data that differ from current_data.

    Args:
        current_data: Persisted values.
        update_data: Proposed values. Missing keys and NOT_PROVIDED values
            are not proposed; None means "set to empty".
        field_comparators: Optional per-field FieldComparator.
        fields_to_check: Fields to consider, defaults to every key of update_data.

    Returns:
        The patch: field -> new value, including any fields emitted by map.

    Example:
        changes = get_changed_fields(
            current_user,
            {"email": "", "username": "Alice"},
            {
                "email": FieldComparator(transform=empty_to_null),
                "username": FieldComparator(map=lambda v, cur, upd: {"username": v.lower(), "name": v}),
            },
            ["email", "username"],
        )
    """
    comparators = field_comparators or {}
    keys = list(fields_to_check) if fields_to_check is not None else list(update_data.keys())
    changes: dict[str, Any] = {}

    for key in keys:
        if key not in update_data:
            continue
        if key not in current_data:
            continue

        new_value = update_data[key]
        if new_value is NOT_PROVIDED:
            continue

        current_value = current_data[key]
        comparator = comparators.get(key)

        if comparator is not None and comparator.map is not None:
            changed = not values_equal(current_value, new_value, comparator)
            if not changed and comparator.depends_on:
                changed = _dependency_changed(comparator.depends_on, current_data, update_data)

            if changed:
                changes.update(comparator.map(new_value, current_data, update_data))
            continue

        transformed = new_value
        if comparator is not None and comparator.transform is not None:
            transformed = comparator.transform(new_value)
            if transformed is NOT_PROVIDED:
                continue

        if not values_equal(current_value, transformed, comparator):
            changes[key] = transformed

    return changes


def create_field_map(fields: Iterable[str]) -> Callable[[dict[str, FieldComparator]], dict[str, FieldComparator]]:
    """
    Build a checker ensuring a comparator map covers exactly the given fields.

    Usage:
        USER_FIELDS = create_field_map(["email", "role"])({
            "email": FieldComparator(transform=empty_to_null),
            "role": FieldComparator(),
        })
    """
    expected = set(fields)

    def _check(comparators: dict[str, FieldComparator]) -> dict[str, FieldComparator]:
        missing = expected - set(comparators)
        extra = set(comparators) - expected
        if missing or extra:
            raise ValueError(f"Field map mismatch: missing={sorted(missing)}, unexpected={sorted(extra)}")
        return comparators

    return _check


def date_equals(a: Any, b: Any) -> bool:
    """Compare two dates/datetimes by instant. Unset values only equal other unset values."""
    if _is_unset(a) and _is_unset(b):
        return True
    if _is_unset(a) or _is_unset(b):
        return False
    if not isinstance(a, (datetime, date)) or not isinstance(b, (datetime, date)):
        return False
    # aware datetimes compare by instant; naive vs aware is never equal
    return a == b


def empty_to_null(value: Any) -> Any:
    """Turn an empty string into None. NOT_PROVIDED passes through untouched."""
    if value is NOT_PROVIDED:
        return NOT_PROVIDED
    if value == "":
        return None
    return value
