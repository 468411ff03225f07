"""
Setting Data Shaping
====================

Translation between backend rows and in-app records, applied exactly once
at the state-store boundary:

- ``settings`` rows carry fixed columns (``sku``, ``leg_number``,
  ``case_size``, ``last_updated``) plus one JSON ``data`` column holding every
  dynamic field value;
- ``fields`` rows carry ``category_id``.

Also computes the field-by-field change set recorded in history entries and
validates dynamic payloads against the field catalog.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from blueprint.schemas.catalog import FieldDefinition, Setting


# Fixed-column aliases accepted on input, mapped to their external names.
_FIXED_ALIASES = {
    "sku": "sku",
    "legNumber": "legNumber",
    "leg_number": "legNumber",
    "caseSize": "caseSize",
    "case_size": "caseSize",
}

# Keys that never belong in the dynamic payload.
_RESERVED_KEYS = frozenset({"id", "lastUpdated", "last_updated", "created_at", "createdAt", "data", "values"})


def flatten_setting_row(row: Mapping[str, Any]) -> Setting:
    """Build a Setting from a ``settings`` row; a non-object ``data`` column raises ``TypeError``."""
    payload = row.get("data") or {}
    if not isinstance(payload, Mapping):
        raise TypeError(f"settings row {row.get('id')!r}: data must be an object, got {type(payload).__name__}")
    return Setting(
        id=row["id"],
        sku=row.get("sku"),
        leg_number=row.get("leg_number"),
        case_size=row.get("case_size"),
        last_updated=row.get("last_updated"),
        values=dict(payload),
    )


def split_setting_input(data: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Split a flat setting form into fixed columns and the dynamic payload.

    Returns:
        (fixed, dynamic) where ``fixed`` is keyed ``sku``/``legNumber``/``caseSize``
    """
    fixed: Dict[str, Any] = {"sku": None, "legNumber": None, "caseSize": None}
    dynamic: Dict[str, Any] = {}

    nested = data.get("values")
    if isinstance(nested, Mapping):
        dynamic.update(nested)

    for key, value in data.items():
        if key in _FIXED_ALIASES:
            fixed[_FIXED_ALIASES[key]] = "" if value is None else str(value).strip()
        elif key not in _RESERVED_KEYS:
            dynamic[key] = value
    return fixed, dynamic


def setting_to_row(fixed: Mapping[str, Any], dynamic: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    """Build a ``settings`` row for insert/update."""
    return {
        "sku": fixed.get("sku"),
        "leg_number": fixed.get("legNumber"),
        "case_size": fixed.get("caseSize"),
        "last_updated": now.isoformat(),
        "data": dict(dynamic),
    }


def field_from_row(row: Mapping[str, Any]) -> FieldDefinition:
    return FieldDefinition(
        id=row["id"],
        name=row.get("name") or "",
        key=row.get("key") or "",
        type=row.get("type") or "text",
        category_id=row.get("category_id"),
    )


def field_to_row(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Map field attributes to storage columns, keeping only the keys present."""
    row: Dict[str, Any] = {}
    for key in ("name", "key", "type"):
        if data.get(key) is not None:
            row[key] = data[key]
    category_id = data.get("categoryId", data.get("category_id"))
    if category_id is not None:
        row["category_id"] = category_id
    return row


def diff_setting(
    old: Setting,
    fixed: Mapping[str, Any],
    dynamic: Mapping[str, Any],
) -> Dict[str, Dict[str, Any]]:
    """
    Field-by-field changes between a stored setting and new input.

    Covers the fixed fields and every key of the new dynamic payload; keys
    missing from the new payload are not reported as removals.
    """
    changes: Dict[str, Dict[str, Any]] = {}
    for key in ("sku", "caseSize", "legNumber"):
        before = old.get(key)
        after = fixed.get(key)
        if before != after:
            changes[key] = {"from": before, "to": after}
    for key, after in dynamic.items():
        before = old.values.get(key)
        if before != after:
            changes[key] = {"from": before, "to": after}
    return changes


def derive_field_key(name: str) -> str:
    """Machine key for a field display name: lower-cased, whitespace runs as ``_``."""
    return "_".join(name.strip().lower().split())


def validate_dynamic_values(
    values: Mapping[str, Any],
    fields: Iterable[FieldDefinition],
) -> Tuple[Dict[str, Any], List[str], List[str]]:
    """
    Check a dynamic payload against the field catalog.

    Number fields are coerced to ``int``/``float``; empty strings are kept
    as-is so a value can be cleared.

    Returns:
        (cleaned, unknown_keys, errors)
    """
    catalog = {f.key: f for f in fields}
    cleaned: Dict[str, Any] = {}
    unknown: List[str] = []
    errors: List[str] = []

    for key, value in values.items():
        field = catalog.get(key)
        if field is None:
            unknown.append(key)
            continue
        if field.type == "number" and value not in (None, ""):
            number = _to_number(value)
            if number is None:
                errors.append(f"{field.name} must be a number")
                continue
            value = number
        cleaned[key] = value
    return cleaned, unknown, errors


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None
