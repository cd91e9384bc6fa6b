"""Entry payload validation against a DataType's field list."""

from __future__ import annotations

import os

from orgbase import validate_value
from orgbase.field_types import REFERENCE, normalize_fields, normalize_type


def strict_dropdown_enabled() -> bool:
    return os.getenv("ORGBASE_STRICT_DROPDOWN", "").strip().lower() in ("1", "true", "yes")


def validate_entry_data(
    data_type: dict,
    data: dict,
    strict_dropdown: bool | None = None,
    stale_keys=(),
) -> tuple[list[dict], dict]:
    """Run every field of ``data_type`` over ``data``.

    Returns ``(errors, clean)``. ``clean`` holds one normalized value per
    schema field and is only meaningful when ``errors`` is empty. Keys in
    ``stale_keys`` (already stored on the entry, since dropped from the
    schema) are kept as submitted instead of being reported as unknown.
    """
    errors: list[dict] = []
    if not isinstance(data, dict):
        return [
            {
                "code": "INVALID_PAYLOAD",
                "message": "Entry data must be an object",
                "path": "data",
                "detail": None,
            }
        ], {}
    if strict_dropdown is None:
        strict_dropdown = strict_dropdown_enabled()

    fields = normalize_fields(data_type.get("fields"))
    field_by_name = {f["name"]: f for f in fields if f.get("name")}

    clean: dict = {}
    for key in data.keys():
        if key in field_by_name:
            continue
        if key in stale_keys:
            clean[key] = data[key]
            continue
        errors.append({"code": "UNKNOWN_FIELD", "message": f"Unknown field: {key}", "path": key, "detail": None})

    for name, field in field_by_name.items():
        value, issue = validate_value(field, data.get(name), strict_dropdown=strict_dropdown)
        if issue:
            errors.append(issue)
            continue
        clean[name] = value
    return errors, clean


def reference_fields(data_type: dict) -> list[dict]:
    return [
        f
        for f in normalize_fields(data_type.get("fields"))
        if normalize_type(f.get("type")) == REFERENCE and f.get("name")
    ]
