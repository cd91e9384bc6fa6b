"""Structural checks for a data type's field list."""

from __future__ import annotations

from typing import Any, Dict, List

from . import field_types as ft

Issue = Dict[str, Any]

INVALID_FIELD = "INVALID_FIELD"
DUPLICATE_FIELD = "DUPLICATE_FIELD"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def check_fields(fields: Any) -> List[Issue]:
    """Return every problem with a normalized field list; empty means valid."""
    if not isinstance(fields, list) or not fields:
        return [_issue(MISSING_REQUIRED_FIELD, "At least one field is required", path="fields")]
    issues: List[Issue] = []
    seen: set[str] = set()
    for idx, field in enumerate(fields):
        path = f"fields[{idx}]"
        if not isinstance(field, dict):
            issues.append(_issue(INVALID_FIELD, "Field must be an object", path=path))
            continue
        name = field.get("name")
        if not isinstance(name, str) or not name.strip():
            issues.append(_issue(INVALID_FIELD, "Field name is required", path=f"{path}.name"))
        else:
            key = name.strip()
            if key in seen:
                issues.append(_issue(DUPLICATE_FIELD, f"Duplicate field name: {key}", path=f"{path}.name"))
            seen.add(key)
        ftype = ft.normalize_type(field.get("type"))
        if ftype is None:
            issues.append(
                _issue(
                    INVALID_FIELD,
                    f"Unknown field type: {field.get('type')}",
                    path=f"{path}.type",
                    detail={"allowed": list(ft.FIELD_TYPES)},
                )
            )
            continue
        if ftype == ft.DROPDOWN and not ft.dropdown_options(field):
            issues.append(_issue(INVALID_FIELD, "Dropdown fields need at least one option", path=f"{path}.options"))
        if ftype == ft.REFERENCE and not field.get("referenceDataTypeId"):
            issues.append(
                _issue(INVALID_FIELD, "Reference fields need a referenceDataTypeId", path=f"{path}.referenceDataTypeId")
            )
    return issues


def dropped_field_names(before: list[dict], after: list[dict]) -> list[str]:
    """Names present in ``before`` that ``after`` no longer declares, in order."""
    remaining = set(ft.field_names(after))
    return [name for name in ft.field_names(before) if name not in remaining]
