"""Per-field validation and normalization of submitted entry values."""

from __future__ import annotations

import json
import math
from datetime import date, datetime
from typing import Any, Dict, Tuple

from . import field_types as ft

Issue = Dict[str, Any]

INVALID_NUMBER = "INVALID_NUMBER"
INVALID_JSON = "INVALID_JSON"
INVALID_DATE = "INVALID_DATE"
INVALID_OPTION = "INVALID_OPTION"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"

_FALSE_STRINGS = {"", "false", "0", "no", "off"}


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _parse_number(raw: Any) -> int | float:
    if isinstance(raw, bool):
        raise ValueError("boolean is not a number")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if not math.isfinite(raw):
            raise ValueError("non-finite number")
        return raw
    text = str(raw).strip()
    try:
        return int(text)
    except ValueError:
        pass
    value = float(text)
    if not math.isfinite(value):
        raise ValueError("non-finite number")
    return value


def _parse_date(raw: Any) -> str:
    if isinstance(raw, datetime):
        return raw.isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    if not isinstance(raw, str):
        raise ValueError("date must be a string")
    text = raw.strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    return datetime.fromisoformat(text.replace("Z", "+00:00")).isoformat()


def _coerce_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() not in _FALSE_STRINGS
    return bool(raw)


def validate_value(field: dict, raw: Any, strict_dropdown: bool = False) -> Tuple[Any, Issue | None]:
    """Validate one raw input against one field descriptor.

    Returns ``(normalized_value, None)`` on success and ``(raw, issue)`` on
    failure. Fields are validated independently of each other.
    """
    name = field.get("name")
    ftype = ft.normalize_type(field.get("type"))

    if ftype == ft.BOOLEAN:
        return _coerce_bool(raw), None

    if ftype == ft.NUMBER:
        if _is_blank(raw):
            value = None
        else:
            try:
                value = _parse_number(raw)
            except (TypeError, ValueError):
                return raw, _issue(INVALID_NUMBER, f"{name} must be a number", path=name)
    elif ftype == ft.JSON:
        if _is_blank(raw):
            # Blank optional JSON is stored as an empty object.
            value = None if field.get("required") else {}
        elif isinstance(raw, (dict, list)):
            value = raw
        else:
            try:
                value = json.loads(raw) if isinstance(raw, str) else raw
            except ValueError:
                return raw, _issue(INVALID_JSON, f"{name} must be valid JSON", path=name)
    elif ftype == ft.DATE:
        if _is_blank(raw):
            value = None
        else:
            try:
                value = _parse_date(raw)
            except (TypeError, ValueError):
                return raw, _issue(INVALID_DATE, f"{name} must be a valid date", path=name)
    elif ftype == ft.DROPDOWN:
        value = None if _is_blank(raw) else raw
        if value is not None and strict_dropdown:
            allowed = ft.dropdown_options(field)
            if str(value) not in allowed:
                return raw, _issue(
                    INVALID_OPTION,
                    f"{name} must be one of {allowed}",
                    path=name,
                    detail={"options": allowed},
                )
    else:
        value = raw

    if field.get("required") and _is_blank(value):
        return value, _issue(MISSING_REQUIRED_FIELD, f"Missing required field: {name}", path=name)
    return value, None
