"""Field type catalogue for dynamic data types."""

from __future__ import annotations

from typing import Any

STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"
DATE = "date"
JSON = "json"
DROPDOWN = "dropdown"
FILE = "file"
REFERENCE = "reference"

FIELD_TYPES = (STRING, NUMBER, BOOLEAN, DATE, JSON, DROPDOWN, FILE, REFERENCE)

# Older editors saved "text" for plain strings.
_TYPE_ALIASES = {"text": STRING}


def normalize_type(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    tag = value.strip().lower()
    tag = _TYPE_ALIASES.get(tag, tag)
    return tag if tag in FIELD_TYPES else None


def dropdown_options(field: dict) -> list[str]:
    options = field.get("options")
    if isinstance(options, str):
        # The editor accepts a comma separated list.
        options = options.split(",")
    if not isinstance(options, list):
        return []
    out = []
    for opt in options:
        if opt is None:
            continue
        text = str(opt).strip()
        if text:
            out.append(text)
    return out


def normalize_field(raw: Any) -> dict:
    """Return a field descriptor carrying only the keys its type uses.

    Unknown type tags are kept verbatim so the schema checker can report them.
    """
    if not isinstance(raw, dict):
        return {"name": "", "type": None}
    name = raw.get("name")
    name = name.strip() if isinstance(name, str) else ""
    ftype = normalize_type(raw.get("type")) or raw.get("type")
    field: dict = {"name": name, "type": ftype}
    if ftype == DROPDOWN:
        field["options"] = dropdown_options(raw)
    if ftype == REFERENCE:
        ref = raw.get("referenceDataTypeId")
        field["referenceDataTypeId"] = str(ref).strip() if ref not in (None, "") else None
    if raw.get("required"):
        field["required"] = True
    return field


def normalize_fields(raw: Any) -> list[dict]:
    if not isinstance(raw, list):
        return []
    return [normalize_field(item) for item in raw]


def field_names(fields: list[dict]) -> list[str]:
    return [f.get("name") for f in fields if isinstance(f, dict) and f.get("name")]
