"""orgbase kernel: dynamic data type fields and their validation."""

from .field_types import FIELD_TYPES, normalize_field, normalize_fields
from .field_validator import validate_value
from .schema_check import check_fields, dropped_field_names

__all__ = [
    "FIELD_TYPES",
    "check_fields",
    "dropped_field_names",
    "normalize_field",
    "normalize_fields",
    "validate_value",
]
