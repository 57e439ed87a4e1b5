"""
Typed metadata maps for contracts and signature workflows.

Metadata is an explicit key/value map, not free-form reflection: every key
must be declared in an allow-list together with its value type, and values
are checked and normalized to a JSON-safe form at write time.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from contract_kernel.exceptions import ValidationError


class MetadataFieldType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"


DEFAULT_METADATA_FIELDS: dict[str, MetadataFieldType] = {
    "quotation_id": MetadataFieldType.STRING,
    "space_id": MetadataFieldType.STRING,
    "plan_code": MetadataFieldType.STRING,
    "desk_count": MetadataFieldType.INTEGER,
    "discount_percent": MetadataFieldType.DECIMAL,
    "deposit_amount": MetadataFieldType.DECIMAL,
    "is_corporate": MetadataFieldType.BOOLEAN,
    "move_in_date": MetadataFieldType.DATE,
    "notes": MetadataFieldType.STRING,
    "reference": MetadataFieldType.STRING,
}

MAX_STRING_LENGTH = 1000


def _normalize(key: str, value: Any, field_type: MetadataFieldType) -> Any:
    if field_type is MetadataFieldType.STRING:
        if not isinstance(value, str):
            raise TypeError("expected string")
        if len(value) > MAX_STRING_LENGTH:
            raise TypeError(f"string longer than {MAX_STRING_LENGTH} characters")
        return value
    if field_type is MetadataFieldType.INTEGER:
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError("expected integer")
        return value
    if field_type is MetadataFieldType.DECIMAL:
        if isinstance(value, bool) or not isinstance(value, (int, str, Decimal)):
            raise TypeError("expected decimal")
        try:
            return str(Decimal(str(value)))
        except InvalidOperation:
            raise TypeError("expected decimal") from None
    if field_type is MetadataFieldType.BOOLEAN:
        if not isinstance(value, bool):
            raise TypeError("expected boolean")
        return value
    if field_type is MetadataFieldType.DATE:
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str):
            try:
                return date.fromisoformat(value).isoformat()
            except ValueError:
                raise TypeError("expected ISO date") from None
        raise TypeError("expected date")
    raise TypeError(f"unsupported field type {field_type}")


def validate_metadata(
    metadata: Mapping[str, Any] | None,
    allowed: Mapping[str, MetadataFieldType],
) -> dict[str, Any]:
    """
    Check ``metadata`` against ``allowed`` and return the normalized map.

    None values are dropped.  Unknown keys and mistyped values are
    collected and reported together in a single ValidationError.
    """
    if not metadata:
        return {}

    errors: list[str] = []
    normalized: dict[str, Any] = {}
    for key, value in metadata.items():
        if key not in allowed:
            errors.append(f"metadata key '{key}' is not allowed")
            continue
        if value is None:
            continue
        try:
            normalized[key] = _normalize(key, value, MetadataFieldType(allowed[key]))
        except TypeError as exc:
            errors.append(f"metadata '{key}': {exc}")

    if errors:
        raise ValidationError("; ".join(errors), field="metadata", errors=errors)
    return normalized
