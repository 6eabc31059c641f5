"""Describe-driven value coercion."""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

from ..models.record import Record
from ..models.schema import FieldType, ObjectMetadata

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes", "y", "t"}
_FALSE_VALUES = {"false", "0", "no", "n", "f"}


def coerce_value(value: Any, field_type: FieldType) -> Any:
    """
    Convert a value to the canonical form of a field type.

    Strings read from flat files become booleans, numbers or ISO dates.
    Values that cannot be converted are returned unchanged and left for the
    target store to reject.

    Args:
        value: Raw value
        field_type: Declared field type

    Returns:
        Coerced value, ``None`` for empty strings
    """
    if value is None:
        return None
    if isinstance(value, str) and value == "":
        return None

    try:
        if field_type == FieldType.BOOLEAN:
            return _to_bool(value)
        if field_type == FieldType.INTEGER:
            return int(Decimal(str(value)))
        if field_type in (FieldType.DOUBLE, FieldType.CURRENCY, FieldType.PERCENT):
            return float(Decimal(str(value)))
        if field_type == FieldType.DATE:
            return _to_date(value)
        if field_type == FieldType.DATETIME:
            return _to_datetime(value)
    except (ValueError, InvalidOperation, OverflowError) as e:
        logger.debug(f"Cannot coerce {value!r} to {field_type.value}: {e}")
    return value


def coerce_record(record: Record, metadata: Optional[ObjectMetadata]) -> Record:
    """Coerce every described field of a record in place and return it."""
    if not metadata:
        return record
    for name, value in record.items():
        definition = metadata.get_field(name)
        if definition:
            record[name] = coerce_value(value, definition.type)
    return record


def format_value(value: Any) -> str:
    """Render a value for a CSV cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def format_record(record: Dict[str, Any]) -> Dict[str, str]:
    return {k: format_value(v) for k, v in record.items()}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_date(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return date_parser.parse(str(value)).strftime("%Y-%m-%d")


def _to_datetime(value: Any) -> str:
    parsed = value if isinstance(value, datetime) else date_parser.parse(str(value))
    text = parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}"
    if parsed.tzinfo is None:
        return text + "+0000"
    return text + parsed.strftime("%z")
