"""
Cache Value Serialization

Encodes cached values as JSON text with a tagged representation for
timestamps, so that a value read back from the store compares equal to
the value that was written.

Wire format:
    datetime  -> {"__type": "Date", "value": "<ISO-8601>"}
    date      -> {"__type": "LocalDate", "value": "YYYY-MM-DD"}
    list/dict -> recursed element-wise
    other     -> passed through to orjson

Tuples are encoded as lists and come back as lists.

Author: Platform Team
Date: 2025-11-18
"""

from datetime import date, datetime
from typing import Any

import orjson

from practice_cache.core.exceptions import CacheSerializationError

TYPE_MARKER = "__type"
VALUE_FIELD = "value"
DATE_TYPE = "Date"
LOCAL_DATE_TYPE = "LocalDate"


def serialize(value: Any) -> Any:
    """
    Convert a value into a JSON-compatible tree with timestamp markers.

    Args:
        value: Arbitrary cacheable value

    Returns:
        Equivalent tree made of dicts, lists and JSON scalars
    """
    if isinstance(value, datetime):
        return {TYPE_MARKER: DATE_TYPE, VALUE_FIELD: value.isoformat()}
    if isinstance(value, date):
        return {TYPE_MARKER: LOCAL_DATE_TYPE, VALUE_FIELD: value.isoformat()}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    if isinstance(value, dict):
        return {key: serialize(item) for key, item in value.items()}
    return value


def deserialize(value: Any) -> Any:
    """
    Inverse of ``serialize``: rebuild timestamps from their markers.

    Objects that merely happen to contain a ``__type`` field with an
    unknown tag, or a timestamp tag whose value does not parse, are
    returned as plain dicts.
    """
    if isinstance(value, list):
        return [deserialize(item) for item in value]
    if isinstance(value, dict):
        marker = value.get(TYPE_MARKER)
        text = value.get(VALUE_FIELD)
        if isinstance(text, str):
            try:
                if marker == DATE_TYPE:
                    return _parse_datetime(text)
                if marker == LOCAL_DATE_TYPE:
                    return date.fromisoformat(text)
            except ValueError:
                pass
        return {key: deserialize(item) for key, item in value.items()}
    return value


def _parse_datetime(text: str) -> datetime:
    # Values written by other producers use a trailing "Z" for UTC
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def encode(value: Any) -> bytes:
    """
    Serialize a value to JSON bytes.

    Raises:
        CacheSerializationError: If the value has no JSON representation
    """
    try:
        return orjson.dumps(serialize(value))
    except TypeError as e:
        raise CacheSerializationError.from_exception(
            e, message=f"Value is not serializable: {e}", value_type=type(value).__name__
        ) from e


def decode(raw: str | bytes) -> Any:
    """
    Parse JSON text read from the store and restore timestamps.

    Raises:
        CacheSerializationError: If the payload is not valid JSON
    """
    try:
        return deserialize(orjson.loads(raw))
    except orjson.JSONDecodeError as e:
        raise CacheSerializationError.from_exception(
            e, message=f"Stored payload is not valid JSON: {e}"
        ) from e
