"""Document serialization: BSON values to JSON-safe values."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from bson import ObjectId

from pos_backend.shared.utils.datetime import ensure_utc


def to_jsonable(value: Any) -> Any:
    """Recursively convert ObjectId to str and datetime to ISO 8601 (UTC)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
