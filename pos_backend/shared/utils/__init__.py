"""Shared utilities: datetime and document serialization."""

from pos_backend.shared.utils.datetime import (
    add_months,
    ensure_utc,
    epoch_millis,
    utc_now,
)
from pos_backend.shared.utils.serialization import to_jsonable

__all__ = [
    "add_months",
    "ensure_utc",
    "epoch_millis",
    "to_jsonable",
    "utc_now",
]
