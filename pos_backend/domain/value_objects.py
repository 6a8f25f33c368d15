"""Domain value objects for tenant naming.

Value objects are immutable types that represent domain concepts with
self-validation. A store's collection names are a pure function of its
prefix and the entity type.
"""

import re
from dataclasses import dataclass

from pos_backend.core.constants import MAX_COLLECTION_NAME_LENGTH, STORE_PREFIX_PATTERN
from pos_backend.domain.enums import EntityType
from pos_backend.domain.exceptions import (
    CollectionNameTooLongException,
    InvalidPrefixException,
)

_PREFIX_RE = re.compile(STORE_PREFIX_PATTERN)


def normalize_store_key(value: str) -> str:
    """Trim and lowercase a store id or prefix (stored values are lowercase)."""
    return value.strip().lower()


def is_valid_prefix(value: str) -> bool:
    """Return True if value matches the store prefix charset (lowercase alnum + '_')."""
    return bool(value) and bool(_PREFIX_RE.fullmatch(value))


@dataclass(frozen=True)
class StorePrefix:
    """Value object for a store prefix.

    The prefix namespaces every per-store collection; it is immutable once
    the store exists. Must match ^[a-z0-9_]+$.
    """

    value: str

    def __post_init__(self) -> None:
        if not is_valid_prefix(self.value):
            raise InvalidPrefixException(self.value)

    def __str__(self) -> str:
        return self.value


def collection_name(prefix: StorePrefix, entity_type: EntityType) -> str:
    """Return '{prefix}_{entity}', validated against MongoDB's name length limit.

    Raises:
        CollectionNameTooLongException: name exceeds 255 characters.
    """
    name = f"{prefix.value}_{entity_type.value}"
    if len(name) > MAX_COLLECTION_NAME_LENGTH:
        raise CollectionNameTooLongException(name, MAX_COLLECTION_NAME_LENGTH)
    return name


def normalize_customer_identifier(value: str) -> str:
    """Global customer id from a phone or email: trimmed, lowercased."""
    return value.strip().lower()
