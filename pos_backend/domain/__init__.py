"""Domain layer: entities, value objects, enums, and exceptions.

No dependencies on infrastructure or presentation. Used by application
and infrastructure layers.
"""

from pos_backend.domain.entities import PointsPolicy, StorePointsAccount
from pos_backend.domain.enums import EntityType, StoragePolicy, TransactionType
from pos_backend.domain.exceptions import (
    InsufficientPointsException,
    PosException,
    ResourceNotFoundException,
    ShardConnectionError,
    StoreNotFoundException,
    ValidationException,
)
from pos_backend.domain.value_objects import StorePrefix, collection_name

__all__ = [
    "EntityType",
    "InsufficientPointsException",
    "PointsPolicy",
    "PosException",
    "ResourceNotFoundException",
    "ShardConnectionError",
    "StoragePolicy",
    "StoreNotFoundException",
    "StorePointsAccount",
    "StorePrefix",
    "TransactionType",
    "ValidationException",
    "collection_name",
]
