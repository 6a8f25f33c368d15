"""Entity schema registrations: storage policy and indexes per entity type.

A schema is what binds a collection handle to an entity: where its
documents live (SHARDED per-store collection or UNIFIED control-plane
collection) and which indexes the collection carries. Unique indexes
double as the field list used to report duplicate-key errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pymongo import ASCENDING, DESCENDING

from pos_backend.domain.enums import EntityType, StoragePolicy


@dataclass(frozen=True)
class IndexSpec:
    """One collection index."""

    keys: tuple[tuple[str, int], ...]
    unique: bool = False
    sparse: bool = False

    @property
    def name(self) -> str:
        return "_".join(f"{k}_{d}" for k, d in self.keys)

    def create_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"name": self.name}
        if self.unique:
            kwargs["unique"] = True
        if self.sparse:
            kwargs["sparse"] = True
        return kwargs


@dataclass(frozen=True)
class EntitySchema:
    """Storage policy and indexes of one entity type."""

    entity_type: EntityType
    policy: StoragePolicy
    indexes: tuple[IndexSpec, ...] = field(default_factory=tuple)

    @property
    def unique_fields(self) -> list[str]:
        """Non-storeId fields of the unique indexes, in declaration order."""
        return [
            key
            for index in self.indexes
            if index.unique
            for key, _ in index.keys
            if key != "storeId"
        ]


def _idx(*keys: tuple[str, int], unique: bool = False, sparse: bool = False) -> IndexSpec:
    return IndexSpec(keys=tuple(keys), unique=unique, sparse=sparse)


SCHEMAS: dict[EntityType, EntitySchema] = {
    # Sharded: one collection per store, so store-unique values need no storeId key.
    EntityType.PRODUCTS: EntitySchema(
        EntityType.PRODUCTS,
        StoragePolicy.SHARDED,
        (
            _idx(("barcode", ASCENDING), unique=True, sparse=True),
            _idx(("units.barcode", ASCENDING)),
            _idx(("status", ASCENDING)),
            _idx(("name", ASCENDING)),
            _idx(("createdAt", DESCENDING)),
        ),
    ),
    EntityType.SALES: EntitySchema(
        EntityType.SALES,
        StoragePolicy.SHARDED,
        (
            _idx(("invoiceNumber", ASCENDING), unique=True),
            _idx(("date", DESCENDING)),
            _idx(("customerId", ASCENDING)),
            _idx(("status", ASCENDING)),
        ),
    ),
    EntityType.CUSTOMERS: EntitySchema(
        EntityType.CUSTOMERS,
        StoragePolicy.SHARDED,
        (
            _idx(("phone", ASCENDING)),
            _idx(("email", ASCENDING)),
            _idx(("name", ASCENDING)),
        ),
    ),
    EntityType.BRANDS: EntitySchema(
        EntityType.BRANDS, StoragePolicy.SHARDED, (_idx(("name", ASCENDING), unique=True),)
    ),
    EntityType.CATEGORIES: EntitySchema(
        EntityType.CATEGORIES,
        StoragePolicy.SHARDED,
        (_idx(("name", ASCENDING), unique=True),),
    ),
    EntityType.UNITS: EntitySchema(
        EntityType.UNITS, StoragePolicy.SHARDED, (_idx(("name", ASCENDING), unique=True),)
    ),
    EntityType.SETTINGS: EntitySchema(
        EntityType.SETTINGS, StoragePolicy.SHARDED, (_idx(("key", ASCENDING), unique=True),)
    ),
    EntityType.CUSTOMER_PAYMENTS: EntitySchema(
        EntityType.CUSTOMER_PAYMENTS,
        StoragePolicy.SHARDED,
        (
            _idx(("customerId", ASCENDING)),
            _idx(("date", DESCENDING)),
            _idx(("invoiceId", ASCENDING)),
        ),
    ),
    # Unified: one control-plane collection, every index leads with storeId.
    EntityType.WAREHOUSES: EntitySchema(
        EntityType.WAREHOUSES,
        StoragePolicy.UNIFIED,
        (
            _idx(("storeId", ASCENDING), ("name", ASCENDING), unique=True),
            _idx(("storeId", ASCENDING), ("status", ASCENDING)),
        ),
    ),
    EntityType.PAYMENTS: EntitySchema(
        EntityType.PAYMENTS,
        StoragePolicy.UNIFIED,
        (
            _idx(("storeId", ASCENDING), ("invoiceId", ASCENDING)),
            _idx(("merchantId", ASCENDING), ("status", ASCENDING)),
        ),
    ),
    EntityType.MERCHANTS: EntitySchema(
        EntityType.MERCHANTS,
        StoragePolicy.UNIFIED,
        (
            _idx(("merchantId", ASCENDING)),
            _idx(("storeId", ASCENDING), ("status", ASCENDING)),
        ),
    ),
    EntityType.STORE_ACCOUNTS: EntitySchema(
        EntityType.STORE_ACCOUNTS,
        StoragePolicy.UNIFIED,
        (_idx(("storeId", ASCENDING), unique=True),),
    ),
    EntityType.USERS: EntitySchema(
        EntityType.USERS,
        StoragePolicy.UNIFIED,
        (
            _idx(("storeId", ASCENDING), ("username", ASCENDING), unique=True),
            _idx(("email", ASCENDING)),
        ),
    ),
}


def get_schema(entity_type: EntityType) -> EntitySchema:
    """Return the registered schema for entity_type."""
    return SCHEMAS[entity_type]


def sharded_entity_types() -> list[EntityType]:
    """Entity types stored in per-store collections, in declaration order."""
    return [t for t, s in SCHEMAS.items() if s.policy is StoragePolicy.SHARDED]
