"""Unified collections: one control-plane collection per entity, scoped by storeId.

Warehouses, payments, merchants, store accounts and users live in a single
collection each so they can be queried across stores. Every per-store
read and write goes through scoped_filter; cross-store reads go
through the explicit find_across_stores.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from pos_backend.domain.enums import EntityType, StoragePolicy
from pos_backend.domain.exceptions import StoreIdRequiredException, ValidationException
from pos_backend.domain.value_objects import normalize_store_key
from pos_backend.infrastructure.persistence.database import DatabaseRegistry, ShardConnection
from pos_backend.infrastructure.persistence.schemas import SCHEMAS, EntitySchema
from pos_backend.infrastructure.persistence.tenant_models import raise_duplicate
from pos_backend.shared.utils.datetime import utc_now

logger = logging.getLogger(__name__)

STORE_FIELD = "storeId"


def scoped_filter(store_id: str | None, filter: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Return filter restricted to store_id.

    Raises:
        StoreIdRequiredException: store_id missing.
        ValidationException: filter already names a different store.
    """
    if store_id is None or not store_id.strip():
        raise StoreIdRequiredException()
    store_id = normalize_store_key(store_id)
    scoped = dict(filter or {})
    requested = scoped.get(STORE_FIELD)
    if requested is not None and requested != store_id:
        raise ValidationException("Filter names a different store", field=STORE_FIELD)
    scoped[STORE_FIELD] = store_id
    return scoped


def _check_update(update: Mapping[str, Any]) -> None:
    for operator, fields in update.items():
        if isinstance(fields, Mapping) and STORE_FIELD in fields:
            raise ValidationException(
                f"{STORE_FIELD} cannot be changed ({operator})", field=STORE_FIELD
            )


class StoreScopedCollection:
    """Process-wide handle on one unified collection."""

    def __init__(self, registry: DatabaseRegistry, schema: EntitySchema) -> None:
        if schema.policy is not StoragePolicy.UNIFIED:
            raise ValueError(f"{schema.entity_type.value} is not a unified entity")
        self.registry = registry
        self.schema = schema
        self.name = schema.entity_type.value

    async def _connection(self) -> ShardConnection:
        return await self.registry.get_control_connection()

    async def ensure_indexes(self) -> None:
        connection = await self._connection()
        collection = connection.database[self.name]
        with connection.watch():
            for index in self.schema.indexes:
                await collection.create_index(list(index.keys), **index.create_kwargs())

    async def find_one(
        self, store_id: str, filter: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> dict[str, Any] | None:
        query = scoped_filter(store_id, filter)
        connection = await self._connection()
        with connection.watch():
            return await connection.database[self.name].find_one(query, **kwargs)

    async def find_many(
        self,
        store_id: str,
        filter: Mapping[str, Any] | None = None,
        *,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        return await self._find(scoped_filter(store_id, filter), sort, skip, limit)

    async def find_across_stores(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Unscoped read for admin and cross-store queries (e.g. payments by merchant)."""
        logger.debug("Cross-store read on %s: %s", self.name, dict(filter or {}))
        return await self._find(dict(filter or {}), sort, skip, limit)

    async def _find(
        self,
        query: dict[str, Any],
        sort: list[tuple[str, int]] | None,
        skip: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        connection = await self._connection()
        cursor = connection.database[self.name].find(query)
        if sort:
            cursor = cursor.sort(sort)
        cursor = cursor.skip(skip).limit(limit)
        with connection.watch():
            return await cursor.to_list(length=limit)

    async def count_documents(
        self, store_id: str, filter: Mapping[str, Any] | None = None
    ) -> int:
        query = scoped_filter(store_id, filter)
        connection = await self._connection()
        with connection.watch():
            return await connection.database[self.name].count_documents(query)

    async def insert_one(
        self, store_id: str, document: Mapping[str, Any], **kwargs: Any
    ) -> dict[str, Any]:
        """Insert document stamped with store_id (and timestamps); return it with its _id.

        Raises:
            ValidationException: document names a different store.
            DuplicateKeyException: a unique index rejected the document.
        """
        now = utc_now()
        doc = scoped_filter(store_id, {"createdAt": now, "updatedAt": now, **document})
        connection = await self._connection()
        try:
            with connection.watch():
                result = await connection.database[self.name].insert_one(doc, **kwargs)
        except DuplicateKeyError as e:
            raise_duplicate(e, self.schema, doc)
        doc["_id"] = result.inserted_id
        return doc

    async def update_one(
        self,
        store_id: str,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """Update the store's first matching document; return it after the update."""
        _check_update(update)
        query = scoped_filter(store_id, filter)
        stamped = dict(update)
        stamped["$set"] = {**dict(stamped.get("$set", {})), "updatedAt": utc_now()}
        kwargs.setdefault("return_document", ReturnDocument.AFTER)
        connection = await self._connection()
        try:
            with connection.watch():
                return await connection.database[self.name].find_one_and_update(
                    query, stamped, **kwargs
                )
        except DuplicateKeyError as e:
            raise_duplicate(e, self.schema)

    async def delete_one(self, store_id: str, filter: Mapping[str, Any]) -> int:
        query = scoped_filter(store_id, filter)
        connection = await self._connection()
        with connection.watch():
            result = await connection.database[self.name].delete_one(query)
        return result.deleted_count


class UnifiedCollections:
    """One StoreScopedCollection per unified entity type."""

    def __init__(self, registry: DatabaseRegistry) -> None:
        self._collections = {
            entity_type: StoreScopedCollection(registry, schema)
            for entity_type, schema in SCHEMAS.items()
            if schema.policy is StoragePolicy.UNIFIED
        }

    def get(self, entity_type: EntityType) -> StoreScopedCollection:
        """Return the handle for a unified entity type.

        Raises:
            ValidationException: entity_type is stored per store.
        """
        collection = self._collections.get(entity_type)
        if collection is None:
            raise ValidationException(
                f"{entity_type.value} is stored per store, "
                "use the tenant model resolver",
                field="entity_type",
            )
        return collection

    @property
    def warehouses(self) -> StoreScopedCollection:
        return self._collections[EntityType.WAREHOUSES]

    @property
    def payments(self) -> StoreScopedCollection:
        return self._collections[EntityType.PAYMENTS]

    @property
    def merchants(self) -> StoreScopedCollection:
        return self._collections[EntityType.MERCHANTS]

    @property
    def store_accounts(self) -> StoreScopedCollection:
        return self._collections[EntityType.STORE_ACCOUNTS]

    @property
    def users(self) -> StoreScopedCollection:
        return self._collections[EntityType.USERS]

    async def ensure_indexes(self) -> None:
        for collection in self._collections.values():
            await collection.ensure_indexes()
