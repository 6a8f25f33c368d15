"""Tenant Model Resolver: store id -> live, schema-bound collection handle.

Resolution path: store id -> prefix (Store Directory) -> shard id ->
connection (Database Registry) -> "{prefix}_{entity}" -> cached model.
One resolver serves every sharded entity type; the entity's schema
registration supplies its indexes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, NoReturn

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from pos_backend.domain.enums import EntityType, StoragePolicy
from pos_backend.domain.exceptions import (
    DuplicateKeyException,
    StoreIdRequiredException,
    ValidationException,
)
from pos_backend.domain.value_objects import StorePrefix, collection_name
from pos_backend.infrastructure.cache.process_cache import AsyncKeyedCache
from pos_backend.infrastructure.persistence.database import DatabaseRegistry, ShardConnection
from pos_backend.infrastructure.persistence.schemas import (
    EntitySchema,
    get_schema,
    sharded_entity_types,
)
from pos_backend.infrastructure.persistence.store_directory import StoreDirectory
from pos_backend.shared.utils.datetime import utc_now

logger = logging.getLogger(__name__)


def raise_duplicate(
    error: DuplicateKeyError, schema: EntitySchema, document: Mapping[str, Any] | None = None
) -> NoReturn:
    """Re-raise a driver duplicate-key error as DuplicateKeyException."""
    key_value = (error.details or {}).get("keyValue") or {}
    key_value = {k: v for k, v in key_value.items() if k != "storeId"}
    if key_value:
        field_name, value = next(iter(key_value.items()))
    else:
        candidates = schema.unique_fields or ["_id"]
        field_name = candidates[0]
        value = (document or {}).get(field_name, "")
    raise DuplicateKeyException(schema.entity_type.value, field_name, str(value)) from error


class TenantModel:
    """A store's collection for one entity type, bound to one shard connection.

    Thin CRUD surface over the driver collection; duplicate-key errors are
    reported as DuplicateKeyException. Documents carry no storeId: isolation
    is the collection itself.
    """

    def __init__(
        self,
        schema: EntitySchema,
        connection: ShardConnection,
        prefix: StorePrefix,
        name: str,
    ) -> None:
        self.schema = schema
        self.connection = connection
        self.prefix = prefix
        self.collection_name = name
        self.collection = connection.database[name]

    @property
    def entity_type(self) -> EntityType:
        return self.schema.entity_type

    @property
    def shard_id(self) -> int | None:
        return self.connection.shard_id

    def is_bound_to(self, connection: ShardConnection) -> bool:
        """True if this model was built on connection and connection is still live."""
        return self.connection is connection and connection.is_connected

    async def ensure_indexes(self) -> int:
        """Create the schema's indexes; return how many were requested."""
        with self.connection.watch():
            for index in self.schema.indexes:
                await self.collection.create_index(list(index.keys), **index.create_kwargs())
        return len(self.schema.indexes)

    async def find_one(self, filter: Mapping[str, Any], **kwargs: Any) -> dict[str, Any] | None:
        with self.connection.watch():
            return await self.collection.find_one(filter, **kwargs)

    async def find_many(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        sort: list[tuple[str, int]] | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        cursor = self.collection.find(filter or {})
        if sort:
            cursor = cursor.sort(sort)
        cursor = cursor.skip(skip).limit(limit)
        with self.connection.watch():
            return await cursor.to_list(length=limit)

    async def count_documents(self, filter: Mapping[str, Any] | None = None) -> int:
        with self.connection.watch():
            return await self.collection.count_documents(filter or {})

    async def insert_one(self, document: Mapping[str, Any], **kwargs: Any) -> dict[str, Any]:
        """Insert document (createdAt/updatedAt stamped); return it with its _id.

        Raises:
            DuplicateKeyException: a unique index rejected the document.
        """
        now = utc_now()
        doc = {"createdAt": now, "updatedAt": now, **document}
        try:
            with self.connection.watch():
                result = await self.collection.insert_one(doc, **kwargs)
        except DuplicateKeyError as e:
            raise_duplicate(e, self.schema, doc)
        doc["_id"] = result.inserted_id
        return doc

    async def update_one(
        self, filter: Mapping[str, Any], update: Mapping[str, Any], **kwargs: Any
    ) -> int:
        """Apply update to the first match; return the modified count."""
        update = _stamp_updated_at(update)
        try:
            with self.connection.watch():
                result = await self.collection.update_one(filter, update, **kwargs)
        except DuplicateKeyError as e:
            raise_duplicate(e, self.schema)
        return result.modified_count

    async def find_one_and_update(
        self, filter: Mapping[str, Any], update: Mapping[str, Any], **kwargs: Any
    ) -> dict[str, Any] | None:
        """Update the first match and return the document after the update."""
        kwargs.setdefault("return_document", ReturnDocument.AFTER)
        try:
            with self.connection.watch():
                return await self.collection.find_one_and_update(
                    filter, _stamp_updated_at(update), **kwargs
                )
        except DuplicateKeyError as e:
            raise_duplicate(e, self.schema)

    async def delete_one(self, filter: Mapping[str, Any], **kwargs: Any) -> int:
        with self.connection.watch():
            result = await self.collection.delete_one(filter, **kwargs)
        return result.deleted_count

    def __repr__(self) -> str:
        return f"TenantModel({self.collection_name!r}, shard={self.shard_id})"


def _stamp_updated_at(update: Mapping[str, Any]) -> dict[str, Any]:
    stamped = dict(update)
    set_fields = dict(stamped.get("$set", {}))
    set_fields.setdefault("updatedAt", utc_now())
    stamped["$set"] = set_fields
    return stamped


class TenantModelResolver:
    """Resolves and caches TenantModel instances keyed by (shard_id, collection name).

    A cached model is reused while the connection it was built on is the
    registry's current, live connection for that shard; otherwise it is
    rebuilt. Every lookup failure surfaces as a typed error: the resolver
    never falls back to another shard.
    """

    def __init__(self, registry: DatabaseRegistry, directory: StoreDirectory) -> None:
        self.registry = registry
        self.directory = directory
        self._models: AsyncKeyedCache[tuple[int, str], TenantModel] = AsyncKeyedCache(
            "tenant model"
        )

    async def get_model(
        self,
        entity_type: EntityType,
        store_id: str | None,
        shard_id: int | None = None,
    ) -> TenantModel:
        """Return the model for entity_type in store_id's collection.

        Args:
            entity_type: A SHARDED entity type.
            store_id: Store id or prefix (already authenticated by the caller).
            shard_id: Optional known shard id; skips the directory lookup.

        Raises:
            StoreIdRequiredException: store_id missing.
            ValidationException: entity_type is stored in a unified collection.
            StoreNotFoundException: no store record matches.
            ShardNotAssignedException: the record has no shard id.
            InvalidPrefixException: prefix fails the charset rule.
            CollectionNameTooLongException: collection name exceeds 255 chars.
            InvalidShardIdException: shard id outside 1..SHARD_COUNT.
            ShardConnectionError: the shard is unreachable.
        """
        if store_id is None or not store_id.strip():
            raise StoreIdRequiredException(entity_type.value)
        schema = get_schema(entity_type)
        if schema.policy is not StoragePolicy.SHARDED:
            raise ValidationException(
                f"{entity_type.value} is stored in a unified collection, not per store",
                field="entity_type",
            )
        prefix = StorePrefix(await self.directory.resolve_prefix(store_id))
        if shard_id is None:
            shard_id = await self.directory.resolve_shard_id(store_id)
        name = collection_name(prefix, entity_type)
        connection = await self.registry.get_connection(shard_id)
        return await self._models.get_or_create(
            (shard_id, name),
            lambda: self._register(schema, connection, prefix, name),
            is_valid=lambda model: model.is_bound_to(connection),
        )

    async def _register(
        self,
        schema: EntitySchema,
        connection: ShardConnection,
        prefix: StorePrefix,
        name: str,
    ) -> TenantModel:
        model = TenantModel(schema, connection, prefix, name)
        try:
            await model.ensure_indexes()
        except PyMongoError as e:
            # Model stays usable without indexes; the next registration retries.
            logger.warning("Could not ensure indexes on %s: %s", name, e)
        logger.debug("Registered %r", model)
        return model

    async def provision_store(self, store_id: str, shard_id: int | None = None) -> int:
        """Build every sharded entity's model (and indexes) for a store; return the count."""
        count = 0
        for entity_type in sharded_entity_types():
            await self.get_model(entity_type, store_id, shard_id)
            count += 1
        logger.info("Provisioned %s collections for store %s", count, store_id)
        return count

    def model_count(self) -> int:
        return len(self._models)

    def clear(self) -> None:
        self._models.clear()

    async def get_product_model_for_store(self, store_id: str, shard_id: int | None = None) -> TenantModel:
        return await self.get_model(EntityType.PRODUCTS, store_id, shard_id)

    async def get_sale_model_for_store(self, store_id: str, shard_id: int | None = None) -> TenantModel:
        return await self.get_model(EntityType.SALES, store_id, shard_id)

    async def get_customer_model_for_store(self, store_id: str, shard_id: int | None = None) -> TenantModel:
        return await self.get_model(EntityType.CUSTOMERS, store_id, shard_id)

    async def get_brand_model_for_store(self, store_id: str, shard_id: int | None = None) -> TenantModel:
        return await self.get_model(EntityType.BRANDS, store_id, shard_id)

    async def get_category_model_for_store(self, store_id: str, shard_id: int | None = None) -> TenantModel:
        return await self.get_model(EntityType.CATEGORIES, store_id, shard_id)

    async def get_unit_model_for_store(self, store_id: str, shard_id: int | None = None) -> TenantModel:
        return await self.get_model(EntityType.UNITS, store_id, shard_id)

    async def get_settings_model_for_store(self, store_id: str, shard_id: int | None = None) -> TenantModel:
        return await self.get_model(EntityType.SETTINGS, store_id, shard_id)

    async def get_customer_payment_model_for_store(
        self, store_id: str, shard_id: int | None = None
    ) -> TenantModel:
        return await self.get_model(EntityType.CUSTOMER_PAYMENTS, store_id, shard_id)
