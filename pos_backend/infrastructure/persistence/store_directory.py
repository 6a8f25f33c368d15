"""Store Directory: the control-plane record of every store.

Maps a store id or prefix to its record (prefix, shard id). Records are
cached in-process once found; a miss is never cached, so a store created
after a failed lookup is visible on the next one.
"""

from __future__ import annotations

import logging
from typing import Any

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from pos_backend.application.dtos.store import StoreRecord
from pos_backend.core.config import Settings, get_settings
from pos_backend.core.constants import COLLECTION_STORES
from pos_backend.domain.exceptions import (
    ShardNotAssignedException,
    StoreAlreadyExistsException,
    StoreIdRequiredException,
    StoreNotFoundException,
    ValidationException,
)
from pos_backend.domain.sharding import assign_shard
from pos_backend.domain.value_objects import is_valid_prefix, normalize_store_key
from pos_backend.infrastructure.cache.process_cache import AsyncKeyedCache
from pos_backend.infrastructure.persistence.database import DatabaseRegistry
from pos_backend.shared.utils.datetime import utc_now

logger = logging.getLogger(__name__)

# Fields that route data; set once at creation.
_IMMUTABLE_FIELDS = frozenset({"storeId", "prefix", "shardId", "storeNumber", "_id"})
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "email",
        "phone",
        "address",
        "city",
        "country",
        "isActive",
        "isTrialAccount",
        "subscriptionStartDate",
        "subscriptionEndDate",
    }
)


class StoreDirectory:
    """Lookup and lifecycle of store records in the `stores` collection."""

    def __init__(self, registry: DatabaseRegistry, settings: Settings | None = None) -> None:
        self.registry = registry
        self.settings = settings or get_settings()
        self._records: AsyncKeyedCache[str, StoreRecord] = AsyncKeyedCache("store")

    async def _collection(self) -> Any:
        db = await self.registry.get_control_database()
        return db[COLLECTION_STORES]

    async def ensure_indexes(self) -> None:
        stores = await self._collection()
        await stores.create_index([("storeId", ASCENDING)], unique=True, name="storeId_1")
        await stores.create_index([("prefix", ASCENDING)], unique=True, name="prefix_1")
        await stores.create_index(
            [("storeNumber", ASCENDING)], unique=True, sparse=True, name="storeNumber_1"
        )

    async def get_store(self, store_id_or_prefix: str) -> StoreRecord:
        """Return the record matching a prefix, else a storeId.

        Raises:
            StoreIdRequiredException: empty input.
            StoreNotFoundException: no record matches.
        """
        key = normalize_store_key(store_id_or_prefix or "")
        if not key:
            raise StoreIdRequiredException()
        return await self._records.get_or_create(key, lambda: self._load(key))

    async def find_store(self, store_id_or_prefix: str) -> StoreRecord | None:
        """Like get_store, but None when no record matches."""
        try:
            return await self.get_store(store_id_or_prefix)
        except StoreNotFoundException:
            return None

    async def _load(self, key: str) -> StoreRecord:
        stores = await self._collection()
        doc = await stores.find_one({"prefix": key})
        if doc is None:
            doc = await stores.find_one({"storeId": key})
        if doc is None:
            raise StoreNotFoundException(key)
        return StoreRecord.from_document(doc)

    async def resolve_prefix(self, store_id_or_prefix: str) -> str:
        """Return the collection prefix for a store id or prefix.

        With prefix repair mode on, an unknown but syntactically valid value
        is used as the prefix itself (legacy stores without a record).

        Raises:
            StoreIdRequiredException: empty input.
            StoreNotFoundException: no record matches (and repair mode off or
                the value is not a valid prefix).
        """
        record = await self.find_store(store_id_or_prefix)
        if record is not None:
            return record.prefix
        key = normalize_store_key(store_id_or_prefix)
        if self.settings.prefix_repair_mode and is_valid_prefix(key):
            logger.warning(
                "Store %r has no directory record; using it as the prefix (repair mode)",
                key,
            )
            return key
        raise StoreNotFoundException(key)

    async def resolve_shard_id(self, store_id_or_prefix: str) -> int:
        """Return the shard id recorded for a store.

        Raises:
            StoreNotFoundException: no record matches.
            ShardNotAssignedException: the record has no shard id.
        """
        record = await self.get_store(store_id_or_prefix)
        if record.shard_id is None:
            logger.error("Store %s has no shard assigned", record.store_id)
            raise ShardNotAssignedException(record.store_id)
        return record.shard_id

    async def count_stores(self) -> int:
        stores = await self._collection()
        return await stores.count_documents({})

    async def assign_shard_for_new_store(self) -> int:
        """Pick the shard for a store about to be created.

        Read-then-decide: two concurrent onboardings may both see the same
        count and land on the same shard, which can overfill it by a few stores.
        """
        count = await self.count_stores()
        shard_id = assign_shard(
            count, self.settings.stores_per_shard, self.settings.shard_count
        )
        logger.debug("Assigning shard %s (existing stores: %s)", shard_id, count)
        return shard_id

    async def next_store_number(self) -> int:
        stores = await self._collection()
        cursor = stores.find({"storeNumber": {"$exists": True}}).sort(
            "storeNumber", DESCENDING
        ).limit(1)
        last = await cursor.to_list(length=1)
        if not last or last[0].get("storeNumber") is None:
            return 1
        return int(last[0]["storeNumber"]) + 1

    async def list_stores(
        self, skip: int = 0, limit: int = 100, active_only: bool = False
    ) -> list[StoreRecord]:
        stores = await self._collection()
        query: dict[str, Any] = {"isActive": True} if active_only else {}
        cursor = stores.find(query).sort("storeNumber", ASCENDING).skip(skip).limit(limit)
        return [StoreRecord.from_document(doc) for doc in await cursor.to_list(length=limit)]

    async def exists(self, *, store_id: str | None = None, prefix: str | None = None) -> bool:
        """Return True if a record with the given storeId or prefix exists (uncached)."""
        stores = await self._collection()
        query: dict[str, Any] = {}
        if store_id is not None:
            query["storeId"] = normalize_store_key(store_id)
        if prefix is not None:
            query["prefix"] = normalize_store_key(prefix)
        if not query:
            return False
        return await stores.count_documents(query, limit=1) > 0

    async def create_store(
        self,
        *,
        store_id: str,
        name: str,
        prefix: str,
        shard_id: int,
        store_number: int,
        **fields: Any,
    ) -> StoreRecord:
        """Insert a store record. storeId and prefix are stored lowercase.

        Raises:
            StoreAlreadyExistsException: storeId, prefix or storeNumber taken.
        """
        self.registry.get_database_name(shard_id)
        now = utc_now()
        doc: dict[str, Any] = {
            "storeId": normalize_store_key(store_id),
            "name": name,
            "prefix": normalize_store_key(prefix),
            "shardId": shard_id,
            "storeNumber": store_number,
            "isActive": True,
            "createdAt": now,
            "updatedAt": now,
        }
        doc.update({k: v for k, v in fields.items() if v is not None})
        stores = await self._collection()
        try:
            result = await stores.insert_one(doc)
        except DuplicateKeyError as e:
            field_name = _duplicate_field(e)
            raise StoreAlreadyExistsException(field_name, str(doc.get(field_name, ""))) from e
        doc["_id"] = result.inserted_id
        logger.info(
            "Store created: %s (prefix=%s, shard=%s)", doc["storeId"], doc["prefix"], shard_id
        )
        return StoreRecord.from_document(doc)

    async def update_store(self, store_id_or_prefix: str, updates: dict[str, Any]) -> StoreRecord:
        """Update name, contact and status fields of a store.

        Raises:
            ValidationException: an update names a routing field or an unknown field.
            StoreNotFoundException: no record matches.
        """
        forbidden = set(updates) & _IMMUTABLE_FIELDS
        if forbidden:
            raise ValidationException(
                f"Store fields cannot be changed: {', '.join(sorted(forbidden))}",
                field=sorted(forbidden)[0],
            )
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationException(
                f"Unknown store fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        record = await self.get_store(store_id_or_prefix)
        stores = await self._collection()
        doc = await stores.find_one_and_update(
            {"storeId": record.store_id},
            {"$set": {**updates, "updatedAt": utc_now()}},
            return_document=ReturnDocument.AFTER,
        )
        self.invalidate(record)
        if doc is None:
            raise StoreNotFoundException(record.store_id)
        return StoreRecord.from_document(doc)

    async def delete_store(self, store_id_or_prefix: str) -> StoreRecord:
        """Remove the directory record. Per-store collections are left in place."""
        record = await self.get_store(store_id_or_prefix)
        stores = await self._collection()
        await stores.delete_one({"storeId": record.store_id})
        self.invalidate(record)
        logger.info("Store record deleted: %s", record.store_id)
        return record

    def invalidate(self, record: StoreRecord) -> None:
        """Drop cached entries of record (under its storeId and its prefix)."""
        self._records.evict_where(lambda _key, cached: cached.store_id == record.store_id)

    def clear_cache(self) -> None:
        self._records.clear()


def _duplicate_field(error: DuplicateKeyError) -> str:
    """Name of the field whose unique index rejected an insert."""
    key_value = (error.details or {}).get("keyValue") or {}
    if key_value:
        return next(iter(key_value))
    message = str(error)
    for field_name in ("storeId", "prefix", "storeNumber"):
        if field_name in message:
            return field_name
    return "storeId"
