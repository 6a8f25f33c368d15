"""Product lookups with a read-through barcode cache.

Barcode scans are the hot path: a hit is served from Redis under
product:{storeId}:{barcode}; a miss reads the store's products collection
(main barcode first, then unit barcodes) and fills the cache. Every
product write invalidates each barcode the product had before and after.
"""

from __future__ import annotations

import logging
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from pos_backend.core.config import Settings, get_settings
from pos_backend.domain.exceptions import ResourceNotFoundException, ValidationException
from pos_backend.infrastructure.cache.cache_protocol import CacheProtocol
from pos_backend.infrastructure.cache.keys import product_key, store_products_pattern
from pos_backend.infrastructure.persistence.store_directory import StoreDirectory
from pos_backend.infrastructure.persistence.tenant_models import TenantModelResolver
from pos_backend.shared.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"


def product_barcodes(product: dict[str, Any]) -> set[str]:
    """Main barcode plus every unit barcode, trimmed, blanks dropped."""
    barcodes = set()
    main = (product.get("barcode") or "").strip()
    if main:
        barcodes.add(main)
    for unit in product.get("units") or []:
        code = (unit.get("barcode") or "").strip() if isinstance(unit, dict) else ""
        if code:
            barcodes.add(code)
    return barcodes


def _object_id(product_id: str) -> ObjectId:
    try:
        return ObjectId(product_id)
    except (InvalidId, TypeError):
        raise ResourceNotFoundException("product", product_id) from None


class ProductService:
    """Barcode lookup, product writes and cache invalidation for one process."""

    def __init__(
        self,
        resolver: TenantModelResolver,
        directory: StoreDirectory,
        cache: CacheProtocol | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.resolver = resolver
        self.directory = directory
        self.cache = cache
        self.settings = settings or get_settings()

    def _cache_ready(self) -> bool:
        return self.cache is not None and self.cache.is_available()

    async def _cache_store_id(self, store_id: str) -> str:
        record = await self.directory.get_store(store_id)
        return record.store_id

    async def get_product_by_barcode(self, store_id: str, barcode: str) -> dict[str, Any] | None:
        """Active product whose main or unit barcode matches, or None."""
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationException("Barcode is required", field="barcode")
        key = None
        if self._cache_ready():
            try:
                key = product_key(await self._cache_store_id(store_id), barcode)
            except ValueError as e:
                logger.debug("Barcode lookup not cacheable: %s", e)
            if key is not None:
                cached = await self.cache.get(key)
                if cached is not None:
                    return cached

        products = await self.resolver.get_product_model_for_store(store_id)
        product = await products.find_one({"barcode": barcode, "status": ACTIVE_STATUS})
        if product is None:
            product = await products.find_one(
                {"units.barcode": barcode, "status": ACTIVE_STATUS}
            )
        if product is None:
            return None
        result = to_jsonable(product)
        if key is not None:
            await self.cache.set(key, result, ttl=self.settings.cache_ttl_products)
        return result

    async def get_product(self, store_id: str, product_id: str) -> dict[str, Any]:
        products = await self.resolver.get_product_model_for_store(store_id)
        product = await products.find_one({"_id": _object_id(product_id)})
        if product is None:
            raise ResourceNotFoundException("product", product_id)
        return to_jsonable(product)

    async def list_products(
        self, store_id: str, skip: int = 0, limit: int = 100, status: str | None = None
    ) -> list[dict[str, Any]]:
        products = await self.resolver.get_product_model_for_store(store_id)
        query = {"status": status} if status else {}
        docs = await products.find_many(query, sort=[("name", 1)], skip=skip, limit=limit)
        return [to_jsonable(d) for d in docs]

    async def create_product(self, store_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a product (status defaults to active).

        Raises:
            DuplicateKeyException: barcode already used in this store.
        """
        products = await self.resolver.get_product_model_for_store(store_id)
        doc = {"status": ACTIVE_STATUS, **data}
        if doc.get("barcode"):
            doc["barcode"] = doc["barcode"].strip()
        created = await products.insert_one(doc)
        return to_jsonable(created)

    async def update_product(
        self, store_id: str, product_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        """Set fields on a product and invalidate every barcode it had or has."""
        if "_id" in updates:
            raise ValidationException("Product id cannot be changed", field="_id")
        products = await self.resolver.get_product_model_for_store(store_id)
        oid = _object_id(product_id)
        before = await products.find_one({"_id": oid})
        if before is None:
            raise ResourceNotFoundException("product", product_id)
        after = await products.find_one_and_update({"_id": oid}, {"$set": updates})
        if after is None:
            raise ResourceNotFoundException("product", product_id)
        await self.invalidate_product(store_id, product_barcodes(before) | product_barcodes(after))
        return to_jsonable(after)

    async def adjust_stock(
        self, store_id: str, product_id: str, delta: float
    ) -> dict[str, Any]:
        """Add delta (negative to remove) to a product's stock."""
        products = await self.resolver.get_product_model_for_store(store_id)
        after = await products.find_one_and_update(
            {"_id": _object_id(product_id)}, {"$inc": {"stock": delta}}
        )
        if after is None:
            raise ResourceNotFoundException("product", product_id)
        await self.invalidate_product(store_id, product_barcodes(after))
        return to_jsonable(after)

    async def invalidate_product(self, store_id: str, barcodes: set[str]) -> int:
        """Drop cached lookups for barcodes. Failures are logged, never raised."""
        if not barcodes or not self._cache_ready():
            return 0
        cache_store_id = await self._cache_store_id(store_id)
        removed = 0
        for barcode in barcodes:
            try:
                key = product_key(cache_store_id, barcode)
            except ValueError as e:
                logger.debug("Skipping invalidation: %s", e)
                continue
            if await self.cache.delete(key):
                removed += 1
        return removed

    async def invalidate_store_products(self, store_id: str) -> int:
        """Drop every cached product of a store (bulk writes)."""
        if not self._cache_ready():
            return 0
        try:
            pattern = store_products_pattern(await self._cache_store_id(store_id))
        except ValueError as e:
            logger.warning("Cannot invalidate product cache for %r: %s", store_id, e)
            return 0
        return await self.cache.delete_pattern(pattern)
