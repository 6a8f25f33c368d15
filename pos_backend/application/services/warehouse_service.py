"""Warehouses and merchant payments, stored in unified collections."""

from __future__ import annotations

from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from pos_backend.domain.exceptions import ResourceNotFoundException, ValidationException
from pos_backend.infrastructure.persistence.unified import UnifiedCollections
from pos_backend.shared.utils.serialization import to_jsonable


def _object_id(value: str, resource: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ResourceNotFoundException(resource, str(value)) from None


class WarehouseService:
    def __init__(self, unified: UnifiedCollections) -> None:
        self.unified = unified

    async def list_warehouses(
        self, store_id: str, skip: int = 0, limit: int = 100
    ) -> list[dict[str, Any]]:
        docs = await self.unified.warehouses.find_many(
            store_id, sort=[("name", 1)], skip=skip, limit=limit
        )
        return [to_jsonable(d) for d in docs]

    async def get_warehouse(self, store_id: str, warehouse_id: str) -> dict[str, Any]:
        doc = await self.unified.warehouses.find_one(
            store_id, {"_id": _object_id(warehouse_id, "warehouse")}
        )
        if doc is None:
            raise ResourceNotFoundException("warehouse", warehouse_id)
        return to_jsonable(doc)

    async def create_warehouse(self, store_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Add a warehouse to the store.

        Raises:
            ValidationException: name missing.
            DuplicateKeyException: the store already has a warehouse with that name.
        """
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationException("Warehouse name is required", field="name")
        doc = await self.unified.warehouses.insert_one(
            store_id, {"status": "active", **data, "name": name}
        )
        return to_jsonable(doc)

    async def update_warehouse(
        self, store_id: str, warehouse_id: str, updates: dict[str, Any]
    ) -> dict[str, Any]:
        if "_id" in updates:
            raise ValidationException("Warehouse id cannot be changed", field="_id")
        doc = await self.unified.warehouses.update_one(
            store_id, {"_id": _object_id(warehouse_id, "warehouse")}, {"$set": updates}
        )
        if doc is None:
            raise ResourceNotFoundException("warehouse", warehouse_id)
        return to_jsonable(doc)

    async def delete_warehouse(self, store_id: str, warehouse_id: str) -> None:
        deleted = await self.unified.warehouses.delete_one(
            store_id, {"_id": _object_id(warehouse_id, "warehouse")}
        )
        if not deleted:
            raise ResourceNotFoundException("warehouse", warehouse_id)

    async def payments_by_merchant(
        self, merchant_id: str, skip: int = 0, limit: int = 100
    ) -> list[dict[str, Any]]:
        """A merchant's payments across every store, newest first."""
        docs = await self.unified.payments.find_across_stores(
            {"merchantId": merchant_id}, sort=[("date", -1)], skip=skip, limit=limit
        )
        return [to_jsonable(d) for d in docs]
