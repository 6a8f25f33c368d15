"""Warehouse API for the calling store, and merchant payments across stores."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from pos_backend.api.v1.dependencies import AdminGuard, StoreId, get_warehouse_service
from pos_backend.application.services import WarehouseService
from pos_backend.schemas.warehouse import WarehouseCreate, WarehouseUpdate

router = APIRouter()

Warehouses = Annotated[WarehouseService, Depends(get_warehouse_service)]


@router.get("")
async def list_warehouses(
    store_id: StoreId,
    warehouse_svc: Warehouses,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> list[dict[str, Any]]:
    return await warehouse_svc.list_warehouses(store_id, skip=skip, limit=limit)


@router.post("", status_code=201)
async def create_warehouse(
    body: WarehouseCreate, store_id: StoreId, warehouse_svc: Warehouses
) -> dict[str, Any]:
    return await warehouse_svc.create_warehouse(store_id, body.model_dump(exclude_none=True))


@router.get("/merchant-payments/{merchant_id}", dependencies=[AdminGuard])
async def payments_by_merchant(
    merchant_id: str,
    warehouse_svc: Warehouses,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> list[dict[str, Any]]:
    """A merchant's payments across every store."""
    return await warehouse_svc.payments_by_merchant(merchant_id, skip=skip, limit=limit)


@router.get("/{warehouse_id}")
async def get_warehouse(
    warehouse_id: str, store_id: StoreId, warehouse_svc: Warehouses
) -> dict[str, Any]:
    return await warehouse_svc.get_warehouse(store_id, warehouse_id)


@router.patch("/{warehouse_id}")
async def update_warehouse(
    warehouse_id: str, body: WarehouseUpdate, store_id: StoreId, warehouse_svc: Warehouses
) -> dict[str, Any]:
    return await warehouse_svc.update_warehouse(
        store_id, warehouse_id, body.model_dump(exclude_unset=True)
    )


@router.delete("/{warehouse_id}", status_code=204)
async def delete_warehouse(
    warehouse_id: str, store_id: StoreId, warehouse_svc: Warehouses
) -> None:
    await warehouse_svc.delete_warehouse(store_id, warehouse_id)
