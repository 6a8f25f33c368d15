"""Product API for the calling store: barcode lookup (cached), create, update, stock."""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Query

from pos_backend.api.v1.dependencies import StoreId, get_product_service
from pos_backend.application.services import ProductService
from pos_backend.domain.exceptions import ResourceNotFoundException
from pos_backend.schemas.product import ProductCreate, StockAdjustment

router = APIRouter()

Products = Annotated[ProductService, Depends(get_product_service)]


@router.get("")
async def list_products(
    store_id: StoreId,
    product_svc: Products,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    status: str | None = None,
) -> list[dict[str, Any]]:
    return await product_svc.list_products(store_id, skip=skip, limit=limit, status=status)


@router.get("/barcode/{barcode}")
async def get_product_by_barcode(
    barcode: str, store_id: StoreId, product_svc: Products
) -> dict[str, Any]:
    """Active product whose main or unit barcode matches."""
    product = await product_svc.get_product_by_barcode(store_id, barcode)
    if product is None:
        raise ResourceNotFoundException("product", barcode)
    return product


@router.get("/{product_id}")
async def get_product(product_id: str, store_id: StoreId, product_svc: Products) -> dict[str, Any]:
    return await product_svc.get_product(store_id, product_id)


@router.post("", status_code=201)
async def create_product(
    body: ProductCreate, store_id: StoreId, product_svc: Products
) -> dict[str, Any]:
    return await product_svc.create_product(
        store_id, body.model_dump(by_alias=True, exclude_none=True)
    )


@router.patch("/{product_id}")
async def update_product(
    product_id: str,
    store_id: StoreId,
    product_svc: Products,
    updates: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    return await product_svc.update_product(store_id, product_id, updates)


@router.post("/{product_id}/stock")
async def adjust_stock(
    product_id: str, body: StockAdjustment, store_id: StoreId, product_svc: Products
) -> dict[str, Any]:
    return await product_svc.adjust_stock(store_id, product_id, body.delta)


@router.post("/cache/invalidate")
async def invalidate_product_cache(store_id: StoreId, product_svc: Products) -> dict[str, int]:
    """Drop every cached barcode lookup of the calling store (after bulk imports)."""
    return {"removed": await product_svc.invalidate_store_products(store_id)}
