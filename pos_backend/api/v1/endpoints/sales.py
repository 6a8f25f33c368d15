"""Sales API for the calling store."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from pos_backend.api.v1.dependencies import StoreId, get_sales_service
from pos_backend.application.services import SalesService
from pos_backend.schemas.sale import NextInvoiceResponse, ReturnCreateRequest, SaleCreateRequest

router = APIRouter()

Sales = Annotated[SalesService, Depends(get_sales_service)]


@router.get("/next-invoice-number", response_model=NextInvoiceResponse)
async def next_invoice_number(store_id: StoreId, sales_svc: Sales):
    """Preview the next number. Not reserved: create may still assign a later one."""
    return NextInvoiceResponse(invoice_number=await sales_svc.next_invoice_number(store_id))


@router.get("")
async def list_sales(
    store_id: StoreId,
    sales_svc: Sales,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
) -> list[dict[str, Any]]:
    return await sales_svc.list_sales(store_id, skip=skip, limit=limit)


@router.post("", status_code=201)
async def create_sale(body: SaleCreateRequest, store_id: StoreId, sales_svc: Sales) -> dict[str, Any]:
    return await sales_svc.create_sale(store_id, body.model_dump(by_alias=True))


@router.post("/returns", status_code=201)
async def create_return(
    body: ReturnCreateRequest, store_id: StoreId, sales_svc: Sales
) -> dict[str, Any]:
    """Restock returned items and record a negative-total invoice."""
    return await sales_svc.create_return(store_id, body.model_dump(by_alias=True))


@router.get("/{sale_id}")
async def get_sale(sale_id: str, store_id: StoreId, sales_svc: Sales) -> dict[str, Any]:
    return await sales_svc.get_sale(store_id, sale_id)
