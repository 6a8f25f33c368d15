"""Loyalty points API: earn and redeem at the calling store, balances across stores."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from pos_backend.api.v1.dependencies import AdminGuard, StoreId, get_points_service
from pos_backend.application.services import PointsService
from pos_backend.schemas.points import (
    BalanceResponse,
    EarnPointsRequest,
    EarnPointsResponse,
    PointsHistoryResponse,
    PointsTransactionResponse,
    RedeemPointsRequest,
    RedeemPointsResponse,
    StorePointsAccountResponse,
)

router = APIRouter()

Points = Annotated[PointsService, Depends(get_points_service)]


@router.post("/earn", response_model=EarnPointsResponse, status_code=201)
async def earn_points(body: EarnPointsRequest, store_id: StoreId, points_svc: Points):
    result = await points_svc.earn_points(
        store_id,
        body.customer_id,
        body.purchase_amount,
        percentage=body.points_percentage,
        invoice_number=body.invoice_number,
    )
    return EarnPointsResponse.model_validate(result)


@router.post("/redeem", response_model=RedeemPointsResponse)
async def redeem_points(body: RedeemPointsRequest, store_id: StoreId, points_svc: Points):
    result = await points_svc.redeem_points(
        store_id,
        body.points,
        global_customer_id=body.global_customer_id,
        phone=body.phone,
        email=body.email,
        local_customer_id=body.customer_id,
        invoice_number=body.invoice_number,
        description=body.description,
    )
    return RedeemPointsResponse.model_validate(result)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    store_id: StoreId,
    points_svc: Points,
    customer_id: str | None = None,
    global_customer_id: str | None = None,
    phone: str | None = None,
    email: str | None = None,
):
    result = await points_svc.get_balance(
        store_id,
        global_customer_id=global_customer_id,
        phone=phone,
        email=email,
        local_customer_id=customer_id,
    )
    return BalanceResponse.model_validate(result)


@router.get("/history/{global_customer_id}", response_model=PointsHistoryResponse)
async def get_history(
    global_customer_id: str,
    store_id: StoreId,
    points_svc: Points,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=200),
):
    """Ledger entries for a customer across every store, newest first."""
    items, total = await points_svc.get_history(global_customer_id, skip=skip, limit=limit)
    return PointsHistoryResponse(
        items=[PointsTransactionResponse.model_validate(i) for i in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/store-account", response_model=StorePointsAccountResponse)
async def get_store_account(store_id: StoreId, points_svc: Points):
    """Points issued and redeemed by the calling store."""
    return StorePointsAccountResponse.model_validate(
        await points_svc.get_store_account(store_id)
    )


@router.get(
    "/store-accounts",
    response_model=list[StorePointsAccountResponse],
    dependencies=[AdminGuard],
)
async def list_store_accounts(
    points_svc: Points,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    accounts = await points_svc.list_store_accounts(skip=skip, limit=limit)
    return [StorePointsAccountResponse.model_validate(a) for a in accounts]
