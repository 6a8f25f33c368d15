"""Store administration API. Every route requires the X-Admin-Secret header."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from pos_backend.api.v1.dependencies import AdminGuard, get_store_service
from pos_backend.application.dtos.store import StoreCreate
from pos_backend.application.services import StoreService
from pos_backend.schemas.store import (
    StoreCreateRequest,
    StoreCreateResponse,
    StoreResponse,
    StoreStatusUpdate,
    StoreUpdate,
    SubscriptionRenewRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[AdminGuard])

Stores = Annotated[StoreService, Depends(get_store_service)]


@router.post("", response_model=StoreCreateResponse, status_code=201)
async def create_store(body: StoreCreateRequest, store_svc: Stores):
    """Onboard a store: directory record on the next shard, collections, optional admin."""
    result = await store_svc.onboard_store(
        StoreCreate(
            store_id=body.store_id,
            name=body.name,
            prefix=body.prefix,
            email=body.email,
            phone=body.phone,
            address=body.address,
            city=body.city,
            country=body.country,
            is_trial_account=body.is_trial_account,
            subscription_duration=body.subscription_duration.value
            if body.subscription_duration
            else None,
            subscription_end_date=body.subscription_end_date,
            create_default_admin=body.create_default_admin,
            admin_email=body.admin_email,
            admin_name=body.admin_name,
            admin_password=body.admin_password.get_secret_value()
            if body.admin_password
            else None,
        )
    )
    return StoreCreateResponse(
        store=StoreResponse.model_validate(result.store),
        admin_username=result.admin_username,
        provisioned_collections=result.provisioned_collections,
    )


@router.get("", response_model=list[StoreResponse])
async def list_stores(
    store_svc: Stores,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    active_only: bool = False,
):
    records = await store_svc.list_stores(skip=skip, limit=limit, active_only=active_only)
    return [StoreResponse.model_validate(r) for r in records]


@router.get("/{store_id}", response_model=StoreResponse)
async def get_store(store_id: str, store_svc: Stores):
    """Get a store by id or prefix."""
    return StoreResponse.model_validate(await store_svc.get_store(store_id))


@router.patch("/{store_id}", response_model=StoreResponse)
async def update_store(store_id: str, body: StoreUpdate, store_svc: Stores):
    return StoreResponse.model_validate(
        await store_svc.update_store(store_id, body.to_document())
    )


@router.post("/{store_id}/subscription", response_model=StoreResponse)
async def renew_subscription(store_id: str, body: SubscriptionRenewRequest, store_svc: Stores):
    record = await store_svc.renew_subscription(
        store_id,
        duration=body.subscription_duration.value if body.subscription_duration else None,
        end_date=body.subscription_end_date,
    )
    return StoreResponse.model_validate(record)


@router.patch("/{store_id}/status", response_model=StoreResponse)
async def set_store_status(store_id: str, body: StoreStatusUpdate, store_svc: Stores):
    return StoreResponse.model_validate(await store_svc.set_active(store_id, body.is_active))


@router.delete("/{store_id}", status_code=204)
async def delete_store(store_id: str, store_svc: Stores) -> None:
    """Delete the directory record. The store's collections are kept."""
    record = await store_svc.delete_store(store_id)
    logger.info("Store %s deleted via admin API", record.store_id)
