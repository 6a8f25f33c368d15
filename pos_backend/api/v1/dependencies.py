"""Presentation-layer dependency injection.

Services are built once in the lifespan (pos_backend.core.lifespan) and
stored on app.state; these dependencies hand them to routes. The store id
comes from the X-Store-ID header and is resolved against the Store
Directory before the route runs.
"""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from pos_backend.application.services import (
    PointsService,
    ProductService,
    SalesService,
    StoreService,
    WarehouseService,
)
from pos_backend.core.config import get_settings
from pos_backend.infrastructure.persistence.store_directory import StoreDirectory


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


def get_store_directory(request: Request) -> StoreDirectory:
    return _state(request, "store_directory")


def get_store_service(request: Request) -> StoreService:
    return _state(request, "store_service")


def get_points_service(request: Request) -> PointsService:
    return _state(request, "points_service")


def get_product_service(request: Request) -> ProductService:
    return _state(request, "product_service")


def get_sales_service(request: Request) -> SalesService:
    return _state(request, "sales_service")


def get_warehouse_service(request: Request) -> WarehouseService:
    return _state(request, "warehouse_service")


async def get_store_id(
    request: Request,
    directory: Annotated[StoreDirectory, Depends(get_store_directory)],
) -> str:
    """Canonical store id for the store named in the store header.

    Raises 400 when the header is missing; StoreNotFoundException (404)
    when no store matches.
    """
    name = get_settings().store_header_name
    value = request.headers.get(name)
    if not value or not value.strip():
        raise HTTPException(status_code=400, detail=f"Missing required header: {name}")
    record = await directory.get_store(value)
    return record.store_id


def require_admin_secret(request: Request) -> None:
    """Guard for store administration routes.

    - Settings must define ADMIN_API_SECRET (otherwise 503).
    - Requests must include X-Admin-Secret matching that value (otherwise 401).
    """
    settings = get_settings()
    if not settings.admin_api_secret:
        raise HTTPException(
            status_code=503,
            detail="Store administration is not configured (ADMIN_API_SECRET is not set).",
        )
    header_secret = request.headers.get("X-Admin-Secret") or ""
    expected = settings.admin_api_secret.get_secret_value()
    if not header_secret or not hmac.compare_digest(header_secret, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


StoreId = Annotated[str, Depends(get_store_id)]
AdminGuard = Depends(require_admin_secret)
