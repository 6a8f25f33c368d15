"""API v1 router aggregation.

Includes all endpoint modules with consistent prefix and tags. All routes
use dependencies from pos_backend.api.v1.dependencies.
"""

from fastapi import APIRouter

from pos_backend.api.v1.endpoints import health, points, products, sales, stores, warehouses

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(stores.router, prefix="/stores", tags=["stores"])
api_router.include_router(points.router, prefix="/points", tags=["points"])
api_router.include_router(products.router, prefix="/products", tags=["products"])
api_router.include_router(sales.router, prefix="/sales", tags=["sales"])
api_router.include_router(warehouses.router, prefix="/warehouses", tags=["warehouses"])
