"""Application services: stores, points, products, sales, warehouses."""

from pos_backend.application.services.points_service import PointsService, compute_points
from pos_backend.application.services.product_service import ProductService
from pos_backend.application.services.sales_service import SalesService
from pos_backend.application.services.store_service import StoreService, subscription_window
from pos_backend.application.services.warehouse_service import WarehouseService

__all__ = [
    "PointsService",
    "ProductService",
    "SalesService",
    "StoreService",
    "WarehouseService",
    "compute_points",
    "subscription_window",
]
