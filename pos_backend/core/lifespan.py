"""Application lifespan: startup and shutdown.

Single place for all startup/shutdown logic. Used by main.py; no business
logic here, only wiring of infrastructure (database registry, store
directory, model resolver, ledger, Redis cache) onto app.state.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from pymongo.errors import PyMongoError

from pos_backend.application.services import (
    PointsService,
    ProductService,
    SalesService,
    StoreService,
    WarehouseService,
)
from pos_backend.core.config import Settings, get_settings
from pos_backend.domain.exceptions import PosException
from pos_backend.infrastructure.cache.cache_protocol import CacheProtocol
from pos_backend.infrastructure.cache.redis_cache import CacheService
from pos_backend.infrastructure.persistence import (
    DatabaseRegistry,
    StoreDirectory,
    TenantModelResolver,
    UnifiedCollections,
)
from pos_backend.infrastructure.persistence.repositories import LedgerRepository
from pos_backend.shared.logging import setup_logging

logger = logging.getLogger(__name__)


def init_app_state(
    app: FastAPI,
    registry: DatabaseRegistry,
    cache: CacheProtocol | None = None,
    settings: Settings | None = None,
) -> None:
    """Build the routing layer and services on top of registry and attach them to app.state."""
    settings = settings or get_settings()
    directory = StoreDirectory(registry, settings)
    resolver = TenantModelResolver(registry, directory)
    unified = UnifiedCollections(registry)
    ledger = LedgerRepository(registry, settings)
    product_service = ProductService(resolver, directory, cache, settings)

    app.state.registry = registry
    app.state.cache = cache
    app.state.store_directory = directory
    app.state.model_resolver = resolver
    app.state.unified = unified
    app.state.ledger = ledger
    app.state.store_service = StoreService(directory, resolver, unified)
    app.state.points_service = PointsService(ledger, directory, resolver)
    app.state.product_service = product_service
    app.state.sales_service = SalesService(resolver, product_service, settings)
    app.state.warehouse_service = WarehouseService(unified)


async def _ensure_control_indexes(app: FastAPI) -> None:
    # Indexes are also created lazily; startup proceeds without them.
    try:
        await app.state.store_directory.ensure_indexes()
        await app.state.unified.ensure_indexes()
        await app.state.ledger.ensure_indexes()
    except (PosException, PyMongoError) as e:
        logger.warning("Control-plane index creation failed: %s", e)


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup order: logging, Redis cache (if enabled), database registry and
    services, control-plane indexes, optional shard warm-up. Shutdown order:
    model and directory caches cleared, connections closed, cache disconnect.
    """
    settings = get_settings()
    setup_logging()

    # ---- Startup ----
    cache = None
    if settings.redis_enabled:
        cache = CacheService(settings=settings)
        await cache.connect()

    registry = DatabaseRegistry(settings)
    init_app_state(app, registry, cache, settings)
    await _ensure_control_indexes(app)
    if settings.db_warm_up_on_startup:
        await registry.warm_up()
    logger.info(
        "%s started: %s shards, %s stores per shard",
        settings.app_name,
        settings.shard_count,
        settings.stores_per_shard,
    )

    yield

    # ---- Shutdown ----
    app.state.model_resolver.clear()
    app.state.store_directory.clear_cache()
    await registry.close_all()

    if cache is not None:
        await cache.disconnect()
        logger.info("Cache disconnected")
