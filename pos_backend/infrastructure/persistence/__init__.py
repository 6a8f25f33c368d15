"""Persistence: shard registry, store directory, tenant models and unified collections."""

from pos_backend.infrastructure.persistence.database import (
    DatabaseRegistry,
    ShardConnection,
    build_shard_uri,
)
from pos_backend.infrastructure.persistence.store_directory import StoreDirectory
from pos_backend.infrastructure.persistence.tenant_models import (
    TenantModel,
    TenantModelResolver,
)
from pos_backend.infrastructure.persistence.unified import (
    StoreScopedCollection,
    UnifiedCollections,
    scoped_filter,
)

__all__ = [
    "DatabaseRegistry",
    "ShardConnection",
    "StoreDirectory",
    "StoreScopedCollection",
    "TenantModel",
    "TenantModelResolver",
    "UnifiedCollections",
    "build_shard_uri",
    "scoped_filter",
]
