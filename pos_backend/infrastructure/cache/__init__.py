"""Cache: Redis service, cache key utilities and the in-process keyed cache.

CacheService holds product documents (shared, TTL-bound); AsyncKeyedCache
holds live runtime objects such as shard connections and tenant models.
"""

from pos_backend.infrastructure.cache.cache_protocol import CacheProtocol
from pos_backend.infrastructure.cache.keys import (
    product_key,
    store_products_pattern,
)
from pos_backend.infrastructure.cache.process_cache import AsyncKeyedCache
from pos_backend.infrastructure.cache.redis_cache import CacheService

__all__ = [
    "AsyncKeyedCache",
    "CacheProtocol",
    "CacheService",
    "product_key",
    "store_products_pattern",
]
