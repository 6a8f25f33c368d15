"""Tests for CacheService against a mocked redis.asyncio client."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from pos_backend.infrastructure.cache.redis_cache import CacheService
from tests.conftest import make_settings


@pytest.fixture
def redis_client() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def cache_service(redis_client: AsyncMock) -> CacheService:
    return CacheService(redis_client, make_settings())


async def test_get_deserializes_hit(cache_service: CacheService, redis_client: AsyncMock) -> None:
    redis_client.get.return_value = json.dumps({"name": "Tea"})
    assert await cache_service.get("product:shop-a:1") == {"name": "Tea"}


async def test_get_miss_returns_none(cache_service: CacheService, redis_client: AsyncMock) -> None:
    redis_client.get.return_value = None
    assert await cache_service.get("product:shop-a:1") is None


async def test_set_uses_ttl(cache_service: CacheService, redis_client: AsyncMock) -> None:
    assert await cache_service.set("product:shop-a:1", {"stock": 3}, ttl=3600) is True
    redis_client.setex.assert_awaited_once_with("product:shop-a:1", 3600, '{"stock": 3}')


async def test_redis_errors_degrade_to_miss(
    cache_service: CacheService, redis_client: AsyncMock
) -> None:
    redis_client.get.side_effect = redis.ResponseError("WRONGTYPE")
    redis_client.setex.side_effect = redis.ResponseError("OOM")
    redis_client.delete.side_effect = redis.ResponseError("READONLY")

    assert await cache_service.get("k") is None
    assert await cache_service.set("k", 1) is False
    assert await cache_service.delete("k") is False


async def test_unavailable_cache_is_a_permanent_miss() -> None:
    cache_service = CacheService(None, make_settings())
    assert cache_service.is_available() is False
    assert await cache_service.get("k") is None
    assert await cache_service.set("k", 1) is False
    assert await cache_service.delete_pattern("product:*") == 0


async def test_connect_does_nothing_when_disabled() -> None:
    cache_service = CacheService(None, make_settings(redis_enabled=False))
    await cache_service.connect()
    assert cache_service.redis is None


async def test_delete_pattern_scans_and_unlinks(
    cache_service: CacheService, redis_client: MagicMock
) -> None:
    async def scan_iter(match: str):
        for key in ("product:shop-a:1", "product:shop-a:2"):
            yield key

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[2])
    pipe_context = MagicMock()
    pipe_context.__aenter__ = AsyncMock(return_value=pipe)
    pipe_context.__aexit__ = AsyncMock(return_value=False)
    redis_client.scan_iter = scan_iter
    redis_client.pipeline = MagicMock(return_value=pipe_context)

    assert await cache_service.delete_pattern("product:shop-a:*") == 2
    pipe.unlink.assert_called_once_with("product:shop-a:1", "product:shop-a:2")


async def test_disconnect_closes_client(
    cache_service: CacheService, redis_client: AsyncMock
) -> None:
    await cache_service.disconnect()
    redis_client.aclose.assert_awaited_once()
    assert cache_service.is_available() is False


async def test_lost_connection_turns_cache_into_miss(
    cache_service: CacheService, redis_client: AsyncMock
) -> None:
    redis_client.get.side_effect = redis.ConnectionError("connection reset")

    assert await cache_service.get("product:shop-a:1") is None
    redis_client.aclose.assert_awaited_once()
    assert cache_service.is_available() is False
    assert await cache_service.set("product:shop-a:1", {"stock": 1}) is False


async def test_undecodable_entry_is_a_miss(
    cache_service: CacheService, redis_client: AsyncMock
) -> None:
    redis_client.get.return_value = "{not json"
    assert await cache_service.get("product:shop-a:1") is None
