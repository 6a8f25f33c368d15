"""Redis backend for the read-through product cache.

Values are JSON; BSON types (ObjectId, datetime) are written as strings.
Keys come from pos_backend.infrastructure.cache.keys.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis

from pos_backend.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNLINK_CHUNK_SIZE = 500


class CacheService:
    """Product cache on Redis.

    A cache that is disabled or unreachable behaves as a permanent miss:
    reads return None, writes return False, and callers fall through to
    the database. Call connect() at startup and disconnect() at shutdown.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.redis = redis_client
        self.settings = settings or get_settings()
        self._connected = redis_client is not None

    async def connect(self) -> None:
        if not self.settings.redis_enabled:
            logger.info("Redis cache disabled by configuration")
            return
        if self.redis is not None:
            return
        password = self.settings.redis_password
        client = redis.Redis(
            host=self.settings.redis_host,
            port=self.settings.redis_port,
            db=self.settings.redis_db,
            password=password.get_secret_value() if password else None,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
        )
        try:
            await client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning("Redis connection failed: %s. Product cache disabled.", e)
            await client.aclose()
            return
        self.redis = client
        self._connected = True
        logger.info(
            "Redis cache connected: %s:%s", self.settings.redis_host, self.settings.redis_port
        )

    async def disconnect(self) -> None:
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self._connected = False
            logger.info("Redis cache disconnected")

    async def _reconnect(self) -> bool:
        if self.redis is None:
            return False
        try:
            await self.redis.aclose()
        except redis.RedisError as e:
            logger.debug("Ignoring error closing stale Redis client: %s", e)
        self.redis = None
        self._connected = False
        await self.connect()
        return self._connected

    def is_available(self) -> bool:
        return self._connected and self.redis is not None

    async def _run(
        self,
        operation: str,
        target: str,
        call: Callable[[redis.Redis], Awaitable[T]],
        fallback: T,
    ) -> T:
        """Run call against the client, reconnecting once on a connection error.

        Any Redis failure is logged and turned into fallback.
        """
        if not self.is_available():
            return fallback
        try:
            return await call(self.redis)
        except (redis.ConnectionError, redis.TimeoutError):
            if not await self._reconnect():
                logger.warning(
                    "Cache %s unavailable for %s (Redis disconnected)", operation, target
                )
                return fallback
            try:
                return await call(self.redis)
            except redis.RedisError:
                logger.exception("Cache %s error for %s after reconnect", operation, target)
                return fallback
        except redis.RedisError:
            logger.exception("Cache %s error for %s", operation, target)
            return fallback

    async def get(self, key: str) -> Any | None:
        value = await self._run("get", key, lambda client: client.get(key), None)
        if value is None:
            logger.debug("Cache MISS: %s", key)
            return None
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Ignoring undecodable cache entry %s", key)
            return None
        logger.debug("Cache HIT: %s", key)
        return decoded

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        serialized = json.dumps(value, default=str)

        async def setex(client: redis.Redis) -> bool:
            await client.setex(key, ttl, serialized)
            logger.debug("Cache SET: %s (TTL: %ss)", key, ttl)
            return True

        return await self._run("set", key, setex, False)

    async def delete(self, key: str) -> bool:
        async def delete(client: redis.Redis) -> bool:
            await client.delete(key)
            logger.debug("Cache DELETE: %s", key)
            return True

        return await self._run("delete", key, delete, False)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching pattern with SCAN and batched UNLINK; return the count."""

        async def scan_and_unlink(client: redis.Redis) -> int:
            deleted = 0
            chunk: list[str] = []
            async for key in client.scan_iter(match=pattern):
                chunk.append(key)
                if len(chunk) >= _UNLINK_CHUNK_SIZE:
                    deleted += await self._unlink(client, chunk)
                    chunk = []
            if chunk:
                deleted += await self._unlink(client, chunk)
            return deleted

        deleted = await self._run("delete_pattern", pattern, scan_and_unlink, 0)
        if deleted:
            logger.info("Cache INVALIDATE: %s (%s keys)", pattern, deleted)
        return deleted

    @staticmethod
    async def _unlink(client: redis.Redis, keys: list[str]) -> int:
        async with client.pipeline(transaction=False) as pipe:
            pipe.unlink(*keys)
            results = await pipe.execute()
        return sum(int(r or 0) for r in results)
