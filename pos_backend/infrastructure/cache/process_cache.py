"""Process-wide keyed cache with get-or-create under a per-key lock.

Holds live runtime objects (shard connections, tenant models, store
records) that cannot go to Redis. Two concurrent first accesses for the
same key run the factory once; the loser waits and gets the winner's value.
A key's lock exists only while a caller holds or waits on it, so misses
on arbitrary keys leave nothing behind.
Lifecycle: created at startup, clear() on shutdown and in test teardown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class AsyncKeyedCache(Generic[K, V]):
    """Map of key -> value with atomic get-or-create and stale-entry eviction."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._items: dict[K, V] = {}
        self._locks: dict[K, asyncio.Lock] = {}
        # Callers holding or waiting on each lock; a lock lives only while this is non-zero.
        self._lock_users: dict[K, int] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def peek(self, key: K) -> V | None:
        """Return the cached value without validation or creation."""
        return self._items.get(key)

    def values(self) -> list[V]:
        return list(self._items.values())

    async def get_or_create(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        is_valid: Callable[[V], bool] | None = None,
        on_evict: Callable[[V], Awaitable[None]] | None = None,
    ) -> V:
        """Return the cached value for key, creating it with factory when absent or stale.

        Args:
            key: Cache key.
            factory: Coroutine function producing a new value. Exceptions propagate
                and nothing is cached.
            is_valid: Optional predicate; a cached value failing it is evicted.
            on_evict: Optional coroutine run on an evicted stale value.

        Returns:
            The cached or newly created value.
        """
        item = self._items.get(key)
        if item is not None and (is_valid is None or is_valid(item)):
            return item
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                item = self._items.get(key)
                if item is not None:
                    if is_valid is None or is_valid(item):
                        return item
                    del self._items[key]
                    logger.debug("%s cache: evicting stale entry %r", self.name, key)
                    if on_evict is not None:
                        await on_evict(item)
                item = await factory()
                self._items[key] = item
                return item
        finally:
            self._release_lock(key)

    def _release_lock(self, key: K) -> None:
        users = self._lock_users.pop(key, 1) - 1
        if users:
            self._lock_users[key] = users
        else:
            self._locks.pop(key, None)

    def evict(self, key: K) -> V | None:
        """Remove key and return its value (None if absent)."""
        return self._items.pop(key, None)

    def evict_where(self, predicate: Callable[[K, V], bool]) -> int:
        """Remove every entry matching predicate; return how many were removed."""
        stale = [k for k, v in self._items.items() if predicate(k, v)]
        for key in stale:
            del self._items[key]
        return len(stale)

    def clear(self) -> None:
        """Drop all entries. Locks held by in-flight callers are released by them."""
        self._items.clear()

    def lock_count(self) -> int:
        return len(self._locks)
