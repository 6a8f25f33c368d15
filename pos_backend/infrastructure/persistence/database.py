"""Persistence: shard registry and live MongoDB connections.

Each shard is a separate database ("{DB_PREFIX}_{shard_id}") reached through
its own client built from the single base MONGODB_URI, with the database path
segment substituted. Connections are opened lazily on first use, retried with
exponential backoff on network-class failures, and cached process-wide.

The control-plane database (stores directory, points ledger, unified
collections) uses the base URI itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any

from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

from pos_backend.core.config import Settings, get_settings
from pos_backend.core.constants import DEFAULT_CONTROL_DATABASE, MAX_DATABASE_NAME_LENGTH
from pos_backend.domain.exceptions import InvalidShardIdException, ShardConnectionError
from pos_backend.infrastructure.cache.process_cache import AsyncKeyedCache
from pos_backend.shared.logging import mask_uri

logger = logging.getLogger(__name__)

_CONTROL_KEY = "control"

# Query parameters that belong to X.509 client-certificate auth; never forwarded to shard URIs.
_X509_PARAMS = frozenset({"tlsCertificateKeyFile", "tlsCertificateKeyFilePassword"})

_NETWORK_ERROR_MARKERS = (
    "etimeout",
    "enotfound",
    "econnrefused",
    "timeout",
    "timed out",
    "network",
    "dns",
)


def _strip_x509_params(query: str) -> str:
    kept = []
    for param in query.split("&"):
        if not param:
            continue
        key, _, value = param.partition("=")
        if key in _X509_PARAMS:
            continue
        if key == "authMechanism" and value == "MONGODB-X509":
            continue
        kept.append(param)
    return "&".join(kept)


def build_shard_uri(base_uri: str, database_name: str) -> str:
    """Return base_uri with its database path segment replaced by database_name.

    Credentials, hosts and query options are kept verbatim, except X.509
    auth parameters, which are removed. A base URI without a database
    segment gets one appended.

    Raises:
        ValueError: base_uri has no scheme separator.
    """
    base, _, query = base_uri.partition("?")
    scheme_end = base.find("://")
    if scheme_end == -1:
        raise ValueError("MongoDB URI has no scheme")
    path_start = base.find("/", scheme_end + 3)
    authority = base if path_start == -1 else base[:path_start]
    uri = f"{authority}/{database_name}"
    query = _strip_x509_params(query)
    return f"{uri}?{query}" if query else uri


def database_name_from_uri(uri: str) -> str | None:
    """Database path segment of a MongoDB URI, or None when absent."""
    base = uri.partition("?")[0]
    scheme_end = base.find("://")
    if scheme_end == -1:
        return None
    path_start = base.find("/", scheme_end + 3)
    if path_start == -1:
        return None
    name = base[path_start + 1 :]
    return name or None


def is_network_error(exc: BaseException) -> bool:
    """Return True for failures worth retrying (unreachable host, DNS, timeouts)."""
    if isinstance(exc, ConnectionFailure):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _NETWORK_ERROR_MARKERS)


class ShardConnection:
    """A live client bound to one database.

    Cached by the registry until closed; tenant models hold a reference and
    are rebuilt when the connection they were created on is no longer current.
    """

    def __init__(self, client: Any, database_name: str, shard_id: int | None) -> None:
        self.client = client
        self.database_name = database_name
        self.shard_id = shard_id
        self.database = client[database_name]
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return not self._closed

    def mark_disconnected(self) -> None:
        """Flag the connection as dead so the next lookup reopens it."""
        self._closed = True

    @contextmanager
    def watch(self) -> Iterator[None]:
        """Mark the connection disconnected if the block raises ConnectionFailure.

        Wraps every driver call made through the connection, so a dropped
        shard is reopened on the next lookup instead of being reused.
        """
        try:
            yield
        except ConnectionFailure as e:
            if not self._closed:
                logger.warning(
                    "Connection to %s failed, reopening on next use: %s", self.database_name, e
                )
            self.mark_disconnected()
            raise

    async def close(self) -> None:
        self._closed = True
        await self.client.close()

    def __repr__(self) -> str:
        return f"ShardConnection(database={self.database_name!r}, connected={self.is_connected})"


class DatabaseRegistry:
    """Maps shard ids to databases and owns the per-shard connection cache.

    Lifecycle: created in the app lifespan, close_all() on shutdown and in
    test teardown.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Callable[..., Any] = AsyncMongoClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._client_factory = client_factory
        self._sleep = sleep
        self._connections: AsyncKeyedCache[int | str, ShardConnection] = AsyncKeyedCache(
            "connection"
        )

    @property
    def shard_count(self) -> int:
        return self.settings.shard_count

    def get_database_name(self, shard_id: int) -> str:
        """Return "{DB_PREFIX}_{shard_id}".

        Raises:
            InvalidShardIdException: shard_id outside 1..SHARD_COUNT.
        """
        if isinstance(shard_id, bool) or not isinstance(shard_id, int):
            raise InvalidShardIdException(shard_id, self.shard_count)
        if shard_id < 1 or shard_id > self.shard_count:
            raise InvalidShardIdException(shard_id, self.shard_count)
        name = f"{self.settings.db_prefix}_{shard_id}"
        if len(name) > MAX_DATABASE_NAME_LENGTH:
            raise ValueError(f"Database name too long: {name}")
        return name

    def get_database_uri(self, shard_id: int) -> str:
        """Base MONGODB_URI with the shard's database substituted."""
        return build_shard_uri(
            self.settings.mongodb_uri.get_secret_value(),
            self.get_database_name(shard_id),
        )

    @property
    def control_database_name(self) -> str:
        return (
            self.settings.control_database_name
            or database_name_from_uri(self.settings.mongodb_uri.get_secret_value())
            or DEFAULT_CONTROL_DATABASE
        )

    async def get_connection(self, shard_id: int) -> ShardConnection:
        """Return the live connection for shard_id, opening it when absent or dead.

        Raises:
            InvalidShardIdException: shard_id outside 1..SHARD_COUNT.
            ShardConnectionError: the shard stayed unreachable after retries.
        """
        database_name = self.get_database_name(shard_id)
        uri = self.get_database_uri(shard_id)
        return await self._connections.get_or_create(
            shard_id,
            lambda: self._open(uri, database_name, shard_id),
            is_valid=lambda conn: conn.is_connected,
            on_evict=self._close_quietly,
        )

    async def get_control_connection(self) -> ShardConnection:
        """Return the live connection to the control-plane database."""
        database_name = self.control_database_name
        uri = self.settings.mongodb_uri.get_secret_value()
        return await self._connections.get_or_create(
            _CONTROL_KEY,
            lambda: self._open(uri, database_name, None),
            is_valid=lambda conn: conn.is_connected,
            on_evict=self._close_quietly,
        )

    async def get_control_database(self) -> Any:
        """Return the control-plane database handle."""
        connection = await self.get_control_connection()
        return connection.database

    async def warm_up(self) -> int:
        """Open every shard connection in turn; return how many succeeded.

        Failures are logged and skipped; the shard is retried on first use.
        """
        ready = 0
        for shard_id in range(1, self.shard_count + 1):
            try:
                await self.get_connection(shard_id)
                ready += 1
            except ShardConnectionError as e:
                logger.warning(
                    "Warm-up: shard %s unavailable: %s", shard_id, e.details.get("reason")
                )
        logger.info("Warm-up complete: %s/%s shards connected", ready, self.shard_count)
        return ready

    def connection_count(self) -> int:
        """Number of cached connections (shards plus control plane)."""
        return len(self._connections)

    async def close_all(self) -> None:
        """Close every cached connection and clear the cache."""
        for connection in self._connections.values():
            await self._close_quietly(connection)
        self._connections.clear()
        logger.info("All database connections closed")

    async def _open(
        self, uri: str, database_name: str, shard_id: int | None
    ) -> ShardConnection:
        max_retries = self.settings.shard_connect_max_retries
        last_error: BaseException | None = None
        for attempt in range(max_retries):
            client = None
            try:
                client = self._client_factory(uri, **self._client_options())
                await client.admin.command("ping")
                logger.info(
                    "Connected to database %s (%s)", database_name, mask_uri(uri)
                )
                return ShardConnection(client, database_name, shard_id)
            except PyMongoError as e:
                last_error = e
                if client is not None:
                    await self._close_client_quietly(client)
                if not is_network_error(e) or attempt == max_retries - 1:
                    break
                delay = self.settings.shard_connect_retry_base_delay * (2**attempt)
                logger.warning(
                    "Connection to %s failed (attempt %s/%s), retrying in %ss: %s",
                    database_name,
                    attempt + 1,
                    max_retries,
                    delay,
                    e,
                )
                await self._sleep(delay)
        logger.error("Could not connect to database %s: %s", database_name, last_error)
        raise ShardConnectionError(database_name, str(last_error))

    def _client_options(self) -> dict[str, Any]:
        s = self.settings
        return {
            "maxPoolSize": s.db_max_pool_size,
            "minPoolSize": s.db_min_pool_size,
            "connectTimeoutMS": s.db_connect_timeout_ms,
            "socketTimeoutMS": s.db_socket_timeout_ms,
            "serverSelectionTimeoutMS": s.db_server_selection_timeout_ms,
            "retryWrites": True,
            "w": "majority",
        }

    async def _close_quietly(self, connection: ShardConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning(
                "Error closing connection to %s: %s", connection.database_name, e
            )

    async def _close_client_quietly(self, client: Any) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug("Error closing failed client: %s", e)
