"""Redis cache-aside layer.

Keys are composed as ``{prefix}:{namespace}:{identifier}``.  List and spatial
queries are keyed by a SHA-256 digest of their serialized filter so that each
distinct query shape gets its own entry.

The cache never fails a caller: connection or protocol errors are logged at
WARNING and treated as a miss (reads) or a no-op (writes and invalidation).
"""

import hashlib
import json
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis
from loguru import logger
from pydantic import TypeAdapter
from redis.exceptions import RedisError

from location_api.core.config import Settings

# Namespaces
LOCATION = "location"
LOCATION_LIST = "location:list"
LOCATION_GEO = "location:geo"
ADDRESS_COMPONENT = "addrcomp"
ADDRESS_COMPONENT_LIST = "addrcomp:list"
LINK = "lac"
LINK_LIST_BY_LOCATION = "lac:list:loc"
LINK_LIST_BY_COMPONENT = "lac:list:ac"
LINK_GEO = "lac:geo"

_CACHE_ERRORS = (RedisError, OSError, TimeoutError)


def filter_digest(filter_data: Any) -> str:
    """Serialize a filter deterministically and return its SHA-256 hex digest."""
    serialized = json.dumps(filter_data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class LocationCache:
    """Namespaced JSON cache over a ``redis.asyncio`` client.

    A ``None`` client disables caching: every read misses and every write is
    dropped.
    """

    def __init__(self, client: redis.Redis | None, *, prefix: str = "locapi", default_ttl: int = 3600) -> None:
        self._client = client
        self.prefix = prefix
        self.default_ttl = default_ttl

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def key(self, namespace: str, identifier: Any) -> str:
        """Build a fully-qualified key for one entity."""
        return f"{self.prefix}:{namespace}:{identifier}"

    def query_key(self, namespace: str, filter_data: Any) -> str:
        """Build a fully-qualified key for one query shape."""
        return self.key(namespace, filter_digest(filter_data))

    def pattern(self, namespace: str) -> str:
        """Glob pattern matching every key of a namespace."""
        return f"{self.prefix}:{namespace}:*"

    async def get_json(self, key: str) -> Any | None:
        """Return the decoded value stored at ``key``, or None on miss/error."""
        if self._client is None:
            return None
        try:
            raw = await self._client.get(key)
        except _CACHE_ERRORS as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable cache entry {key}")
            await self.delete(key)
            return None

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store ``value`` as JSON with a TTL (defaults to the entity TTL)."""
        if self._client is None:
            return
        try:
            await self._client.set(key, json.dumps(value, default=str), ex=ttl or self.default_ttl)
        except _CACHE_ERRORS as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def delete(self, *keys: str) -> None:
        """Delete the given keys."""
        if self._client is None or not keys:
            return
        try:
            await self._client.delete(*keys)
        except _CACHE_ERRORS as e:
            logger.warning(f"Cache delete failed for {len(keys)} key(s): {e}")

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern using SCAN.

        Returns:
            Number of keys deleted.
        """
        if self._client is None:
            return 0
        deleted = 0
        try:
            batch: list[str] = []
            async for key in self._client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._client.delete(*batch)
        except _CACHE_ERRORS as e:
            logger.warning(f"Cache pattern invalidation failed for {pattern}: {e}")
        return deleted

    async def invalidate_namespaces(self, *namespaces: str) -> None:
        """Drop every entry of the given namespaces."""
        for namespace in namespaces:
            await self.delete_pattern(self.pattern(namespace))

    async def read_through(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        adapter: TypeAdapter[Any],
        ttl: int | None = None,
    ) -> Any:
        """Cache-aside read: return the cached value or load, store and return it.

        Args:
            key: Fully-qualified cache key.
            loader: Coroutine factory producing the value from the store.
            adapter: Pydantic adapter used to (de)serialize the value.
            ttl: Entry TTL in seconds.

        Returns:
            The cached or freshly loaded value.
        """
        cached = await self.get_json(key)
        if cached is not None:
            try:
                return adapter.validate_python(cached)
            except ValueError:
                logger.warning(f"Cache entry {key} no longer matches its schema; reloading")
        value = await loader()
        if value is not None:
            await self.set_json(key, adapter.dump_python(value, mode="json"), ttl)
        return value

    async def close(self) -> None:
        """Close the underlying client connection pool."""
        if self._client is not None:
            await self._client.aclose()


def create_cache(settings: Settings) -> LocationCache:
    """Build the cache handle from settings (disabled when no Redis URL is set)."""
    client = None
    if settings.cache_enabled:
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.cache_socket_timeout,
            socket_connect_timeout=settings.cache_socket_timeout,
        )
    else:
        logger.info("REDIS_URL not set; cache-aside layer disabled")
    return LocationCache(client, prefix=settings.cache_key_prefix, default_ttl=settings.cache_ttl_seconds)
