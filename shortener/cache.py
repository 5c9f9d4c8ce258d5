"""Fail-open URL cache on top of Redis.

This module is the only place that talks to the cache backend. Every operation
collapses backend failures (connection errors, timeouts, protocol errors) into
"no data" or "no effect", logs them, and returns normally, so the resolution
engine never branches on Redis exception types.

Flow Diagram — get(code)
========================
::
    ┌─────────────┐
    │ get(code)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ key =       │
    │ prefix+code │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ GET with    │
    │ timeout     │
    └──────┬──────┘
     ERROR?│
    ┌──────┴─────┐
    │ YES        │ NO
    ▼            ▼
┌─────────┐  ┌─────────┐
│ log,    │  │ return  │
│ return  │  │ value / │
│ None    │  │ None    │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Build from a client**::
    client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    cache = RedisUrlCache(client, key_prefix="url:", ttl_seconds=3600, timeout_seconds=0.25)

**Step 2 — Use it**::
    await cache.set("aB3xY9", "https://example.com")
    url = await cache.get("aB3xY9")
    await cache.delete("aB3xY9")
    await cache.delete_many(["aB3xY9", "Zq81pL"])
    healthy = await cache.is_available()

Key Behaviours
===============
- Keys are ``key_prefix + code``; values are plain URL strings.
- One TTL for every entry, overridable per ``set`` call.
- Each round trip is bounded by ``timeout_seconds``; on expiry the call fails open.
- ``delete`` of a missing key is not an error.
- ``delete_many`` evicts in fixed-size batches, one multi-key DEL per batch.
- ``is_available`` is a PING used for health reporting only.

Classes:
    UrlCache:  Protocol implemented by every cache backend.
    RedisUrlCache:  Redis implementation.
    NullUrlCache:  Always-miss implementation used when caching is disabled.
"""

import asyncio
import logging
from typing import Optional, Protocol, Sequence

import redis.asyncio as redis
from prometheus_client import Counter

__all__ = ["NullUrlCache", "RedisUrlCache", "UrlCache", "build_url_cache"]

CACHE_OPERATIONS_TOTAL = Counter(
    "shortener_cache_operations_total",
    "Cache operations by operation and outcome",
    ["operation", "outcome"],
)


class UrlCache(Protocol):
    async def get(self, short_code: str) -> Optional[str]: ...

    async def set(self, short_code: str, long_url: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, short_code: str) -> None: ...

    async def delete_many(self, short_codes: Sequence[str]) -> None: ...

    async def is_available(self) -> bool: ...


class RedisUrlCache:
    """Redis-backed URL cache that never raises."""

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "url:",
        ttl_seconds: int = 3600,
        timeout_seconds: float = 0.25,
        logger: Optional[logging.Logger] = None,
        delete_batch_size: int = 500,
    ):
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        assert timeout_seconds > 0, f"timeout_seconds must be positive, got {timeout_seconds!r}"
        assert delete_batch_size > 0, f"delete_batch_size must be positive, got {delete_batch_size!r}"
        self._client = client
        self._key_prefix = key_prefix
        self._ttl_seconds = ttl_seconds
        self._timeout_seconds = timeout_seconds
        self._delete_batch_size = delete_batch_size
        self._logger = logger or logging.getLogger("shortener.cache")

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def build_key(self, short_code: str) -> str:
        return f"{self._key_prefix}{short_code}"

    async def get(self, short_code: str) -> Optional[str]:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                value = await self._client.get(self.build_key(short_code))
        except Exception as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="get", outcome="error").inc()
            self._logger.error(f"Failed to retrieve cached URL mapping for short code: {short_code}, error: {exc}")
            return None

        if value is None:
            CACHE_OPERATIONS_TOTAL.labels(operation="get", outcome="miss").inc()
            self._logger.debug(f"Cache miss for short code: {short_code}")
            return None

        if isinstance(value, bytes):
            value = value.decode("utf-8")
        CACHE_OPERATIONS_TOTAL.labels(operation="get", outcome="hit").inc()
        self._logger.debug(f"Cache hit for short code: {short_code} -> {value}")
        return value

    async def set(self, short_code: str, long_url: str, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self._ttl_seconds
        try:
            async with asyncio.timeout(self._timeout_seconds):
                await self._client.set(self.build_key(short_code), long_url, ex=ttl)
        except Exception as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="set", outcome="error").inc()
            self._logger.error(f"Failed to cache URL mapping for short code: {short_code}, error: {exc}")
            return

        CACHE_OPERATIONS_TOTAL.labels(operation="set", outcome="ok").inc()
        self._logger.debug(f"Cached URL mapping - ShortCode: {short_code}, LongUrl: {long_url}, TTL: {ttl}s")

    async def delete(self, short_code: str) -> None:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                deleted = await self._client.delete(self.build_key(short_code))
        except Exception as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation="delete", outcome="error").inc()
            self._logger.error(f"Failed to evict URL mapping from cache for short code: {short_code}, error: {exc}")
            return

        CACHE_OPERATIONS_TOTAL.labels(operation="delete", outcome="ok").inc()
        if deleted:
            self._logger.debug(f"Evicted URL mapping from cache: {short_code}")
        else:
            self._logger.debug(f"URL mapping not found in cache for eviction: {short_code}")

    async def delete_many(self, short_codes: Sequence[str]) -> None:
        """Evict ``short_codes`` with one multi-key DEL per batch, sequentially."""
        for start in range(0, len(short_codes), self._delete_batch_size):
            batch = short_codes[start : start + self._delete_batch_size]
            keys = [self.build_key(code) for code in batch]
            try:
                async with asyncio.timeout(self._timeout_seconds):
                    deleted = await self._client.delete(*keys)
            except Exception as exc:
                CACHE_OPERATIONS_TOTAL.labels(operation="delete_many", outcome="error").inc()
                self._logger.error(
                    f"Failed to evict {len(keys)} URL mappings from cache "
                    f"(first short code: {batch[0]}), entries expire by TTL, error: {exc}"
                )
                continue

            CACHE_OPERATIONS_TOTAL.labels(operation="delete_many", outcome="ok").inc()
            self._logger.debug(f"Evicted {deleted} of {len(keys)} URL mappings from cache")

    async def is_available(self) -> bool:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                await self._client.ping()
            return True
        except Exception as exc:
            self._logger.warning(f"Redis is not available: {exc}")
            return False


class NullUrlCache:
    """Cache that stores nothing; every lookup is a miss."""

    async def get(self, short_code: str) -> Optional[str]:
        return None

    async def set(self, short_code: str, long_url: str, ttl_seconds: Optional[int] = None) -> None:
        return None

    async def delete(self, short_code: str) -> None:
        return None

    async def delete_many(self, short_codes: Sequence[str]) -> None:
        return None

    async def is_available(self) -> bool:
        return False


def build_url_cache(settings, client: Optional[redis.Redis], logger: Optional[logging.Logger] = None) -> UrlCache:
    """Return the cache implementation selected by ``CACHE_ENABLED``."""
    if not settings.CACHE_ENABLED or client is None:
        return NullUrlCache()
    return RedisUrlCache(
        client,
        key_prefix=settings.CACHE_KEY_PREFIX,
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        timeout_seconds=settings.CACHE_OPERATION_TIMEOUT_SECONDS,
        logger=logger,
    )
