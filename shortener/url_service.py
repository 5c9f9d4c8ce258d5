"""Short-link resolution engine - core business logic.

This module orchestrates the durable mapping store and the fail-open cache to
create, resolve and expire short links.

Architecture Overview
=====================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                      UrlMappingService                       │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │ create_short_url│  │    resolve      │  │ expire_older │ │
    │  │                 │  │                 │  │ _than        │ │
    │  │ • Normalize     │  │ • Cache first   │  │ • Enumerate  │ │
    │  │ • Dedup by URL  │  │ • Store fallback│  │ • Bulk delete│ │
    │  │ • Allocate code │  │ • Cache fill    │  │ • Evict codes│ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │  MappingStore   │  │    UrlCache     │  │  Code generator │
    │  (PostgreSQL)   │  │ (Redis, fail-   │  │  (nanoid)       │
    │                 │  │  open)          │  │                 │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Short Link Creation Flow
------------------------
::
    ┌─────────────┐
    │ long_url    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate &  │──── blank / too long ──▶ INVALID_INPUT
    │ normalize   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ find_by_url │──── found ──▶ return existing mapping
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Generate    │◀──── taken / insert collision (≤ 5 attempts)
    │ candidate   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ save()      │──── budget spent ──▶ CODE_GENERATION_EXHAUSTED
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.set   │ (best effort)
    └─────────────┘

Resolution Flow
---------------
::
    ┌─────────────┐
    │ short_code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.get   │──── hit ──▶ return URL (no store call)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │find_by_code │──── absent ──▶ NOT_FOUND
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.set   │──▶ return URL
    └─────────────┘

Usage Examples
==============
```python
service = UrlMappingService(SqlAlchemyMappingStore(session), cache, settings=settings, logger=logger)

mapping = await service.create_short_url("example.com/docs")
assert mapping.long_url == "https://example.com/docs"

url = await service.resolve(mapping.short_code)

removed = await service.expire_older_than(cutoff)
```

Key Behaviours
==============
- Creation is idempotent per normalized URL but not serialized: two concurrent
  creations of a new URL may both allocate a code.
- Cache failures never surface; store failures surface as BACKEND_FAILURE.
- Codes evicted by ``expire_older_than`` are exactly the codes enumerated before
  the bulk delete.
"""

import datetime
import logging
import time
from typing import TYPE_CHECKING, Callable, Optional, Union

from prometheus_client import Counter, Histogram
from sqlalchemy.exc import SQLAlchemyError

from shortener.cache import UrlCache
from shortener.codegen import generate_short_code
from shortener.config import Settings, get_settings
from shortener.enums import CacheStatus, ErrorKind, RequestStatus
from shortener.exceptions import ShortCodeCollisionError, ShortenerError
from shortener.models import UrlMapping
from shortener.store import MappingStore, SqlAlchemyMappingStore

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = ["UrlMappingService", "normalize_url"]

Logger = Union[logging.Logger, logging.LoggerAdapter]

_ALLOWED_SCHEMES = ("http://", "https://")
_DEFAULT_SCHEME = "https://"


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "shortener_creation_requests_total",
    "Total short link creation requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "shortener_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_LOOKUP_REQUESTS_TOTAL = Counter(
    "shortener_lookup_requests_total",
    "Total short code resolution requests",
    ["status", "cache_hit"],
)
URL_LOOKUP_DURATION = Histogram(
    "shortener_lookup_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "shortener_short_code_collisions_total",
    "Generated short codes rejected because they were already taken",
    ["stage"],
)
MAPPINGS_EXPIRED_TOTAL = Counter(
    "shortener_mappings_expired_total",
    "Mappings removed by retention expiry",
)


def normalize_url(long_url: str) -> str:
    """Trim ``long_url`` and prefix ``https://`` when it carries no http(s) scheme.

    The scheme check is case-insensitive; the rest of the string, including an
    existing scheme, keeps its original case.

    >>> normalize_url("  example.com/Path ")
    'https://example.com/Path'
    >>> normalize_url("HTTP://Example.com")
    'HTTP://Example.com'
    """
    trimmed = long_url.strip()
    if not trimmed.lower().startswith(_ALLOWED_SCHEMES):
        return _DEFAULT_SCHEME + trimmed
    return trimmed


class UrlMappingService:
    """Stateless orchestrator over a ``MappingStore`` and a ``UrlCache``.

    Every collaborator is injected, including the loggers, so one instance can be
    built per request (HTTP) or per run (maintenance worker) without touching
    process-wide state.

    Example:
        >>> service = UrlMappingService.from_context(ctx)
        >>> mapping = await service.create_short_url("https://example.com")
        >>> await service.resolve(mapping.short_code)
        'https://example.com'
    """

    def __init__(
        self,
        store: MappingStore,
        cache: UrlCache,
        settings: Optional[Settings] = None,
        logger: Optional[Logger] = None,
        audit_logger: Optional[Logger] = None,
        code_generator: Optional[Callable[[], str]] = None,
    ):
        assert store is not None, "store must not be None"
        assert cache is not None, "cache must not be None"
        self._store = store
        self._cache = cache
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("shortener")
        self._audit_logger = audit_logger or logging.getLogger("shortener.audit")
        self._generate_code = code_generator or (lambda: generate_short_code(self._settings.SHORT_CODE_LENGTH))

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "UrlMappingService":
        """Build a service from a request context's session, cache and loggers."""
        return cls(
            SqlAlchemyMappingStore(ctx.database),
            ctx.cache,
            settings=ctx.settings,
            logger=ctx.logger,
            audit_logger=ctx.audit_logger,
        )

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_short_url(self, long_url: Optional[str]) -> UrlMapping:
        """Return the mapping for ``long_url``, allocating a new code if needed.

        Args:
            long_url: Raw URL from the caller; normalized before use.

        Returns:
            UrlMapping: The existing mapping for the normalized URL, or a newly
            persisted one carrying its store-assigned id and timestamp.

        Raises:
            ShortenerError: INVALID_INPUT for blank or over-long input,
                CODE_GENERATION_EXHAUSTED when every candidate was taken,
                BACKEND_FAILURE when the store fails.
        """
        start_time = time.perf_counter()

        try:
            normalized_url = self._validate_long_url(long_url)
            self._logger.info(f"Creating short URL for: {normalized_url}")

            existing = await self._store.find_by_url(normalized_url)
            if existing is not None:
                self._observe_creation(start_time, RequestStatus.DEDUPLICATED)
                self._logger.info(
                    f"Found existing mapping for URL: {normalized_url}, returning short code: {existing.short_code}"
                )
                self._audit_logger.info(
                    f"URL_RETRIEVAL_EXISTING - URL: {normalized_url}, ShortCode: {existing.short_code}"
                )
                return existing

            mapping = await self._allocate_and_save(normalized_url)
            await self._cache.set(mapping.short_code, mapping.long_url)

        except ShortenerError as exc:
            if exc.kind is ErrorKind.INVALID_INPUT:
                self._observe_creation(start_time, RequestStatus.VALIDATION_ERROR)
                self._logger.warning(f"URL creation rejected: {exc.message}")
            else:
                self._observe_creation(start_time, RequestStatus.EXHAUSTED)
                self._logger.error(f"URL creation failed: {exc.message}")
            raise

        except SQLAlchemyError as exc:
            self._observe_creation(start_time, RequestStatus.ERROR)
            self._logger.error(f"URL creation store error: {exc}")
            raise ShortenerError.backend_failure("create", exc) from exc

        duration = self._observe_creation(start_time, RequestStatus.SUCCESS)
        self._logger.info(
            f"Successfully created short URL mapping - Long URL: {mapping.long_url}, "
            f"Short Code: {mapping.short_code}, ID: {mapping.id} in {duration:.3f}s"
        )
        self._audit_logger.info(
            f"URL_CREATION - URL: {mapping.long_url}, ShortCode: {mapping.short_code}, "
            f"ID: {mapping.id}, Timestamp: {mapping.created_at}"
        )
        return mapping

    async def resolve(self, short_code: Optional[str]) -> str:
        """Return the long URL behind ``short_code`` using a cache-aside read.

        A cache hit returns without any store call. On a miss the store is
        queried and the cache is populated once before returning.

        Raises:
            ShortenerError: INVALID_INPUT for a blank code, NOT_FOUND when no
                live mapping exists, BACKEND_FAILURE when the store fails.
        """
        start_time = time.perf_counter()

        if short_code is None or not short_code.strip():
            self._observe_lookup(start_time, RequestStatus.VALIDATION_ERROR, CacheStatus.MISS)
            self._logger.warning("Attempt to retrieve long URL with null or empty short code")
            raise ShortenerError.invalid_input("Short code cannot be null or empty")

        code = short_code.strip()

        cached_url = await self._cache.get(code)
        if cached_url is not None:
            self._observe_lookup(start_time, RequestStatus.SUCCESS, CacheStatus.HIT)
            self._logger.info(f"Cache hit - Retrieved long URL for short code: {code} -> {cached_url}")
            self._audit_logger.info(f"URL_LOOKUP_SUCCESS_CACHE - ShortCode: {code}, URL: {cached_url}")
            return cached_url

        self._logger.debug(f"Cache miss - Fetching from store for short code: {code}")
        try:
            mapping = await self._store.find_by_code(code)
        except SQLAlchemyError as exc:
            self._observe_lookup(start_time, RequestStatus.ERROR, CacheStatus.MISS)
            self._logger.error(f"URL lookup store error for {code}: {exc}")
            raise ShortenerError.backend_failure("resolve", exc) from exc

        if mapping is None:
            self._observe_lookup(start_time, RequestStatus.NOT_FOUND, CacheStatus.MISS)
            self._logger.warning(f"Short code not found: {code}")
            self._audit_logger.warning(f"URL_LOOKUP_FAILED - ShortCode: {code}")
            raise ShortenerError.not_found(code)

        await self._cache.set(code, mapping.long_url)

        self._observe_lookup(start_time, RequestStatus.SUCCESS, CacheStatus.MISS)
        self._logger.info(f"Retrieved long URL from store for short code: {code} -> {mapping.long_url}")
        self._audit_logger.info(f"URL_LOOKUP_SUCCESS_DB - ShortCode: {code}, URL: {mapping.long_url}")
        return mapping.long_url

    async def expire_older_than(self, cutoff: Optional[datetime.datetime]) -> int:
        """Delete every mapping created strictly before ``cutoff``.

        Only the affected short codes are enumerated, the rows are removed with
        one bulk delete, and then exactly those codes are evicted from the cache
        in batches.
        A missing cutoff is a no-op.

        Returns:
            int: Number of rows removed from the store.
        """
        if cutoff is None:
            self._logger.warning("Attempted to delete old mappings with null cutoff date")
            return 0

        self._logger.info(f"Deleting URL mappings older than: {cutoff.isoformat()}")
        try:
            expired_codes = list(await self._store.find_created_before(cutoff))
            deleted_count = await self._store.delete_created_before(cutoff)
        except SQLAlchemyError as exc:
            self._logger.error(f"Retention expiry store error: {exc}")
            raise ShortenerError.backend_failure("expire", exc) from exc

        await self._cache.delete_many(expired_codes)

        MAPPINGS_EXPIRED_TOTAL.inc(deleted_count)
        self._logger.info(
            f"Successfully deleted {deleted_count} URL mappings older than {cutoff.isoformat()} "
            f"and invalidated {len(expired_codes)} cache entries"
        )
        self._audit_logger.info(f"URL_CLEANUP - DeletedCount: {deleted_count}, CutoffDate: {cutoff.isoformat()}")
        return deleted_count

    async def get_mapping(self, short_code: Optional[str]) -> Optional[UrlMapping]:
        """Store lookup without the cache; ``None`` for blank or unknown codes."""
        if short_code is None or not short_code.strip():
            return None
        return await self._call_store("get_mapping", self._store.find_by_code(short_code.strip()))

    async def short_code_exists(self, short_code: Optional[str]) -> bool:
        if short_code is None or not short_code.strip():
            return False
        return await self._call_store("exists", self._store.exists_by_code(short_code.strip()))

    async def count_mappings(self) -> int:
        return await self._call_store("count", self._store.count())

    async def evict_from_cache(self, short_code: Optional[str]) -> None:
        if short_code is None or not short_code.strip():
            return
        await self._cache.delete(short_code.strip())
        self._logger.info(f"Manually evicted short code from cache: {short_code.strip()}")

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    def _validate_long_url(self, long_url: Optional[str]) -> str:
        if long_url is None or not long_url.strip():
            self._logger.warning("Attempt to create short URL with null or empty long URL")
            raise ShortenerError.invalid_input("Long URL cannot be null or empty")

        normalized_url = normalize_url(long_url)
        max_length = self._settings.MAX_URL_LENGTH
        if len(normalized_url) > max_length:
            self._logger.warning(
                f"Attempt to create short URL with URL length {len(normalized_url)} "
                f"exceeding maximum of {max_length} characters"
            )
            raise ShortenerError.invalid_input(f"Long URL cannot exceed {max_length} characters")

        self._logger.debug(f"Normalized URL from '{long_url}' to '{normalized_url}'")
        return normalized_url

    async def _allocate_and_save(self, normalized_url: str) -> UrlMapping:
        """Persist ``normalized_url`` under the first free generated code.

        Both a taken candidate and a unique-constraint rejection at insert time
        consume one attempt from the same budget.
        """
        max_attempts = self._settings.SHORT_CODE_MAX_ATTEMPTS

        for attempt in range(1, max_attempts + 1):
            candidate = self._generate_code()

            if await self._store.exists_by_code(candidate):
                SHORT_CODE_COLLISIONS_TOTAL.labels(stage="lookup").inc()
                self._logger.debug(f"Short code collision detected for '{candidate}' on attempt {attempt}")
                continue

            try:
                mapping = await self._store.save(UrlMapping(long_url=normalized_url, short_code=candidate))
            except ShortCodeCollisionError:
                SHORT_CODE_COLLISIONS_TOTAL.labels(stage="insert").inc()
                self._logger.debug(f"Short code '{candidate}' taken at insert on attempt {attempt}")
                continue

            self._logger.debug(f"Generated unique short code '{candidate}' on attempt {attempt}")
            return mapping

        self._logger.error(f"Failed to generate unique short code after {max_attempts} attempts")
        raise ShortenerError.exhausted(max_attempts)

    async def _call_store(self, operation: str, awaitable):
        try:
            return await awaitable
        except SQLAlchemyError as exc:
            self._logger.error(f"Store error during {operation}: {exc}")
            raise ShortenerError.backend_failure(operation, exc) from exc

    @staticmethod
    def _observe_creation(start_time: float, status: RequestStatus) -> float:
        duration = time.perf_counter() - start_time
        URL_CREATION_DURATION.observe(duration)
        URL_CREATION_REQUESTS_TOTAL.labels(status=status).inc()
        return duration

    @staticmethod
    def _observe_lookup(start_time: float, status: RequestStatus, cache_hit: CacheStatus) -> None:
        URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
        URL_LOOKUP_REQUESTS_TOTAL.labels(status=status, cache_hit=cache_hit).inc()
