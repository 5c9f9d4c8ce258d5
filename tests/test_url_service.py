"""Unit tests for the short-link resolution engine.

The store is an AsyncMock, the cache an in-memory recorder and the code
generator a fixed sequence, so every test controls exactly which candidates
are taken and which cache entries exist.
"""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from shortener.enums import ErrorKind
from shortener.exceptions import ShortCodeCollisionError, ShortenerError
from shortener.url_service import UrlMappingService, normalize_url
from tests.conftest import NOW, DictUrlCache, make_mapping


def _db_down() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


# ============================================================================
# URL NORMALIZATION
# ============================================================================


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("example.com/docs", "https://example.com/docs"),
        ("  example.com  ", "https://example.com"),
        ("http://example.com", "http://example.com"),
        ("https://example.com/a?b=c", "https://example.com/a?b=c"),
        ("HTTP://Example.com", "HTTP://Example.com"),
        ("HtTpS://example.com", "HtTpS://example.com"),
        ("ftp://example.com", "https://ftp://example.com"),
    ],
)
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


# ============================================================================
# CREATION
# ============================================================================


class TestCreateShortUrl:
    @pytest.mark.asyncio
    async def test_new_url_uses_first_free_candidate(self, url_service, mock_store, cache):
        mapping = await url_service.create_short_url("https://example.com")

        assert mapping.short_code == "aaaaa1"
        assert mapping.long_url == "https://example.com"
        assert mapping.id == 42
        assert mapping.created_at == NOW
        mock_store.save.assert_awaited_once()
        assert cache.set_calls == [("aaaaa1", "https://example.com")]

    @pytest.mark.asyncio
    async def test_url_is_normalized_before_lookup_and_save(self, url_service, mock_store):
        mapping = await url_service.create_short_url("  example.com/docs ")

        mock_store.find_by_url.assert_awaited_once_with("https://example.com/docs")
        assert mapping.long_url == "https://example.com/docs"

    @pytest.mark.asyncio
    async def test_existing_scheme_case_is_preserved(self, url_service, mock_store):
        mapping = await url_service.create_short_url("HTTP://Example.com")

        mock_store.find_by_url.assert_awaited_once_with("HTTP://Example.com")
        assert mapping.long_url == "HTTP://Example.com"

    @pytest.mark.asyncio
    async def test_existing_mapping_is_returned_without_allocation(self, url_service, mock_store, cache):
        existing = make_mapping(short_code="zzzzz9", long_url="https://example.com", id=7)
        mock_store.find_by_url.return_value = existing

        first = await url_service.create_short_url("example.com")
        second = await url_service.create_short_url("https://example.com")

        assert first is existing
        assert second is existing
        mock_store.exists_by_code.assert_not_awaited()
        mock_store.save.assert_not_awaited()
        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_taken_candidates_are_skipped(self, url_service, mock_store):
        taken = {"aaaaa1", "bbbbb2", "ccccc3", "ddddd4"}
        mock_store.exists_by_code.side_effect = lambda code: code in taken

        mapping = await url_service.create_short_url("https://example.com")

        assert mapping.short_code == "eeeee5"
        assert mock_store.exists_by_code.await_count == 5
        mock_store.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_all_candidates_taken_exhausts_budget(self, url_service, mock_store, cache):
        mock_store.exists_by_code.return_value = True

        with pytest.raises(ShortenerError) as exc_info:
            await url_service.create_short_url("https://example.com")

        assert exc_info.value.kind is ErrorKind.CODE_GENERATION_EXHAUSTED
        assert exc_info.value.attempts == 5
        assert mock_store.exists_by_code.await_count == 5
        mock_store.save.assert_not_called()
        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_insert_collision_retries_with_next_candidate(self, url_service, mock_store):
        async def save_rejecting_first(mapping):
            if mapping.short_code == "aaaaa1":
                raise ShortCodeCollisionError(mapping.short_code)
            mapping.id = 43
            mapping.created_at = NOW
            return mapping

        mock_store.save.side_effect = save_rejecting_first

        mapping = await url_service.create_short_url("https://example.com")

        assert mapping.short_code == "bbbbb2"
        assert mock_store.save.await_count == 2

    @pytest.mark.asyncio
    async def test_insert_collisions_share_the_attempt_budget(self, url_service, mock_store):
        mock_store.exists_by_code.side_effect = lambda code: code in {"aaaaa1", "bbbbb2"}
        mock_store.save.side_effect = ShortCodeCollisionError("taken")

        with pytest.raises(ShortenerError) as exc_info:
            await url_service.create_short_url("https://example.com")

        assert exc_info.value.kind is ErrorKind.CODE_GENERATION_EXHAUSTED
        assert mock_store.save.await_count == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("long_url", [None, "", "   ", "\t\n"])
    async def test_blank_input_is_rejected_without_side_effects(self, url_service, mock_store, cache, long_url):
        with pytest.raises(ShortenerError) as exc_info:
            await url_service.create_short_url(long_url)

        assert exc_info.value.kind is ErrorKind.INVALID_INPUT
        mock_store.find_by_url.assert_not_awaited()
        mock_store.save.assert_not_awaited()
        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_over_long_url_is_rejected(self, url_service, mock_store, settings):
        long_url = "https://example.com/" + "a" * settings.MAX_URL_LENGTH

        with pytest.raises(ShortenerError) as exc_info:
            await url_service.create_short_url(long_url)

        assert exc_info.value.kind is ErrorKind.INVALID_INPUT
        mock_store.find_by_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_length_limit_applies_after_normalization(self, url_service, settings):
        # Fits raw, but the added scheme pushes it over the limit.
        raw = "e" * (settings.MAX_URL_LENGTH - 2)

        with pytest.raises(ShortenerError) as exc_info:
            await url_service.create_short_url(raw)

        assert exc_info.value.kind is ErrorKind.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_url_at_exact_limit_is_accepted(self, url_service, settings):
        prefix = "https://example.com/"
        long_url = prefix + "a" * (settings.MAX_URL_LENGTH - len(prefix))

        mapping = await url_service.create_short_url(long_url)

        assert len(mapping.long_url) == settings.MAX_URL_LENGTH

    @pytest.mark.asyncio
    async def test_store_failure_becomes_backend_failure(self, url_service, mock_store):
        mock_store.find_by_url.side_effect = _db_down()

        with pytest.raises(ShortenerError) as exc_info:
            await url_service.create_short_url("https://example.com")

        assert exc_info.value.kind is ErrorKind.BACKEND_FAILURE
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.asyncio
    async def test_new_mapping_is_written_to_injected_cache(self, mock_store, settings, mock_logger):
        injected_cache = AsyncMock()
        injected_cache.set = AsyncMock(return_value=None)
        service = UrlMappingService(
            mock_store, injected_cache, settings=settings, logger=mock_logger, code_generator=lambda: "xyz789"
        )

        mapping = await service.create_short_url("https://example.com")

        assert mapping.short_code == "xyz789"
        injected_cache.set.assert_awaited_once_with("xyz789", "https://example.com")


# ============================================================================
# RESOLUTION
# ============================================================================


class TestResolve:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, url_service, mock_store, cache):
        cache.entries["abc123"] = "https://example.com"

        assert await url_service.resolve("abc123") == "https://example.com"
        mock_store.find_by_code.assert_not_awaited()
        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_cache_miss_reads_store_and_fills_cache_once(self, url_service, mock_store, cache):
        mock_store.find_by_code.return_value = make_mapping()

        assert await url_service.resolve("abc123") == "https://example.com"
        mock_store.find_by_code.assert_awaited_once_with("abc123")
        assert cache.set_calls == [("abc123", "https://example.com")]

        # Second read is served from the filled cache.
        assert await url_service.resolve("abc123") == "https://example.com"
        assert mock_store.find_by_code.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_code_is_not_found(self, url_service, mock_store, cache):
        with pytest.raises(ShortenerError) as exc_info:
            await url_service.resolve("nope00")

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.short_code == "nope00"
        assert cache.set_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("short_code", [None, "", "   "])
    async def test_blank_code_is_invalid(self, url_service, mock_store, cache, short_code):
        with pytest.raises(ShortenerError) as exc_info:
            await url_service.resolve(short_code)

        assert exc_info.value.kind is ErrorKind.INVALID_INPUT
        assert cache.get_calls == []
        mock_store.find_by_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_becomes_backend_failure(self, url_service, mock_store):
        mock_store.find_by_code.side_effect = _db_down()

        with pytest.raises(ShortenerError) as exc_info:
            await url_service.resolve("abc123")

        assert exc_info.value.kind is ErrorKind.BACKEND_FAILURE

    @pytest.mark.asyncio
    async def test_resolve_after_create(self, url_service, mock_store, cache):
        mapping = await url_service.create_short_url("example.com")
        mock_store.find_by_code.return_value = mapping
        cache.entries.clear()

        assert await url_service.resolve(mapping.short_code) == "https://example.com"

    @pytest.mark.asyncio
    async def test_concurrent_resolves_are_independent(self, url_service, mock_store):
        mock_store.find_by_code.side_effect = lambda code: make_mapping(short_code=code, long_url=f"https://{code}.io")

        results = await asyncio.gather(*(url_service.resolve(f"code{i:02d}") for i in range(10)))

        assert results == [f"https://code{i:02d}.io" for i in range(10)]


# ============================================================================
# RETENTION EXPIRY
# ============================================================================


class TestExpireOlderThan:
    @pytest.mark.asyncio
    async def test_missing_cutoff_is_a_noop(self, url_service, mock_store, cache):
        assert await url_service.expire_older_than(None) == 0
        mock_store.find_created_before.assert_not_awaited()
        mock_store.delete_created_before.assert_not_awaited()
        assert cache.delete_calls == []

    @pytest.mark.asyncio
    async def test_evicts_exactly_the_enumerated_codes(self, url_service, mock_store, cache):
        cutoff = NOW - datetime.timedelta(days=30)
        mock_store.find_created_before.return_value = ["old001", "old002"]
        mock_store.delete_created_before.return_value = 2
        cache.entries.update({"old001": "a", "old002": "b", "new001": "c"})

        assert await url_service.expire_older_than(cutoff) == 2

        mock_store.find_created_before.assert_awaited_once_with(cutoff)
        mock_store.delete_created_before.assert_awaited_once_with(cutoff)
        assert cache.delete_many_calls == [["old001", "old002"]]
        assert sorted(cache.delete_calls) == ["old001", "old002"]
        assert cache.entries == {"new001": "c"}

    @pytest.mark.asyncio
    async def test_nothing_to_expire(self, url_service, mock_store, cache):
        assert await url_service.expire_older_than(NOW) == 0
        assert cache.delete_calls == []

    @pytest.mark.asyncio
    async def test_store_failure_skips_eviction(self, url_service, mock_store, cache):
        mock_store.find_created_before.return_value = ["old001"]
        mock_store.delete_created_before.side_effect = _db_down()

        with pytest.raises(ShortenerError) as exc_info:
            await url_service.expire_older_than(NOW)

        assert exc_info.value.kind is ErrorKind.BACKEND_FAILURE
        assert cache.delete_calls == []


# ============================================================================
# HELPERS
# ============================================================================


class TestHelpers:
    @pytest.mark.asyncio
    async def test_get_mapping_bypasses_cache(self, url_service, mock_store, cache):
        mapping = make_mapping()
        mock_store.find_by_code.return_value = mapping

        assert await url_service.get_mapping(" abc123 ") is mapping
        assert await url_service.get_mapping("") is None
        mock_store.find_by_code.assert_awaited_once_with("abc123")
        assert cache.get_calls == []

    @pytest.mark.asyncio
    async def test_short_code_exists(self, url_service, mock_store):
        mock_store.exists_by_code.return_value = True

        assert await url_service.short_code_exists("abc123") is True
        assert await url_service.short_code_exists(None) is False

    @pytest.mark.asyncio
    async def test_count_mappings_wraps_store_errors(self, url_service, mock_store):
        mock_store.count.return_value = 12
        assert await url_service.count_mappings() == 12

        mock_store.count.side_effect = _db_down()
        with pytest.raises(ShortenerError) as exc_info:
            await url_service.count_mappings()
        assert exc_info.value.kind is ErrorKind.BACKEND_FAILURE

    @pytest.mark.asyncio
    async def test_evict_from_cache(self, url_service, cache):
        cache.entries["abc123"] = "https://example.com"

        await url_service.evict_from_cache("abc123")
        await url_service.evict_from_cache("  ")

        assert cache.delete_calls == ["abc123"]
        assert "abc123" not in cache.entries


def test_service_requires_store_and_cache(settings):
    with pytest.raises(AssertionError):
        UrlMappingService(None, DictUrlCache(), settings=settings)


# ============================================================================
# AGAINST THE SQL STORE
# ============================================================================


@pytest.fixture
def sql_url_service(sql_store, cache, settings, mock_logger, codes) -> UrlMappingService:
    candidates = iter(codes)
    return UrlMappingService(
        sql_store,
        cache,
        settings=settings,
        logger=mock_logger,
        audit_logger=mock_logger,
        code_generator=lambda: next(candidates),
    )


class TestWithSqlStore:
    @pytest.mark.asyncio
    async def test_repeated_create_returns_the_same_code(self, sql_url_service, sql_store, cache):
        first = await sql_url_service.create_short_url("example.com/x")
        second = await sql_url_service.create_short_url("https://example.com/x")

        assert first.short_code == second.short_code == "aaaaa1"
        assert second.id == first.id
        assert await sql_store.count() == 1
        assert cache.set_calls == [("aaaaa1", "https://example.com/x")]

    @pytest.mark.asyncio
    async def test_create_then_resolve_round_trip(self, sql_url_service, cache):
        mapping = await sql_url_service.create_short_url("example.com/x")
        cache.entries.clear()

        assert await sql_url_service.resolve(mapping.short_code) == "https://example.com/x"
        assert cache.entries == {mapping.short_code: "https://example.com/x"}

    @pytest.mark.asyncio
    async def test_unique_constraint_rejection_retries_next_code(self, sql_url_service, sql_store, monkeypatch):
        await sql_store.save(make_mapping(short_code="aaaaa1", long_url="https://other.example.com", id=None))
        # Another writer takes the code between the existence check and the insert.
        monkeypatch.setattr(sql_store, "exists_by_code", AsyncMock(return_value=False))

        mapping = await sql_url_service.create_short_url("https://example.com/x")

        assert mapping.short_code == "bbbbb2"
        assert await sql_store.count() == 2
