"""Shared pytest fixtures for engine, store, cache and API tests."""

import datetime
import os
from collections.abc import AsyncGenerator
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

# Point the module-level engine at SQLite before any shortener import reads settings.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shortener.config import Settings, get_settings
from shortener.database import Base
from shortener.models import UrlMapping
from shortener.store import SqlAlchemyMappingStore
from shortener.url_service import UrlMappingService

NOW = datetime.datetime(2024, 6, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


class DictUrlCache:
    """In-memory ``UrlCache`` that records every call."""

    def __init__(self, available: bool = True):
        self.entries: dict[str, str] = {}
        self.available = available
        self.get_calls: list[str] = []
        self.set_calls: list[tuple[str, str]] = []
        self.delete_calls: list[str] = []
        self.delete_many_calls: list[list[str]] = []

    async def get(self, short_code: str) -> Optional[str]:
        self.get_calls.append(short_code)
        return self.entries.get(short_code)

    async def set(self, short_code: str, long_url: str, ttl_seconds: Optional[int] = None) -> None:
        self.set_calls.append((short_code, long_url))
        self.entries[short_code] = long_url

    async def delete(self, short_code: str) -> None:
        self.delete_calls.append(short_code)
        self.entries.pop(short_code, None)

    async def delete_many(self, short_codes) -> None:
        self.delete_many_calls.append(list(short_codes))
        for code in short_codes:
            await self.delete(code)

    async def is_available(self) -> bool:
        return self.available


def make_mapping(
    short_code: str = "abc123",
    long_url: str = "https://example.com",
    id: int = 1,
    created_at: datetime.datetime = NOW,
) -> UrlMapping:
    return UrlMapping(id=id, short_code=short_code, long_url=long_url, created_at=created_at)


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def mock_store() -> MagicMock:
    """Store double with every protocol method as an AsyncMock."""
    store = MagicMock(spec=SqlAlchemyMappingStore)
    store.find_by_code = AsyncMock(return_value=None)
    store.find_by_url = AsyncMock(return_value=None)
    store.exists_by_code = AsyncMock(return_value=False)
    store.count = AsyncMock(return_value=0)
    store.find_created_before = AsyncMock(return_value=[])
    store.delete_created_before = AsyncMock(return_value=0)

    async def fake_save(mapping: UrlMapping) -> UrlMapping:
        mapping.id = 42
        mapping.created_at = NOW
        return mapping

    store.save = AsyncMock(side_effect=fake_save)
    return store


@pytest.fixture
def cache() -> DictUrlCache:
    return DictUrlCache()


@pytest.fixture
def mock_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def codes() -> list[str]:
    """Candidate codes handed out in order by the service's generator."""
    return ["aaaaa1", "bbbbb2", "ccccc3", "ddddd4", "eeeee5", "fffff6"]


@pytest.fixture
def url_service(mock_store, cache, settings, mock_logger, codes) -> UrlMappingService:
    candidates = iter(codes)
    return UrlMappingService(
        mock_store,
        cache,
        settings=settings,
        logger=mock_logger,
        audit_logger=mock_logger,
        code_generator=lambda: next(candidates),
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def sql_store(db_session) -> SqlAlchemyMappingStore:
    return SqlAlchemyMappingStore(db_session)
