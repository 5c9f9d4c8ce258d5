"""Durable mapping store.

``MappingStore`` is the contract the resolution engine depends on;
``SqlAlchemyMappingStore`` implements it over an ``AsyncSession``. The store owns
the uniqueness guarantee for short codes: a duplicate insert is reported as
``ShortCodeCollisionError`` so the engine can retry with a fresh candidate.
Any other database failure propagates as the driver's ``SQLAlchemyError``.
"""

import datetime
from typing import Optional, Protocol, Sequence

from sqlalchemy import delete, exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.exceptions import ShortCodeCollisionError
from shortener.models import UrlMapping

__all__ = ["MappingStore", "SqlAlchemyMappingStore"]


class MappingStore(Protocol):
    async def find_by_code(self, short_code: str) -> Optional[UrlMapping]: ...

    async def find_by_url(self, long_url: str) -> Optional[UrlMapping]: ...

    async def exists_by_code(self, short_code: str) -> bool: ...

    async def save(self, mapping: UrlMapping) -> UrlMapping: ...

    async def count(self) -> int: ...

    async def find_created_before(self, cutoff: datetime.datetime) -> Sequence[str]: ...

    async def delete_created_before(self, cutoff: datetime.datetime) -> int: ...


class SqlAlchemyMappingStore:
    """``MappingStore`` backed by the ``url_mapping`` table."""

    def __init__(self, session: AsyncSession):
        assert session is not None, "session must not be None"
        self._session = session

    async def find_by_code(self, short_code: str) -> Optional[UrlMapping]:
        result = await self._session.execute(select(UrlMapping).where(UrlMapping.short_code == short_code))
        return result.scalar_one_or_none()

    async def find_by_url(self, long_url: str) -> Optional[UrlMapping]:
        # long_url is not unique; a lost creation race can leave several rows.
        result = await self._session.execute(
            select(UrlMapping).where(UrlMapping.long_url == long_url).order_by(UrlMapping.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def exists_by_code(self, short_code: str) -> bool:
        result = await self._session.execute(select(exists().where(UrlMapping.short_code == short_code)))
        return bool(result.scalar())

    async def save(self, mapping: UrlMapping) -> UrlMapping:
        if mapping.created_at is None:
            mapping.created_at = datetime.datetime.now(datetime.timezone.utc)
        self._session.add(mapping)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            if "short_code" in str(exc.orig):
                raise ShortCodeCollisionError(mapping.short_code) from exc
            raise
        await self._session.refresh(mapping)
        assert mapping.id is not None, "mapping.id must be set after commit"
        return mapping

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(UrlMapping))
        return int(result.scalar_one())

    async def find_created_before(self, cutoff: datetime.datetime) -> Sequence[str]:
        """Short codes of mappings created strictly before ``cutoff``."""
        result = await self._session.execute(
            select(UrlMapping.short_code).where(UrlMapping.created_at < cutoff).order_by(UrlMapping.id)
        )
        return result.scalars().all()

    async def delete_created_before(self, cutoff: datetime.datetime) -> int:
        result = await self._session.execute(
            delete(UrlMapping)
            .where(UrlMapping.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return result.rowcount or 0
