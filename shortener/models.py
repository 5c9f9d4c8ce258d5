"""SQLAlchemy ORM models for the short-link service.

This module defines the database schema for the single persisted entity: the
mapping between a normalized long URL and its short code.

Data Model Layout
=================
::
    url_mapping table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ long_url (VARCHAR(2048) NOT NULL, INDEXED)
    ├─ short_code (VARCHAR(10) UNIQUE NOT NULL, INDEXED)
    └─ created_at (TIMESTAMPTZ NOT NULL, DEFAULT NOW(), INDEXED)

How to Use
===========
**Step 1 — Import**::
    from shortener.models import UrlMapping

**Step 2 — Persist through the store**::
    mapping = UrlMapping(long_url="https://example.com", short_code="aB3xY9")
    mapping = await store.save(mapping)

Key Behaviours
===============
- short_code carries the uniqueness guarantee; a duplicate insert fails with
  an IntegrityError that the store translates into a collision.
- long_url is indexed for the dedup lookup but is deliberately not unique.
- created_at is indexed for the retention sweep's range queries.
- No field is updated after creation.

Classes:
    UrlMapping:  A persisted long URL → short code association.
"""

import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["UrlMapping"]


class UrlMapping(Base):
    __tablename__ = "url_mapping"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    long_url: Mapped[str] = mapped_column(String(2048), index=True, nullable=False)
    short_code: Mapped[str] = mapped_column(String(10), unique=True, index=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True, nullable=False
    )

    def __repr__(self) -> str:
        return f"<UrlMapping(id={self.id}, short_code='{self.short_code}', long_url='{self.long_url}')>"
