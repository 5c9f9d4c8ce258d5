"""Configuration management for the short-link service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache │
    │ (lru_cache) │
    └──────┬──────┘
    HIT?   │
    ┌──────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Read values**::
    settings = get_settings()
    ttl = settings.CACHE_TTL_SECONDS
    retention = settings.RETENTION_DAYS

Key Behaviours
===============
- Settings are cached after first access.
- Environment variables (and a local ``.env`` file) override defaults.
- Short code shape (length, retry budget) and URL length limit live here so the
  engine and the request schemas agree on them.

Classes:
    Settings:  Pydantic model for all configuration values.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortener:shortener@db:5432/shortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis cache
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_KEY_PREFIX: str = "url:"
    CACHE_TTL_SECONDS: int = 3600
    # Upper bound for a single cache round trip before it is treated as a miss.
    CACHE_OPERATION_TIMEOUT_SECONDS: float = 0.25

    # Short code allocation
    SHORT_CODE_LENGTH: int = 6
    SHORT_CODE_MAX_ATTEMPTS: int = 5
    MAX_URL_LENGTH: int = 2048

    # Retention / maintenance
    CLEANUP_ENABLED: bool = True
    RETENTION_DAYS: int = 30
    STATISTICS_ENABLED: bool = True
    CLEANUP_INTERVAL_SECONDS: int = 86400
    STATISTICS_INTERVAL_SECONDS: int = 3600
    CACHE_HEALTH_INTERVAL_SECONDS: int = 1800

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
