"""Dependency injection with a singleton service manager.

This module wires the shared resources (settings, loggers, Redis client, URL
cache) once per process and builds per-request contexts around a database
session, so route handlers only ask for the service they need.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.cache import UrlCache, build_url_cache
from shortener.config import get_settings
from shortener.database import get_db
from shortener.maintenance import MaintenanceService
from shortener.url_service import UrlMappingService

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_maintenance_service",
    "get_request_context",
    "get_service_manager",
    "get_url_service",
    "setup_logging",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach the stream handler to the ``shortener`` logger tree once."""
    logger = logging.getLogger("shortener")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared by every request."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        if not self._initialized:
            self.settings = get_settings()
            self.logger = setup_logging(self.settings.LOG_LEVEL)
            self.audit_logger = logging.getLogger("shortener.audit")
            self.stats_logger = logging.getLogger("shortener.stats")
            self.redis_client = self._setup_redis() if self.settings.CACHE_ENABLED else None
            self.cache = build_url_cache(self.settings, self.redis_client, logging.getLogger("shortener.cache"))
            self._initialized = True

    def _setup_redis(self) -> redis.Redis:
        timeout = self.settings.CACHE_OPERATION_TIMEOUT_SECONDS
        return redis.from_url(
            self.settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )

    async def cleanup(self) -> None:
        if getattr(self, "redis_client", None) is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


def client_ip_from_request(request: Request) -> Optional[str]:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


@dataclass
class RequestContext:
    """Per-request bundle of the database session and shared resources.

    Attributes:
        database: Async database session (the only per-request resource)
        service_manager: Singleton with settings, loggers and cache
        request_id: Unique identifier for this request
        client_ip: Client IP address, honouring X-Forwarded-For / X-Real-IP
        user_agent: Client user agent string
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def settings(self):
        return self.service_manager.settings

    @property
    def cache(self) -> UrlCache:
        return self.service_manager.cache

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(self.service_manager.logger, self._log_context())

    @property
    def audit_logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(self.service_manager.audit_logger, self._log_context())

    def _log_context(self) -> dict:
        return {"request_id": self.request_id, "client_ip": self.client_ip, "user_agent": self.user_agent}

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        client_ip=client_ip_from_request(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> UrlMappingService:
    return UrlMappingService.from_context(ctx)


def get_maintenance_service(ctx: RequestContext = Depends(get_request_context)) -> MaintenanceService:
    return MaintenanceService(
        UrlMappingService.from_context(ctx),
        ctx.cache,
        settings=ctx.settings,
        logger=ctx.logger,
        audit_logger=ctx.audit_logger,
        stats_logger=ctx.service_manager.stats_logger,
    )
