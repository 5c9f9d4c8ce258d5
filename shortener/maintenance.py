"""Retention sweep and periodic maintenance tasks.

The sweeper turns a retention window into a cutoff timestamp and hands it to
``UrlMappingService.expire_older_than``. Scheduling is external: the worker loop
in ``shortener.worker`` and the admin endpoints call the same methods.

Flow Diagram — sweep(retention_days)
====================================
::
    ┌──────────────────┐
    │ sweep(days)      │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ cutoff =         │
    │ now - days       │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ expire_older_    │
    │ than(cutoff)     │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ deleted count    │
    └──────────────────┘

Scheduled Tasks
===============
================================  =====================================
Task                              Default cadence
================================  =====================================
cleanup_old_mappings()            daily (CLEANUP_INTERVAL_SECONDS)
collect_statistics()              hourly (STATISTICS_INTERVAL_SECONDS)
check_cache_health()              30 min (CACHE_HEALTH_INTERVAL_SECONDS)
================================  =====================================

Scheduled entry points log and swallow failures so one bad run never stops the
loop; ``sweep`` itself propagates errors to on-demand callers.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from shortener.cache import UrlCache
from shortener.config import Settings, get_settings
from shortener.enums import HealthStatus
from shortener.exceptions import ShortenerError
from shortener.url_service import Logger, UrlMappingService

__all__ = ["MaintenanceService", "MaintenanceStatistics", "TASKS_INFO"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class MaintenanceStatistics:
    """Snapshot produced by ``collect_statistics``."""

    total_mappings: int
    cache_status: HealthStatus
    collected_at: datetime.datetime

    def summary(self) -> str:
        return (
            f"Current Statistics - Total Links: {self.total_mappings}, "
            f"Redis Status: {self.cache_status.value.upper()}, "
            f"Last Updated: {self.collected_at.isoformat()}"
        )


TASKS_INFO = {
    "statistics": {
        "name": "Statistics Collection",
        "setting": "STATISTICS_INTERVAL_SECONDS",
        "description": "Logs application statistics including total links and cache health",
    },
    "cleanup": {
        "name": "URL Cleanup",
        "setting": "CLEANUP_INTERVAL_SECONDS",
        "description": "Removes old URL mappings based on retention policy",
    },
    "healthCheck": {
        "name": "Redis Health Check",
        "setting": "CACHE_HEALTH_INTERVAL_SECONDS",
        "description": "Monitors Redis connectivity and logs status",
    },
}


class MaintenanceService:
    def __init__(
        self,
        url_service: UrlMappingService,
        cache: UrlCache,
        settings: Optional[Settings] = None,
        logger: Optional[Logger] = None,
        audit_logger: Optional[Logger] = None,
        stats_logger: Optional[Logger] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ):
        self._url_service = url_service
        self._cache = cache
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("shortener.maintenance")
        self._audit_logger = audit_logger or logging.getLogger("shortener.audit")
        self._stats_logger = stats_logger or logging.getLogger("shortener.stats")
        self._clock = clock or _utcnow

    async def sweep(self, retention_days: int) -> int:
        """Delete mappings older than ``retention_days`` days; returns rows removed."""
        if not isinstance(retention_days, int) or retention_days < 0:
            raise ShortenerError.invalid_input(f"retention_days must be a non-negative integer, got {retention_days!r}")

        cutoff = self._clock() - datetime.timedelta(days=retention_days)
        return await self._url_service.expire_older_than(cutoff)

    async def cleanup_old_mappings(self) -> int:
        if not self._settings.CLEANUP_ENABLED:
            self._logger.debug("Cleanup is disabled")
            return 0

        retention_days = self._settings.RETENTION_DAYS
        self._logger.info(f"Starting scheduled cleanup of old URL mappings older than {retention_days} days...")
        try:
            deleted_count = await self.sweep(retention_days)
        except ShortenerError as exc:
            self._logger.error(f"Error occurred during scheduled cleanup: {exc.message}")
            self._audit_logger.error(f"SCHEDULED_CLEANUP_ERROR - Error: {exc.message}")
            return 0

        self._logger.info(f"Cleanup completed - Deleted {deleted_count} old URL mappings")
        self._audit_logger.info(
            f"SCHEDULED_CLEANUP_COMPLETED - DeletedCount: {deleted_count}, RetentionDays: {retention_days}"
        )
        self._stats_logger.info(f"CLEANUP_STATS - Deleted: {deleted_count}, RetentionDays: {retention_days}")
        return deleted_count

    async def collect_statistics(self) -> Optional[MaintenanceStatistics]:
        if not self._settings.STATISTICS_ENABLED:
            self._logger.debug("Statistics logging is disabled")
            return None

        self._logger.info("Starting periodic statistics collection...")
        try:
            statistics = await self._snapshot()
        except ShortenerError as exc:
            self._logger.error(f"Error occurred during statistics collection: {exc.message}")
            self._audit_logger.error(f"SCHEDULED_STATS_ERROR - Error: {exc.message}")
            return None

        status = statistics.cache_status.value.upper()
        self._logger.info(
            f"Application Statistics - Total links created: {statistics.total_mappings}, Redis status: {status}"
        )
        self._stats_logger.info(
            f"PERIODIC_STATS - Timestamp: {statistics.collected_at.isoformat()}, "
            f"Total links: {statistics.total_mappings}, Redis healthy: {status == 'HEALTHY'}"
        )
        self._audit_logger.info(
            f"SCHEDULED_STATS_COLLECTION - TotalLinks: {statistics.total_mappings}, RedisStatus: {status}"
        )
        return statistics

    async def check_cache_health(self) -> bool:
        healthy = await self._cache.is_available()
        if healthy:
            self._logger.debug("Redis health check passed")
        else:
            self._logger.warning("Redis health check failed - Cache may be unavailable")
            self._stats_logger.warning(f"REDIS_UNAVAILABLE - Timestamp: {self._clock().isoformat()}")
        return healthy

    async def get_current_statistics(self) -> str:
        try:
            return (await self._snapshot()).summary()
        except ShortenerError as exc:
            return f"Error retrieving statistics: {exc.message}"

    async def trigger_cleanup(self) -> int:
        self._logger.info("Manually triggered cleanup operation")
        return await self.cleanup_old_mappings()

    async def trigger_statistics_collection(self) -> Optional[MaintenanceStatistics]:
        self._logger.info("Manually triggered statistics collection")
        return await self.collect_statistics()

    async def _snapshot(self) -> MaintenanceStatistics:
        total = await self._url_service.count_mappings()
        healthy = await self._cache.is_available()
        return MaintenanceStatistics(
            total_mappings=total,
            cache_status=HealthStatus.from_bool(healthy),
            collected_at=self._clock(),
        )
