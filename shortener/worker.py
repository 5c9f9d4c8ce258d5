"""Maintenance worker entry point.

Runs the retention cleanup, statistics collection and cache health check on
their configured intervals, each in its own loop with a fresh database session
per run. ``--once TASK`` runs a single task and exits, which is how cron or a
container scheduler invokes the sweep on demand.

Usage::

    python -m shortener.worker
    python -m shortener.worker --once cleanup
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Awaitable, Callable

from shortener.cache import UrlCache
from shortener.config import Settings, get_settings
from shortener.database import async_session, close_db, init_db
from shortener.dependencies import ServiceManager, _service_manager
from shortener.maintenance import MaintenanceService
from shortener.store import SqlAlchemyMappingStore
from shortener.url_service import UrlMappingService

TASKS = ("cleanup", "statistics", "health")


class MaintenanceWorker:
    def __init__(self, manager: ServiceManager, session_factory=async_session):
        self.manager = manager
        self.settings: Settings = manager.settings
        self.cache: UrlCache = manager.cache
        self.logger = logging.getLogger("shortener.worker")
        self._session_factory = session_factory
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self.logger.info("Stop requested, finishing current runs")
        self._stop.set()

    async def run_task(self, task: str):
        async with self._session_factory() as session:
            url_service = UrlMappingService(
                SqlAlchemyMappingStore(session),
                self.cache,
                settings=self.settings,
                logger=self.manager.logger,
                audit_logger=self.manager.audit_logger,
            )
            maintenance = MaintenanceService(
                url_service,
                self.cache,
                settings=self.settings,
                logger=self.logger,
                audit_logger=self.manager.audit_logger,
                stats_logger=self.manager.stats_logger,
            )
            if task == "cleanup":
                return await maintenance.cleanup_old_mappings()
            if task == "statistics":
                return await maintenance.collect_statistics()
            if task == "health":
                return await maintenance.check_cache_health()
        raise ValueError(f"Unknown maintenance task: {task!r}")

    async def _loop(self, task: str, interval_seconds: int) -> None:
        self.logger.info(f"Scheduling '{task}' every {interval_seconds}s")
        while not self._stop.is_set():
            try:
                await self.run_task(task)
            except Exception as e:
                self.logger.error(f"Maintenance task '{task}' failed: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def run_forever(self) -> None:
        intervals: dict[str, int] = {
            "cleanup": self.settings.CLEANUP_INTERVAL_SECONDS,
            "statistics": self.settings.STATISTICS_INTERVAL_SECONDS,
            "health": self.settings.CACHE_HEALTH_INTERVAL_SECONDS,
        }
        await asyncio.gather(*(self._loop(task, interval) for task, interval in intervals.items()))


def _install_signal_handlers(stop: Callable[[], None]) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop)
        except NotImplementedError:
            # Not supported on Windows event loops.
            pass


async def main(once: str | None = None) -> int:
    settings = get_settings()
    await _service_manager.initialize()
    logger = logging.getLogger("shortener.worker")
    logger.info(f"Starting maintenance worker ({settings.APP_ENV})")

    await init_db()
    worker = MaintenanceWorker(_service_manager)
    try:
        if once:
            result = await worker.run_task(once)
            logger.info(f"Task '{once}' finished: {result}")
        else:
            _install_signal_handlers(worker.stop)
            await worker.run_forever()
    except Exception as e:
        logger.error(f"Maintenance worker failed: {e}")
        return 1
    finally:
        await _service_manager.cleanup()
        await close_db()
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Short-link maintenance worker")
    parser.add_argument("--once", choices=TASKS, help="run a single task and exit")
    return parser.parse_args(argv)


def run(entry: Callable[..., Awaitable[int]] = main) -> None:
    args = parse_args()
    sys.exit(asyncio.run(entry(once=args.once)))


if __name__ == "__main__":
    run()
