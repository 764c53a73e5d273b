"""
News detection scheduler.
Drives ChangeDetector.run_cycle() on a fixed cadence until shutdown.
"""
from __future__ import annotations

import asyncio
import signal

from detector.news import ChangeDetector
from ingest.providers.fantasy import FantasyApiClient
from shared.config import Settings, get_settings
from shared.models.domain import CycleResult
from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


def log_cycle_result(result: CycleResult) -> None:
    if result.error:
        logger.warning("news_check_failed", error=result.error)
    elif result.is_initial_run:
        logger.info("news_check_initial_snapshot")
    elif result.skipped:
        logger.info("news_check_skipped")
    else:
        logger.info("news_check_done", changes=result.changes_detected)


class DetectorScheduler:
    """Runs one detection cycle immediately, then every ``detector_interval_s``."""

    def __init__(self, detector: ChangeDetector, settings: Settings | None = None) -> None:
        self._detector = detector
        self._settings = settings or get_settings()
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        interval = self._settings.detector_interval_s
        while not self._shutdown.is_set():
            try:
                log_cycle_result(await self._detector.run_cycle())
            except asyncio.CancelledError:
                break

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def main() -> None:
    """Scheduler service entrypoint."""
    settings = get_settings()
    setup_logging("scheduler")
    start_metrics_server()

    redis = RedisManager(settings)
    client = FantasyApiClient(UpstreamHTTPClient(settings))

    await redis.connect()
    await client.start()

    service = DetectorScheduler(ChangeDetector(redis, client, settings), settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_shutdown)

    logger.info(
        "scheduler_service_started",
        instance_id=settings.instance_id,
        interval_s=settings.detector_interval_s,
    )

    try:
        await service.run()
    finally:
        await client.close()
        await redis.disconnect()
        logger.info("scheduler_service_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
