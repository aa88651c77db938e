import asyncio
import logging
from contextlib import asynccontextmanager

from ..config import settings
from .shortener import ShortenerService

logger = logging.getLogger(__name__)


async def run_periodic_cleanup(service: ShortenerService, interval_seconds: float = None):
    """Runs cleanup every ``interval_seconds`` (10 minutes by default) until cancelled"""
    interval = interval_seconds or settings.CLEANUP_INTERVAL_SECONDS
    logger.info(f"Starting periodic cleanup task, every {interval}s")

    while True:
        try:
            await service.perform_cleanup()
        except Exception:
            logger.exception("Periodic cleanup failed")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(service: ShortenerService, interval_seconds: float = None):
    """Initializes the service and keeps the cleanup task running while open"""
    await service.initialize()

    logger.info("Starting background tasks")
    cleanup_task = asyncio.create_task(run_periodic_cleanup(service, interval_seconds))
    try:
        yield service
    finally:
        logger.info("Stopping background tasks")
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            logger.info("Cleanup task cancelled successfully")
