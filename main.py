"""
Main entry point for the review crawler with scheduling support.
"""

import asyncio
import logging
import os
import signal
import sys

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.app import CrawlerApp
from core.config import load_settings
from core.infra.scheduler import Scheduler
from core.models import VALID_RATINGS


async def main():
    """Long-running crawler: cron-scheduled runs until SIGINT/SIGTERM."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s"
    )
    logger = logging.getLogger(__name__)

    settings = load_settings()
    logger.info("API key: %s", "set" if settings.api_key else "not set (using stored config)")

    app = CrawlerApp(settings)
    await app.open()

    scheduler = Scheduler(timezone=settings.schedule.timezone)

    async def scheduled_crawl():
        logger.info("Running scheduled crawl")
        summary = await app.orchestrator.run(VALID_RATINGS)
        if summary is None:
            logger.info("Skipped scheduled crawl: previous run still active")

    # Setup graceful shutdown
    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    try:
        if settings.schedule.enabled:
            scheduler.add_cron_job(
                scheduled_crawl,
                settings.schedule.cron,
                job_id="shopee_crawl",
                randomize=settings.schedule.randomize_start,
            )
            await scheduler.start()
            for job_id, job in scheduler.list_jobs().items():
                logger.info(f"  - {job_id}: next run {job['next_run']}")
        else:
            logger.info("Scheduler disabled; use crawler_cli.py run to crawl manually")

        await stop_event.wait()

    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()
        await app.close()
        logger.info("Shutdown complete")


def run_crawler():
    """Entry point that can be called from other scripts."""
    asyncio.run(main())


if __name__ == "__main__":
    run_crawler()
