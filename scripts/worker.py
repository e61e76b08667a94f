"""Background worker for scheduled feed refreshes.

This worker runs as a separate service and handles:
- Refresh sweeps over every subscription (every 15 minutes by default)
- Health monitoring (hourly)

Usage:
    python scripts/worker.py

Environment Variables:
    VESPER_DATABASE_URL: SQLAlchemy connection string
    VESPER_PROXY_URL / VESPER_RELAY_URL: Optional proxy routes
    VESPER_REFRESH_INTERVAL_MINUTES: Sweep interval
"""

import os
import sys
import asyncio
from datetime import datetime
import signal

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vesper.config.logging_setup import configure_logging
from vesper.config.settings import settings
from vesper.ingestion.fetcher import FeedFetcher
from vesper.storage.factory import get_storage
from vesper.sync.coordinator import RefreshCoordinator
from vesper.sync.engine import SyncEngine

logger = structlog.get_logger()


class RefreshWorker:
    """Owns the fetcher session and schedules refresh sweeps."""

    def __init__(self):
        self.storage = get_storage()
        self.fetcher = FeedFetcher(settings)
        self.engine = SyncEngine(self.storage, self.fetcher, settings)
        self.coordinator = RefreshCoordinator(self.storage, self.engine, settings)
        self.scheduler = AsyncIOScheduler()
        self.running = True

    def setup_jobs(self):
        """Configure scheduled jobs."""
        self.scheduler.add_job(
            self.refresh_feeds,
            IntervalTrigger(minutes=settings.refresh_interval_minutes),
            id='refresh_feeds',
            name='Refresh all feeds',
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=300
        )

        self.scheduler.add_job(
            self.health_check,
            IntervalTrigger(hours=1),
            id='health_check',
            name='Reader health check',
            replace_existing=True
        )

        logger.info("jobs_configured", count=len(self.scheduler.get_jobs()))

    async def refresh_feeds(self):
        """Run one refresh sweep."""
        logger.info("job_started", job="refresh_feeds")
        start_time = datetime.now()

        outcomes = await self.coordinator.refresh_all()
        if outcomes is None:
            return {"throttled": True}

        elapsed = (datetime.now() - start_time).total_seconds()
        summary = {
            "feeds": len(outcomes),
            "new_articles": sum(o.result.total for o in outcomes if o.ok),
            "failed": sum(1 for o in outcomes if o.status == "failed"),
            "skipped": sum(1 for o in outcomes if o.status == "skipped"),
        }
        logger.info("job_completed", job="refresh_feeds", elapsed_seconds=elapsed, **summary)
        return summary

    async def health_check(self):
        """Log store statistics and warn about failing feeds."""
        stats = await asyncio.to_thread(self.storage.get_stats)
        if stats["total_feeds"] and stats["failing_feeds"] == stats["total_feeds"]:
            logger.warning("all_feeds_failing", feeds=stats["total_feeds"])
        logger.debug("health_check", **stats)
        return {"status": "healthy", "stats": stats}

    def start(self):
        """Start the scheduler."""
        self.setup_jobs()
        self.scheduler.start()
        logger.info("worker_started", jobs=len(self.scheduler.get_jobs()))

    def stop(self):
        """Stop the worker gracefully."""
        self.running = False
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("worker_stopped")


async def main():
    """Main entry point."""
    configure_logging()
    worker = RefreshWorker()

    # Handle graceful shutdown
    def signal_handler(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        worker.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    async with worker.fetcher:
        worker.start()

        # Run immediately on startup
        logger.info("running_initial_tasks")
        await worker.refresh_feeds()
        await worker.health_check()

        try:
            while worker.running:
                await asyncio.sleep(1)
        finally:
            worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
