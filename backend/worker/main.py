"""
Worker process - leases scrape jobs from the queue and crawls them.

Run with:
    python -m worker
"""

import asyncio
import signal
import time
import logging

from api.config import settings
from api.database import SessionLocal, QueueSessionLocal, init_db
from api.logging_setup import configure_logging
from .bandwidth import get_governor
from .engine import CrawlEngine
from .jobs import JobQueue, JobRecord
from .persistence import ListingStore
from .pool import WorkerPool
from .progress import ProgressSink

logger = logging.getLogger(__name__)


def build_handler(engine: CrawlEngine):
    """Wrap the crawl engine as a queue job handler."""

    async def handle(job: JobRecord, progress: ProgressSink):
        start = time.monotonic()
        result = await engine.run(job.data, job.id, progress)
        return {
            **result,
            'job_id': job.id,
            'duration_secs': round(time.monotonic() - start),
        }

    return handle


def build_pool() -> WorkerPool:
    queue = JobQueue.from_settings(settings, QueueSessionLocal)
    store = ListingStore(SessionLocal)
    engine = CrawlEngine.from_settings(settings, store, governor=get_governor())
    return WorkerPool(
        queue,
        build_handler(engine),
        concurrency=settings.max_concurrent_jobs,
        poll_interval=settings.poll_interval,
    )


async def serve() -> None:
    pool = build_pool()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, pool.stop)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms (e.g. Windows)
            pass

    await pool.run()


def main() -> None:
    configure_logging()
    logger.info("=" * 60)
    logger.info("Estate Scraper Worker Starting Up")
    logger.info("=" * 60)
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"Concurrency: {settings.max_concurrent_jobs}")
    settings.data_dir.mkdir(exist_ok=True)
    init_db()
    asyncio.run(serve())
    logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
