"""Progress reporting from the crawl engine to whoever owns the job."""

import asyncio
from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class ProgressSink(ABC):
    """Receives job progress percentages (0-100)."""

    @abstractmethod
    async def report(self, percent: int) -> None:
        pass


class NullProgressSink(ProgressSink):
    """Discards progress. Used for ad-hoc runs outside the queue."""

    async def report(self, percent: int) -> None:
        return None


class QueueProgressSink(ProgressSink):
    """
    Forwards progress to the job queue.

    Values that do not increase are dropped, so the stored progress of a job
    never goes backwards. Failures are logged and swallowed: progress is
    fire-and-forget and must not break the crawl.
    """

    def __init__(self, queue, job_id):
        self.queue = queue
        self.job_id = job_id
        self.last = 0

    async def report(self, percent: int) -> None:
        percent = max(0, min(100, int(round(percent))))
        if percent <= self.last:
            return
        self.last = percent
        try:
            await asyncio.to_thread(self.queue.update_progress, self.job_id, percent)
        except Exception as e:
            logger.warning(f"Progress update failed for job {self.job_id}: {e}")
