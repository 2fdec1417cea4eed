"""
Worker pool - runs queued jobs in a bounded number of asyncio slots.

Each slot leases one job, runs the handler to a terminal state and only
then asks for the next job. While a job runs, a heartbeat renews its lease
so it is not mistaken for an abandoned job.
"""

import asyncio
import os
import socket
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

from .jobs import JobQueue, JobRecord
from .progress import ProgressSink, QueueProgressSink

logger = logging.getLogger(__name__)

JobHandler = Callable[[JobRecord, ProgressSink], Awaitable[Dict[str, Any]]]


def default_worker_name() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class WorkerPool:
    """
    Bounded-concurrency job runner.

    Usage:
        pool = WorkerPool(queue, handler, concurrency=2)
        await pool.run()            # until stop() is called
        await pool.run(until_idle=True)  # until the queue has nothing ready
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 2,
        poll_interval: float = 1.0,
        name: Optional[str] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.name = name or default_worker_name()
        self._stopping = asyncio.Event()
        self._busy = 0
        self.processed = 0

    def stop(self) -> None:
        """Stop leasing new jobs. Jobs already running are allowed to finish."""
        if not self._stopping.is_set():
            logger.info(f"Worker pool {self.name} stopping - no new jobs will be leased")
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run(self, until_idle: bool = False) -> None:
        logger.info(f"Worker pool {self.name} started with {self.concurrency} slot(s)")
        slots = [
            asyncio.create_task(self._slot(f"{self.name}:{index}", until_idle))
            for index in range(self.concurrency)
        ]
        try:
            await asyncio.gather(*slots)
        finally:
            for slot in slots:
                if not slot.done():
                    slot.cancel()
        logger.info(f"Worker pool {self.name} stopped after {self.processed} job(s)")

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _slot(self, worker_id: str, until_idle: bool) -> None:
        while not self._stopping.is_set():
            try:
                job = await asyncio.to_thread(self.queue.lease, worker_id)
            except Exception as e:
                # Queue connectivity is a health concern; keep polling
                logger.error(f"Worker {worker_id} could not lease a job: {e}")
                await self._wait(self.poll_interval)
                continue

            if job is None:
                if until_idle and self._busy == 0:
                    return
                await self._wait(self.poll_interval)
                continue

            self._busy += 1
            try:
                await self.process(job, worker_id)
            except Exception as e:
                # The lease will lapse and the job will be picked up again
                logger.error(f"Worker {worker_id} could not record the outcome of job {job.id}: {e}")
            finally:
                self._busy -= 1

    async def _heartbeat(self, job: JobRecord, worker_id: str) -> None:
        interval = max(self.queue.lease_seconds / 2, 0.05)
        while True:
            await asyncio.sleep(interval)
            try:
                owned = await asyncio.to_thread(self.queue.extend_lease, job.id, worker_id)
                if not owned:
                    logger.warning(f"Worker {worker_id} no longer holds the lease on job {job.id}")
                    return
            except Exception as e:
                logger.warning(f"Lease renewal failed for job {job.id}: {e}")

    async def process(self, job: JobRecord, worker_id: str) -> None:
        """Run one job to a terminal state (completed, or a recorded failure)."""
        heartbeat = asyncio.create_task(self._heartbeat(job, worker_id))
        progress = QueueProgressSink(self.queue, job.id)
        try:
            result = await self.handler(job, progress)
        except Exception as e:
            logger.error(f"❌ Job {job.id} failed on {worker_id}: {e}")
            await asyncio.to_thread(self.queue.fail, job.id, str(e) or e.__class__.__name__, worker_id)
        else:
            await asyncio.to_thread(self.queue.complete, job.id, result or {}, worker_id)
        finally:
            heartbeat.cancel()
            self.processed += 1
