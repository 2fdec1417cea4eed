"""
Crawl engine - runs one scrape job against live listing pages.

A job moves through INIT -> BUY_PHASE -> SOLD_PHASE -> DONE:

1. INIT: check the database is reachable (fatal if not)
2. BUY/SOLD: for every seed URL run one crawl session
   (LIST page -> DETAIL pages, following pagination)
3. DONE: return aggregate stats as the job result

Each crawl session is single-flight: tasks run one at a time from a FIFO
frontier, with randomized pacing between them. A failing task is retried
with exponential backoff and then abandoned; the job carries on.
"""

import asyncio
import math
import random
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Set, Tuple
import logging

from .bandwidth import BandwidthGovernor, get_governor
from .base import Colors, CrawlStats, CrawlTask, ExtractionResult, ListingType, SiteAdapter, TaskType
from .errors import ConnectivityError, ExtractionError
from .persistence import ListingStore
from .progress import NullProgressSink, ProgressSink
from .registry import get_adapter_for_url

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    INIT = "INIT"
    BUY_PHASE = "BUY_PHASE"
    SOLD_PHASE = "SOLD_PHASE"
    DONE = "DONE"


# (phase, listing type, progress at phase start); each phase spans 35%
PHASES = (
    (Phase.BUY_PHASE, ListingType.BUY, 10),
    (Phase.SOLD_PHASE, ListingType.SOLD, 45),
)
PHASE_SPAN = 35


def phase_progress(phase_start: int, completed: int, total: int) -> int:
    """Progress after `completed` of `total` seed URLs in a phase, rounded half up."""
    return int(math.floor(phase_start + (completed / max(total, 1)) * PHASE_SPAN + 0.5))


class CrawlEngine:
    """
    Drives site adapters over browser pages and persists what they extract.

    Usage:
        engine = CrawlEngine.from_settings(settings, ListingStore(SessionLocal))
        result = await engine.run(job_data, job_id, progress_sink)
    """

    def __init__(
        self,
        store: ListingStore,
        transport,
        governor: BandwidthGovernor,
        adapter_for_url: Callable[[str], SiteAdapter] = get_adapter_for_url,
        proxies: Optional[Dict[str, Optional[str]]] = None,
        task_max_retries: int = 3,
        task_retry_base_delay: float = 1.0,
        task_timeout: float = 120.0,
        task_delay: Tuple[float, float] = (1.0, 3.0),
        session_delay: Tuple[float, float] = (3.0, 5.0),
        enforce_bandwidth_budget: bool = False,
    ):
        self.store = store
        self.transport = transport
        self.governor = governor
        self.adapter_for_url = adapter_for_url
        self.proxies = proxies or {}
        self.task_max_retries = task_max_retries
        self.task_retry_base_delay = task_retry_base_delay
        self.task_timeout = task_timeout
        self.task_delay = task_delay
        self.session_delay = session_delay
        self.enforce_bandwidth_budget = enforce_bandwidth_budget

    @classmethod
    def from_settings(cls, settings, store: ListingStore, governor: Optional[BandwidthGovernor] = None, transport=None):
        from .browser import PlaywrightTransport

        governor = governor or get_governor()
        transport = transport or PlaywrightTransport(
            governor,
            headless=settings.headless,
            page_timeout=settings.page_timeout,
        )
        return cls(
            store,
            transport,
            governor,
            proxies={
                'AU': settings.proxy_au_residential,
                'NZ': settings.proxy_nz_residential or settings.proxy_au_residential,
            },
            task_max_retries=settings.task_max_retries,
            task_retry_base_delay=settings.task_retry_base_delay,
            task_timeout=settings.task_timeout,
            enforce_bandwidth_budget=settings.enforce_bandwidth_budget,
        )

    def proxy_for_country(self, country: Optional[str]) -> Optional[str]:
        return self.proxies.get(country) or self.proxies.get('AU')

    async def _pause(self, bounds: Tuple[float, float]):
        low, high = bounds
        if high <= 0:
            return
        await asyncio.sleep(random.uniform(low, high))

    async def run(
        self,
        job_data: Mapping[str, Any],
        job_id: Optional[str] = None,
        progress: Optional[ProgressSink] = None,
    ) -> Dict[str, Any]:
        """
        Run a whole job and return its result.

        Raises:
            ConnectivityError: the database is unreachable (nothing was crawled)
        """
        progress = progress or NullProgressSink()
        stats = CrawlStats()
        phase = Phase.INIT
        label = f"job {job_id}" if job_id else "job"

        try:
            connected = await asyncio.to_thread(self.store.test_connection)
            if not connected:
                raise ConnectivityError('Database connection failed')

            logger.info(
                f"Starting {label}: {job_data.get('client_name')} / {job_data.get('area_name')} "
                f"({job_data.get('country')})"
            )
            await progress.report(10)

            for phase, listing_type, phase_start in PHASES:
                urls = list(job_data.get(f"{listing_type.value}_urls") or [])
                for index, raw_url in enumerate(urls):
                    seed_url = (raw_url or '').strip()
                    if not seed_url:
                        continue
                    await self.crawl_seed(seed_url, listing_type, job_data, job_id, stats)
                    await progress.report(phase_progress(phase_start, index + 1, len(urls)))
                    await self._pause(self.session_delay)

            phase = Phase.DONE
            await progress.report(95)
            result = {
                'success': True,
                **stats.to_dict(),
                'bandwidth_stats': self.governor.usage_stats(),
                'duration_secs': round(stats.duration_seconds, 1),
            }
            logger.info(
                f"✅ {label.capitalize()} complete in {result['duration_secs']}s: "
                f"{stats.listings_processed} listings, {stats.list_pages_processed} list pages, "
                f"{stats.detail_pages_processed} detail pages, {stats.errors} errors"
            )
            await progress.report(100)
            return result

        except Exception as e:
            logger.error(f"{label.capitalize()} failed during {phase.value}: {e}")
            raise

        finally:
            self.governor.reset_session()

    async def crawl_seed(
        self,
        seed_url: str,
        listing_type: ListingType,
        job_data: Mapping[str, Any],
        job_id: Optional[str],
        stats: CrawlStats,
    ) -> None:
        """Run one crawl session starting from a LIST page."""
        adapter = self.adapter_for_url(seed_url)
        proxy = self.proxy_for_country(job_data.get('country'))
        frontier: Deque[CrawlTask] = deque([CrawlTask(TaskType.LIST, seed_url, listing_type, job_id)])
        # Every URL runs at most once per session; stops pagination cycles
        seen: Set[str] = {seed_url}

        logger.info(f"{Colors.cyan('❯❯❯')} {listing_type.value} session via {adapter.name}: {seed_url}")

        async with self.transport.session(proxy=proxy) as browser:
            while frontier:
                if self.enforce_bandwidth_budget and self.governor.is_over_budget():
                    logger.warning(
                        f"{Colors.yellow('Bandwidth budget exceeded')} - ending session with "
                        f"{len(frontier)} task(s) pending"
                    )
                    break

                task = frontier.popleft()
                for new_task in await self.run_task(browser, adapter, task, job_data, stats):
                    if new_task.url not in seen:
                        seen.add(new_task.url)
                        frontier.append(new_task)

                await self._pause(self.task_delay)

    async def run_task(
        self,
        browser,
        adapter: SiteAdapter,
        task: CrawlTask,
        job_data: Mapping[str, Any],
        stats: CrawlStats,
    ) -> List[CrawlTask]:
        """
        Handle a task with bounded retries. Returns the tasks it discovered.

        The timeout bounds fetching and extraction only. A save already handed
        to a worker thread cannot be cancelled, so it runs outside the timeout.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.task_max_retries + 1):
            task.retries = attempt
            try:
                if task.type == TaskType.LIST:
                    return await asyncio.wait_for(
                        self.handle_list_page(browser, adapter, task, stats),
                        timeout=self.task_timeout,
                    )
                result = await asyncio.wait_for(
                    self.extract_detail_page(browser, adapter, task),
                    timeout=self.task_timeout,
                )
                await self.record_detail(result, task, job_data, stats)
                return []
            except Exception as e:
                last_error = e
                if isinstance(e, asyncio.TimeoutError):
                    last_error = TimeoutError(f"Task timed out after {self.task_timeout}s")
                logger.warning(
                    f"Attempt {attempt + 1}/{self.task_max_retries + 1} failed for "
                    f"{task.type.value} {task.url}: {last_error}"
                )
                if attempt < self.task_max_retries:
                    await asyncio.sleep(self.task_retry_base_delay * (2 ** attempt))

        stats.add_error(task.url, str(last_error))
        logger.error(f"   {Colors.red('[ERR]')} abandoned {task.type.value} {task.url}: {last_error}")
        return []

    async def handle_list_page(self, browser, adapter: SiteAdapter, task: CrawlTask, stats: CrawlStats) -> List[CrawlTask]:
        page = await browser.fetch(task.url)
        try:
            detail_links = await adapter.get_detail_links(page)
            next_page_url = await adapter.get_next_page_url(page)
        finally:
            await browser.release(page)

        new_tasks = [
            CrawlTask(TaskType.DETAIL, link, task.listing_type, task.job_id)
            for link in detail_links
        ]
        if next_page_url and next_page_url != task.url:
            new_tasks.append(CrawlTask(TaskType.LIST, next_page_url, task.listing_type, task.job_id))

        stats.list_pages_processed += 1
        logger.info(
            f"   List page {task.url}: {len(detail_links)} listing(s)"
            f"{', next page queued' if next_page_url and next_page_url != task.url else ''}"
        )
        return new_tasks

    async def extract_detail_page(self, browser, adapter: SiteAdapter, task: CrawlTask) -> Optional[ExtractionResult]:
        page = await browser.fetch(task.url)
        try:
            try:
                return await adapter.extract_listing(page, task.listing_type)
            except ExtractionError as e:
                return ExtractionResult.failed(str(e))
        finally:
            await browser.release(page)

    async def record_detail(self, result: Optional[ExtractionResult], task: CrawlTask, job_data, stats: CrawlStats) -> None:
        """Persist a usable extraction, or count it as a miss."""
        if result is not None and result.is_usable:
            listing_data = result.to_listing_data()
            listing_data.setdefault('listing_type', task.listing_type.value)
            saved = await asyncio.to_thread(self.store.save_listing, listing_data, job_data)
            stats.listings_processed += 1
            logger.debug(f"   {Colors.green('[OK]')} {saved['external_id']} -> listing {saved['listing_id']}")
            if stats.listings_processed % 10 == 0:
                logger.info(f"{Colors.bold('Progress')}: {stats.listings_processed} listings processed")
        else:
            stats.extraction_misses += 1
            reason = result.error if result is not None and result.error else 'missing external_id'
            logger.warning(f"   {Colors.yellow('[SKIP]')} {task.url}: {reason}")

        stats.detail_pages_processed += 1
