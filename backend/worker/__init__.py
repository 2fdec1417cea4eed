"""
Estate crawl worker.

This package provides:
- A durable, prioritized job queue with leases and retry/backoff
- A bounded worker pool that runs jobs through the crawl engine
- The crawl engine (LIST -> DETAIL traversal with pagination)
- Per-origin site adapters (realestate.com.au, realestate.co.nz)
- Transactional listing persistence and bandwidth accounting
"""

from .base import SiteAdapter, SiteConfig, ListingType, TaskType, CrawlTask, CrawlStats, ExtractionResult
from .bandwidth import BandwidthGovernor, get_governor
from .engine import CrawlEngine
from .jobs import JobQueue, JobRecord, JobState
from .persistence import ListingStore
from .pool import WorkerPool
from .progress import ProgressSink, QueueProgressSink
from .registry import ADAPTER_REGISTRY, get_adapter_for_url, register_adapter

__all__ = [
    'SiteAdapter',
    'SiteConfig',
    'ListingType',
    'TaskType',
    'CrawlTask',
    'CrawlStats',
    'ExtractionResult',
    'BandwidthGovernor',
    'get_governor',
    'CrawlEngine',
    'JobQueue',
    'JobRecord',
    'JobState',
    'ListingStore',
    'WorkerPool',
    'ProgressSink',
    'QueueProgressSink',
    'ADAPTER_REGISTRY',
    'get_adapter_for_url',
    'register_adapter',
]
