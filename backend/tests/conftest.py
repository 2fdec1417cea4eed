"""
Pytest configuration and fixtures for Estate Scraper tests.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.database import Base
from api.main import app, get_queue, get_store
from api.ratelimit import job_rate_limiter
from worker.bandwidth import BandwidthGovernor
from worker.engine import CrawlEngine
from worker.base import ExtractionResult, ListingType, SiteAdapter, SiteConfig
from worker.errors import TaskFetchError
from worker.jobs import JobQueue
from worker.persistence import ListingStore


# Create an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

LIST_URL = "https://example.test/list1"


class FakeClock:
    """Controllable UTC clock for queue and governor tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(db_session):
    return ListingStore(TestingSessionLocal)


@pytest.fixture
def queue(db_session, clock):
    return JobQueue(TestingSessionLocal, clock=clock)


@pytest.fixture
def governor():
    return BandwidthGovernor(daily_budget_gb=2.0, monthly_budget_gb=30.0)


@pytest.fixture(scope="function")
def client(db_session, queue, store):
    """Create a test client with queue and store overrides."""
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_store] = lambda: store
    job_rate_limiter.reset()

    # Use TestClient directly without context manager for compatibility
    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def job_data():
    return {
        'client_name': 'Acme',
        'area_name': 'Northside',
        'country': 'AU',
        'buy_urls': [LIST_URL],
        'sold_urls': [],
    }


# ------------------------------------------------------------------
# Fake browser and adapter for crawl engine tests
# ------------------------------------------------------------------

class FakePage:
    """Page handle with the surface the adapters use."""

    def __init__(self, url: str, html: str = ''):
        self.url = url
        self.html = html

    async def content(self) -> str:
        return self.html


class FakeBrowser:
    def __init__(self, transport: 'FakeTransport'):
        self.transport = transport

    async def fetch(self, url: str) -> FakePage:
        self.transport.fetched.append(url)
        remaining = self.transport.failures.get(url, 0)
        if remaining:
            self.transport.failures[url] = remaining - 1
            raise TaskFetchError(url, "HTTP 503")
        if self.transport.governor is not None:
            self.transport.governor.record_response(self.transport.bytes_per_page)
        return FakePage(url, self.transport.pages.get(url, ''))

    async def release(self, page: FakePage) -> None:
        self.transport.released += 1


class FakeTransport:
    """
    Stands in for PlaywrightTransport.

    `failures` maps a URL to the number of fetches that fail before it loads.
    """

    def __init__(self, pages: Optional[Dict[str, str]] = None, failures: Optional[Dict[str, int]] = None,
                 governor: Optional[BandwidthGovernor] = None, bytes_per_page: int = 0):
        self.pages = pages or {}
        self.failures = dict(failures or {})
        self.governor = governor
        self.bytes_per_page = bytes_per_page
        self.fetched: List[str] = []
        self.proxies: List[Optional[str]] = []
        self.sessions = 0
        self.released = 0

    @asynccontextmanager
    async def session(self, proxy: Optional[str] = None):
        self.sessions += 1
        self.proxies.append(proxy)
        yield FakeBrowser(self)


class ScriptedAdapter(SiteAdapter):
    """
    Adapter driven by lookup tables instead of HTML.

    list_pages: url -> (detail links, next page url)
    listings: detail url -> external id (None for a page without an id)
    """

    config = SiteConfig(
        name='example.test',
        short_name='TEST',
        base_url='https://example.test',
        country='AU',
        url_patterns=('example.test',),
        id_prefix='au_',
    )

    def __init__(self, list_pages: Dict[str, Tuple[List[str], Optional[str]]],
                 listings: Optional[Dict[str, Optional[str]]] = None):
        super().__init__()
        self.list_pages = list_pages
        self.listings = listings or {}

    async def get_detail_links(self, page) -> List[str]:
        return list(self.list_pages.get(page.url, ([], None))[0])

    async def get_next_page_url(self, page) -> Optional[str]:
        return self.list_pages.get(page.url, ([], None))[1]

    async def extract_listing(self, page, listing_type: ListingType) -> ExtractionResult:
        external_id = self.listings.get(page.url)
        if external_id is None:
            return ExtractionResult.failed(f"No listing id in URL: {page.url}")
        return ExtractionResult(
            success=True,
            external_id=external_id,
            data={
                'address': f"{external_id} Smith St, Northside NSW 2000",
                'suburb': 'Northside',
                'state': 'NSW',
                'postcode': '2000',
                'price': 950000,
                'bedrooms': 3,
                'listing_url': page.url,
                'raw_data': {'source': 'example.test'},
            },
        )


class RecordingProgress:
    """Progress sink that remembers every report."""

    def __init__(self):
        self.reports: List[int] = []

    async def report(self, percent: int) -> None:
        self.reports.append(percent)


@pytest.fixture
def recording_progress():
    return RecordingProgress()


def build_engine(store, adapter, transport, governor=None, **overrides):
    """Crawl engine over a fake transport with pacing and backoff turned off."""
    options = dict(
        adapter_for_url=lambda url: adapter,
        task_retry_base_delay=0,
        task_delay=(0, 0),
        session_delay=(0, 0),
    )
    options.update(overrides)
    return CrawlEngine(store, transport, governor or BandwidthGovernor(), **options)
