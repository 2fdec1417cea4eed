"""
Base classes for the estate crawl worker.

This module defines the adapter capability interface and the data
structures shared by the crawl engine, the adapters and the job queue.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Any, Tuple
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone
import logging

# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    # Colors
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def cyan(text):
        return f"{Colors.CYAN}{text}{Colors.RESET}"

    @staticmethod
    def gray(text):
        return f"{Colors.GRAY}{text}{Colors.RESET}"

    @staticmethod
    def bold(text):
        return f"{Colors.BOLD}{text}{Colors.RESET}"


class ListingType(str, Enum):
    """Which side of the market a seed URL covers."""
    BUY = "buy"
    SOLD = "sold"


class TaskType(str, Enum):
    """Kinds of page a crawl session visits."""
    LIST = "LIST"       # Search results page: detail links + pagination
    DETAIL = "DETAIL"   # Single property page: one listing


class Country(str, Enum):
    AU = "AU"
    NZ = "NZ"


# Lower value is dequeued first
COUNTRY_PRIORITY = {
    Country.AU.value: 100,
    Country.NZ.value: 110,
}


@dataclass
class SiteConfig:
    """Configuration for a listing origin."""
    name: str                           # Display name, e.g. 'realestate.com.au'
    short_name: str                     # Logger / registry identifier
    base_url: str                       # Origin used to absolutize links
    country: str                        # Default country for the origin
    url_patterns: Tuple[str, ...] = ()  # Substrings that select this origin
    id_prefix: str = ''                 # Prefix for external ids, e.g. 'au_'
    selectors: Dict[str, str] = field(default_factory=dict)  # CSS selectors
    enabled: bool = True


@dataclass
class CrawlTask:
    """A unit of traversal work inside one crawl session."""
    type: TaskType
    url: str
    listing_type: ListingType
    job_id: Optional[str] = None
    retries: int = 0


@dataclass
class ExtractionResult:
    """Outcome of extracting one listing from a detail page."""
    success: bool
    external_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> 'ExtractionResult':
        return cls(success=False, error=error)

    @property
    def is_usable(self) -> bool:
        """True when the result can be persisted."""
        return bool(self.success and self.external_id and str(self.external_id).strip())

    def to_listing_data(self) -> Dict[str, Any]:
        listing = dict(self.data)
        listing['external_id'] = self.external_id
        return listing


@dataclass
class CrawlStats:
    """Per-job counters, merged into the job result."""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    listings_processed: int = 0
    list_pages_processed: int = 0
    detail_pages_processed: int = 0
    extraction_misses: int = 0
    errors: int = 0
    error_details: List[Dict] = field(default_factory=list)

    def add_error(self, url: str, error: str):
        self.errors += 1
        self.error_details.append({'url': url, 'error': error})

    @property
    def duration_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()

    def to_dict(self) -> Dict:
        return {
            'listings_processed': self.listings_processed,
            'list_pages_processed': self.list_pages_processed,
            'detail_pages_processed': self.detail_pages_processed,
            'extraction_misses': self.extraction_misses,
            'errors': self.errors,
            'error_details': self.error_details[:10],  # Limit error details
        }


class SiteAdapter(ABC):
    """
    Per-origin extraction strategy over a page handle.

    A page handle exposes at least ``url`` and ``async content()``
    (a Playwright Page satisfies this). Subclasses must implement:
    - get_detail_links(): property links on a search results page
    - get_next_page_url(): the next results page, or None
    - extract_listing(): the listing on a property page
    """

    config: SiteConfig

    def __init__(self, config: Optional[SiteConfig] = None):
        if config is not None:
            self.config = config
        self.logger = logging.getLogger(f"crawler.{self.config.short_name}")

    @property
    def name(self) -> str:
        return self.config.name

    def matches(self, url: str) -> bool:
        """Whether this adapter handles the given URL."""
        return any(pattern in url for pattern in self.config.url_patterns)

    @abstractmethod
    async def get_detail_links(self, page) -> List[str]:
        """Return absolute URLs of property pages linked from a results page."""
        pass

    @abstractmethod
    async def get_next_page_url(self, page) -> Optional[str]:
        """Return the next results page URL, or None on the last page."""
        pass

    @abstractmethod
    async def extract_listing(self, page, listing_type: ListingType) -> ExtractionResult:
        """Extract the listing shown on a property page."""
        pass
