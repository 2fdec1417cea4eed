"""
Error taxonomy for the crawl worker.

Single-task errors (fetch, extraction, persistence) are recovered and counted
by the crawl engine; only ConnectivityError at job start aborts a whole job.
"""


class ScraperError(Exception):
    """Base class for all crawl worker errors."""


class ConnectivityError(ScraperError):
    """Database (or queue) unreachable when a job starts."""


class TaskFetchError(ScraperError):
    """A page could not be loaded."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Failed to fetch {url}: {message}")


class ExtractionError(ScraperError):
    """The adapter reported failure or returned no external id."""


class PersistenceError(ScraperError):
    """A listing/snapshot transaction was rolled back."""
