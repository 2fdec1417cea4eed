"""
Bandwidth governor - process-wide byte accounting against budgets.

Every browser response reports its size here. Usage is tracked for the
current crawl session, the current UTC day and the current UTC month.
Breaching a budget is reported through is_over_budget(); it is only
enforced when the crawl engine is configured to check it before dispatch.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional
import logging

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 * 1024 * 1024


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BandwidthGovernor:
    """
    Session/daily/monthly usage counters with daily and monthly budgets.

    Counters are kept in bytes and guarded by a lock, since every concurrent
    crawl in the process records into the same instance. Daily and monthly
    counters roll over when the UTC calendar day/month changes; the check is
    made lazily on every record and read.
    """

    def __init__(
        self,
        daily_budget_gb: float = 2.0,
        monthly_budget_gb: float = 30.0,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.daily_budget_gb = daily_budget_gb
        self.monthly_budget_gb = monthly_budget_gb
        self._clock = clock
        self._lock = threading.Lock()

        now = clock()
        self._day = now.date()
        self._month = (now.year, now.month)
        self._session_started = time.monotonic()
        self._session_bytes = 0
        self._daily_bytes = 0
        self._monthly_bytes = 0

    def _roll_periods(self):
        """Reset daily/monthly counters on a calendar boundary. Caller holds the lock."""
        now = self._clock()
        if now.date() != self._day:
            logger.info(f"Daily bandwidth counter reset ({self._day} -> {now.date()})")
            self._day = now.date()
            self._daily_bytes = 0
        if (now.year, now.month) != self._month:
            logger.info("Monthly bandwidth counter reset")
            self._month = (now.year, now.month)
            self._monthly_bytes = 0

    def record_response(self, byte_count: Optional[int]) -> None:
        """
        Add a response size to all counters.

        Responses without a known size contribute zero - they are not
        estimated, so usage is an undercount.
        """
        if byte_count is None:
            return
        try:
            byte_count = int(byte_count)
        except (TypeError, ValueError):
            return
        if byte_count <= 0:
            return

        with self._lock:
            self._roll_periods()
            self._session_bytes += byte_count
            self._daily_bytes += byte_count
            self._monthly_bytes += byte_count

    def record_headers(self, headers: Mapping[str, str]) -> None:
        """Record a response from its headers (content-length only)."""
        content_length = None
        for name, value in (headers or {}).items():
            if name.lower() == 'content-length':
                content_length = value
                break
        if content_length is None:
            return
        try:
            self.record_response(int(content_length))
        except ValueError:
            logger.debug(f"Ignoring unparseable content-length: {content_length!r}")

    @property
    def session_bytes(self) -> int:
        with self._lock:
            return self._session_bytes

    @property
    def daily_bytes(self) -> int:
        with self._lock:
            self._roll_periods()
            return self._daily_bytes

    @property
    def monthly_bytes(self) -> int:
        with self._lock:
            self._roll_periods()
            return self._monthly_bytes

    def remaining(self) -> Dict[str, float]:
        """Headroom in GB for each budget, never negative."""
        with self._lock:
            self._roll_periods()
            daily_gb = self._daily_bytes / BYTES_PER_GB
            monthly_gb = self._monthly_bytes / BYTES_PER_GB
        return {
            'daily': max(0.0, self.daily_budget_gb - daily_gb),
            'monthly': max(0.0, self.monthly_budget_gb - monthly_gb),
        }

    def usage_stats(self) -> Dict:
        """Usage per counter in GB (3 decimals) with budgets and headroom."""
        with self._lock:
            self._roll_periods()
            session_bytes = self._session_bytes
            daily_gb = self._daily_bytes / BYTES_PER_GB
            monthly_gb = self._monthly_bytes / BYTES_PER_GB
            duration = time.monotonic() - self._session_started

        return {
            'session': {
                'gb': round(session_bytes / BYTES_PER_GB, 3),
                'bytes': session_bytes,
                'duration': round(duration),
            },
            'daily': {
                'gb': round(daily_gb, 3),
                'budget_gb': self.daily_budget_gb,
                'remaining': max(0.0, self.daily_budget_gb - daily_gb),
            },
            'monthly': {
                'gb': round(monthly_gb, 3),
                'budget_gb': self.monthly_budget_gb,
                'remaining': max(0.0, self.monthly_budget_gb - monthly_gb),
            },
        }

    def is_over_budget(self) -> bool:
        """True iff daily used > daily budget or monthly used > monthly budget."""
        with self._lock:
            self._roll_periods()
            return (
                self._daily_bytes / BYTES_PER_GB > self.daily_budget_gb
                or self._monthly_bytes / BYTES_PER_GB > self.monthly_budget_gb
            )

    def reset_session(self) -> None:
        with self._lock:
            self._session_bytes = 0
            self._session_started = time.monotonic()

    def reset_daily(self) -> None:
        with self._lock:
            self._daily_bytes = 0

    def reset_monthly(self) -> None:
        with self._lock:
            self._monthly_bytes = 0


_governor: Optional[BandwidthGovernor] = None
_governor_lock = threading.Lock()


def get_governor() -> BandwidthGovernor:
    """Return the process-wide governor, built from settings on first use."""
    global _governor
    with _governor_lock:
        if _governor is None:
            from api.config import settings
            _governor = BandwidthGovernor(
                daily_budget_gb=settings.daily_gb_budget,
                monthly_budget_gb=settings.monthly_gb_budget,
            )
        return _governor
