"""
Fixed-window request limiter for the job endpoints.

Counts requests per client key inside a window; once a client reaches the
maximum it is refused until its window ends. State is per process.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple
import threading


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """
    Usage:
        limiter = RateLimiter()
        retry_after = limiter.hit(client_ip, max_requests=100, window_seconds=900)
        if retry_after is not None:
            ...  # refuse with 429
    """

    def __init__(self, clock: Callable[[], datetime] = _utc_now):
        self._clock = clock
        self._windows: Dict[str, Tuple[datetime, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, max_requests: int, window_seconds: float) -> Optional[float]:
        """
        Count one request for `key`.

        Returns:
            None if allowed, otherwise seconds until the client's window resets.
            A max_requests of 0 or less disables limiting.
        """
        if max_requests <= 0:
            return None

        now = self._clock()
        with self._lock:
            self._drop_expired(now, window_seconds)
            started, count = self._windows.get(key, (now, 0))
            if count >= max_requests:
                return max(0.0, window_seconds - (now - started).total_seconds())
            self._windows[key] = (started, count + 1)
            return None

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _drop_expired(self, now: datetime, window_seconds: float) -> None:
        expired = [
            key for key, (started, _) in self._windows.items()
            if (now - started).total_seconds() >= window_seconds
        ]
        for key in expired:
            del self._windows[key]


job_rate_limiter = RateLimiter()
