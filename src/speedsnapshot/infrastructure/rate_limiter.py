"""
Upstream quota guard.

PageSpeed Insights allows 400 requests per 100 seconds per key. Every
strategy that calls PSI directly shares one window so that concurrent jobs
never burst past it.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

logger = logging.getLogger(__name__)


@dataclass
class QuotaMetrics:
    """Current usage of the quota window."""
    requests_in_window: int
    total_requests: int
    total_wait_time: float


class UpstreamQuota:
    """
    Sliding-window limiter for the upstream request quota.

    Features:
    - Rolling window of request timestamps
    - Waits (never rejects) when the window is full
    - Safe to share between concurrent tasks
    """

    def __init__(self, max_requests: int = 400, window: float = 100.0):
        """
        Initialize quota guard.

        Args:
            max_requests: Requests allowed per window
            window: Window length (seconds)
        """
        self.max_requests = max_requests
        self.window = window

        self._request_times: Deque[float] = deque()
        self._lock = asyncio.Lock()

        # Statistics
        self._total_requests = 0
        self._total_wait_time = 0.0

    async def acquire(self) -> float:
        """
        Reserve a slot in the window, waiting if it is full.

        Returns:
            Time waited (seconds)
        """
        async with self._lock:
            now = time.monotonic()
            self._evict(now)

            wait_time = 0.0
            if len(self._request_times) >= self.max_requests:
                oldest = self._request_times[0]
                wait_time = self.window - (now - oldest)

                if wait_time > 0:
                    logger.warning(f"[PSI] Quota window full. Waiting {wait_time:.1f}s...")
                    await asyncio.sleep(wait_time)
                    self._total_wait_time += wait_time
                else:
                    wait_time = 0.0

                now = time.monotonic()
                self._evict(now)

            self._request_times.append(now)
            self._total_requests += 1
            return wait_time

    def _evict(self, now: float) -> None:
        """Drop timestamps older than the window."""
        while self._request_times and (now - self._request_times[0]) >= self.window:
            self._request_times.popleft()

    def get_metrics(self) -> QuotaMetrics:
        self._evict(time.monotonic())
        return QuotaMetrics(
            requests_in_window=len(self._request_times),
            total_requests=self._total_requests,
            total_wait_time=self._total_wait_time,
        )

    def reset(self) -> None:
        """Reset the window and statistics."""
        self._request_times.clear()
        self._total_requests = 0
        self._total_wait_time = 0.0


_shared_quota: Optional[UpstreamQuota] = None


def get_shared_quota() -> UpstreamQuota:
    """Process-wide quota for the configured API key."""
    global _shared_quota
    if _shared_quota is None:
        _shared_quota = UpstreamQuota()
    return _shared_quota
