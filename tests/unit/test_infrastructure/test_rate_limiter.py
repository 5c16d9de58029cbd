"""Unit tests for UpstreamQuota."""

import pytest
import asyncio
import time

pytest_plugins = ('pytest_asyncio',)

from speedsnapshot.infrastructure.rate_limiter import (
    UpstreamQuota,
    QuotaMetrics,
    get_shared_quota,
)


class TestUpstreamQuota:
    """Tests for UpstreamQuota."""

    def test_defaults(self):
        """PSI allows 400 requests per 100 seconds."""
        quota = UpstreamQuota()
        assert quota.max_requests == 400
        assert quota.window == 100.0

    @pytest.mark.asyncio
    async def test_acquire_within_window_does_not_wait(self):
        quota = UpstreamQuota(max_requests=3, window=10.0)

        waits = [await quota.acquire() for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        assert quota.get_metrics().requests_in_window == 3

    @pytest.mark.asyncio
    async def test_acquire_waits_when_window_full(self):
        quota = UpstreamQuota(max_requests=2, window=0.2)
        await quota.acquire()
        await quota.acquire()

        start = time.monotonic()
        waited = await quota.acquire()
        elapsed = time.monotonic() - start

        assert waited > 0
        assert elapsed >= 0.1
        assert quota.get_metrics().total_wait_time > 0

    @pytest.mark.asyncio
    async def test_concurrent_acquires_respect_limit(self):
        quota = UpstreamQuota(max_requests=2, window=0.2)

        start = time.monotonic()
        await asyncio.gather(*(quota.acquire() for _ in range(4)))
        elapsed = time.monotonic() - start

        assert elapsed >= 0.15
        assert quota.get_metrics().total_requests == 4

    @pytest.mark.asyncio
    async def test_reset(self):
        quota = UpstreamQuota(max_requests=5, window=10.0)
        await quota.acquire()
        await quota.acquire()

        quota.reset()

        metrics = quota.get_metrics()
        assert isinstance(metrics, QuotaMetrics)
        assert metrics.requests_in_window == 0
        assert metrics.total_requests == 0
        assert metrics.total_wait_time == 0.0

    def test_shared_quota_is_singleton(self):
        assert get_shared_quota() is get_shared_quota()
