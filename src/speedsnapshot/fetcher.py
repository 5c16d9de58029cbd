"""
Smart fetch: one call that returns a PSI measurement or None.

Escalation order:
1. Direct call under the normal policy.
2. Target site blocks Lighthouse -> give up (no transport or delay helps).
3. Rate limited -> cool down, then one ultra-safe pass over URL variants
   under the safe policy, bounded by a hard ceiling.
4. Anything else -> browser-context proxy, then backend proxy.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from speedsnapshot.config import Config
from speedsnapshot.external.pagespeed_insights import (
    BackendProxyStrategy,
    BrowserProxyStrategy,
    DirectStrategy,
    TransportStrategy,
)
from speedsnapshot.infrastructure.failure_classifier import FailureClassifier, default_classifier
from speedsnapshot.infrastructure.retry import NORMAL_POLICY, SAFE_POLICY, run_with_policy
from speedsnapshot.models import FailureKind, FetchPolicy, MeasurementRequest, MeasurementResult
from speedsnapshot.utils.urls import add_query_param

logger = logging.getLogger(__name__)


def url_variants(url: str) -> List[str]:
    """URL forms tried by the ultra-safe pass; the added parameters are inert."""
    return [
        url,
        add_query_param(url, f"t={int(time.time() * 1000)}"),
        add_query_param(url, "v=1"),
    ]


class SmartFetcher:
    """Composes transport strategies, classifier and retry policies."""

    def __init__(
        self,
        direct: TransportStrategy,
        browser_proxy: Optional[TransportStrategy] = None,
        backend_proxy: Optional[TransportStrategy] = None,
        classifier: Optional[FailureClassifier] = None,
        normal_policy: FetchPolicy = NORMAL_POLICY,
        safe_policy: FetchPolicy = SAFE_POLICY,
        cooldown: float = 5.0,
        ultra_safe_delays: Sequence[float] = (20.0, 30.0, 40.0),
        ultra_safe_ceiling: float = 600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.direct = direct
        self.browser_proxy = browser_proxy
        self.backend_proxy = backend_proxy
        self.classifier = classifier or default_classifier
        self.normal_policy = normal_policy
        self.safe_policy = safe_policy
        self.cooldown = cooldown
        self.ultra_safe_delays = tuple(ultra_safe_delays)
        self.ultra_safe_ceiling = ultra_safe_ceiling
        self._sleep = sleep

        # Statistics
        self.ultra_safe_passes = 0
        self.total_fetches = 0
        self.failed_fetches = 0

    @classmethod
    def from_config(cls, config: Config) -> "SmartFetcher":
        """Build the standard three-strategy chain."""
        return cls(
            direct=DirectStrategy(locale=config.psi_locale),
            browser_proxy=BrowserProxyStrategy(
                proxy_url=config.client_proxy_url, locale=config.psi_locale
            ),
            backend_proxy=BackendProxyStrategy(
                endpoints=config.proxy_endpoints, locale=config.psi_locale
            ),
            cooldown=config.rate_limit_cooldown,
            ultra_safe_delays=config.ultra_safe_delays,
            ultra_safe_ceiling=config.ultra_safe_ceiling,
        )

    async def fetch(self, request: MeasurementRequest) -> Optional[MeasurementResult]:
        """
        Obtain a measurement, escalating only when it can help.

        Returns:
            MeasurementResult, or None when every applicable path failed.
            Never raises (task cancellation excepted).
        """
        self.total_fetches += 1
        try:
            result = await self._fetch(request)
        except Exception as e:
            error_msg = str(e) if str(e) else type(e).__name__
            logger.error(f"[PSI] Unexpected error fetching {request.target_url}: {error_msg}")
            result = None

        if result is None:
            self.failed_fetches += 1
        return result

    async def _fetch(self, request: MeasurementRequest) -> Optional[MeasurementResult]:
        outcome = await self._run(self.direct, request, self.normal_policy)
        if outcome.ok:
            return outcome.result

        if outcome.kind is FailureKind.UPSTREAM_BLOCKED:
            logger.info(
                f"[PSI] Website blocking detected for {request.target_url} - "
                f"skipping safe mode (won't help)"
            )
            return None

        if outcome.kind is FailureKind.RATE_LIMITED:
            logger.info(f"[PSI] Rate limiting detected for {request.target_url} - trying ultra-safe mode...")
            await self._sleep(self.cooldown)
            try:
                return await asyncio.wait_for(self._ultra_safe(request), self.ultra_safe_ceiling)
            except asyncio.TimeoutError:
                logger.warning(f"[PSI] Ultra-safe mode timed out for {request.target_url}")
                return None

        for fallback in (self.browser_proxy, self.backend_proxy):
            if fallback is None:
                continue
            logger.info(f"[PSI] Direct API failed for {request.target_url}, trying {fallback.name}...")
            outcome = await self._run(fallback, request, self.normal_policy)
            if outcome.ok:
                return outcome.result

        logger.info(f"[PSI] All approaches failed for {request.target_url} - skipping")
        return None

    async def _ultra_safe(self, request: MeasurementRequest) -> Optional[MeasurementResult]:
        """One pass over the URL variants under the safe policy."""
        self.ultra_safe_passes += 1
        variants = url_variants(request.target_url)

        for i, variant in enumerate(variants):
            if i < len(self.ultra_safe_delays):
                await self._sleep(self.ultra_safe_delays[i])

            logger.info(f"[PSI] Ultra-safe attempt {i + 1}/{len(variants)} with URL: {variant}")
            outcome = await self._run(self.direct, request.with_target(variant), self.safe_policy)
            if outcome.ok:
                return outcome.result

        return None

    async def _run(self, strategy: TransportStrategy, request: MeasurementRequest, policy: FetchPolicy):
        return await run_with_policy(
            strategy, request, policy, classifier=self.classifier, sleep=self._sleep
        )
