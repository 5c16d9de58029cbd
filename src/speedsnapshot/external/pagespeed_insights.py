"""
Google PageSpeed Insights transport strategies.

Three interchangeable ways to obtain a Lighthouse performance run for a URL:

- DirectStrategy: call the PSI API from this process, with headers that
  mimic the official PSI web client.
- BrowserProxyStrategy: the same query issued through the end user's network
  context (a forward proxy) with fewer custom headers.
- BackendProxyStrategy: ask a trusted backend (see ``speedsnapshot.server``)
  that holds the API key to re-issue the call.

API Documentation: https://developers.google.com/speed/docs/insights/v5/get-started

Rate Limits:
- 400 requests per 100 seconds
- 25,000 requests per day (free tier)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from speedsnapshot.infrastructure.rate_limiter import UpstreamQuota, get_shared_quota
from speedsnapshot.models import (
    AttemptOutcome,
    Failure,
    MeasurementRequest,
    MeasurementResult,
    Success,
)

logger = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
PSI_USER_AGENT = (
    "Mozilla/5.0 (compatible; Google-PSI/1.0; "
    "+https://developers.google.com/speed/pagespeed/insights/)"
)
PSI_REFERER = "https://developers.google.com/speed/pagespeed/insights/"

DIRECT_HEADERS = {
    'User-Agent': PSI_USER_AGENT,
    'Accept': 'application/json, text/plain, */*',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate, br',
    'Cache-Control': 'no-cache',
    'Pragma': 'no-cache',
}

BROWSER_HEADERS = {
    'User-Agent': PSI_USER_AGENT,
    'Accept': 'application/json',
    'Accept-Language': 'en-US,en;q=0.9',
    'Referer': PSI_REFERER,
}

# Lighthouse audit id -> metric name
TIMING_AUDITS = {
    'fcp': 'first-contentful-paint',
    'lcp': 'largest-contentful-paint',
    'si': 'speed-index',
    'tti': 'interactive',
    'tbt': 'total-blocking-time',
}


def build_query(request: MeasurementRequest, locale: str = "en") -> Dict[str, str]:
    """Query parameters for a performance-only PSI run."""
    params = {
        'url': request.target_url,
        'strategy': request.strategy.value,
    }
    if request.api_key:
        params['key'] = request.api_key
    params['category'] = 'performance'
    params['locale'] = locale
    return params


def parse_response(data: Dict[str, Any], request: MeasurementRequest) -> Optional[MeasurementResult]:
    """
    Parse a PageSpeed Insights API response.

    Args:
        data: Raw API response
        request: The request that produced it

    Returns:
        MeasurementResult, or None when the payload has no Lighthouse result
    """
    if not isinstance(data, dict):
        return None
    lighthouse = data.get('lighthouseResult')
    if not isinstance(lighthouse, dict):
        return None

    categories = lighthouse.get('categories', {})
    audits = lighthouse.get('audits', {})

    metrics: Dict[str, float] = {}
    for name, audit_id in TIMING_AUDITS.items():
        value = _extract_metric_ms(audits.get(audit_id))
        if value is not None:
            metrics[name] = value
    cls = _extract_cls(audits.get('cumulative-layout-shift'))
    if cls is not None:
        metrics['cls'] = cls

    return MeasurementResult(
        performance_score=_extract_score(categories.get('performance')),
        timing_metrics=metrics,
        final_url=lighthouse.get('finalUrl') or data.get('id') or "(n/a)",
        raw_payload=data,
        strategy=request.strategy.value,
        requested_url=lighthouse.get('requestedUrl') or request.target_url,
        fetch_time=lighthouse.get('fetchTime'),
        lighthouse_version=lighthouse.get('lighthouseVersion'),
    )


def _extract_score(category: Optional[Dict]) -> Optional[float]:
    """Extract score from category (convert 0-1 to 0-100)"""
    if not category or 'score' not in category:
        return None
    score = category['score']
    if score is None:
        return None
    return round(score * 100, 1)


def _extract_metric_ms(audit: Optional[Dict]) -> Optional[int]:
    """Extract metric value in milliseconds"""
    if not audit or audit.get('numericValue') is None:
        return None
    return int(audit['numericValue'])


def _extract_cls(audit: Optional[Dict]) -> Optional[float]:
    """Extract CLS score (already in correct scale)"""
    if not audit or audit.get('numericValue') is None:
        return None
    return round(audit['numericValue'], 3)


def _error_detail(response: httpx.Response) -> str:
    """PSI error message from the body, else the first 200 characters."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get('error')
        if isinstance(error, dict) and error.get('message'):
            return str(error['message'])
        if isinstance(error, str):
            return error
    return response.text[:200]


class TransportStrategy(ABC):
    """
    One way of reaching the upstream analysis API.

    ``attempt`` enforces its own deadline by cancelling the in-flight call
    and always closes the HTTP client it opened.
    """

    name = "PSI"

    def __init__(
        self,
        locale: str = "en",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            locale: Locale for results (default: 'en')
            http_transport: Custom httpx transport (used for mocking)
        """
        self.locale = locale
        self.http_transport = http_transport

    async def attempt(self, request: MeasurementRequest, timeout: float) -> AttemptOutcome:
        """
        Make a single attempt.

        Args:
            request: Measurement to obtain
            timeout: Deadline for this attempt (seconds)

        Returns:
            Success or Failure; transport errors never raise
        """
        await self._before_attempt()
        try:
            return await asyncio.wait_for(self._attempt(request), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] Timeout analyzing {request.target_url} (>{timeout:g}s)")
            return Failure(f"Timed out after {timeout:g}s")
        except httpx.HTTPError as e:
            error_msg = str(e) if str(e) else type(e).__name__
            return Failure(error_msg)

    async def _before_attempt(self) -> None:
        pass

    @abstractmethod
    async def _attempt(self, request: MeasurementRequest) -> AttemptOutcome:
        ...

    def _client(self, **kwargs) -> httpx.AsyncClient:
        # The deadline is enforced by attempt(); httpx must not race it.
        return httpx.AsyncClient(timeout=None, transport=self.http_transport, **kwargs)

    def _to_outcome(self, response: httpx.Response, request: MeasurementRequest) -> AttemptOutcome:
        """Convert an HTTP response into an attempt outcome."""
        if not response.is_success:
            detail = _error_detail(response)
            snippet = f" :: {detail}" if detail else ""
            return Failure(
                f"HTTP {response.status_code} {response.reason_phrase}{snippet}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            return Failure("Malformed PSI response: body is not JSON", status_code=response.status_code)

        result = parse_response(data, request)
        if result is None:
            return Failure(
                "Malformed PSI response: missing lighthouseResult",
                status_code=response.status_code,
            )

        logger.info(
            f"[{self.name}] {request.strategy.value.upper()} {request.target_url}: "
            f"Performance={result.performance_score}, LCP={result.timing_metrics.get('lcp')}ms"
        )
        return Success(result)


class DirectStrategy(TransportStrategy):
    """Call PSI from this process with official-client headers."""

    name = "PSI"
    headers = DIRECT_HEADERS

    def __init__(
        self,
        locale: str = "en",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        quota: Optional[UpstreamQuota] = None,
        api_url: str = API_URL,
    ):
        super().__init__(locale=locale, http_transport=http_transport)
        self.quota = quota or get_shared_quota()
        self.api_url = api_url

    async def _before_attempt(self) -> None:
        await self.quota.acquire()

    async def _attempt(self, request: MeasurementRequest) -> AttemptOutcome:
        params = build_query(request, self.locale)
        async with self._client() as client:
            logger.info(f"[{self.name}] Analyzing {request.target_url} ({request.strategy.value})")
            response = await client.get(self.api_url, params=params, headers=self.headers)
            return self._to_outcome(response, request)


class BrowserProxyStrategy(DirectStrategy):
    """
    Issue the PSI query from the end user's network context.

    Used when this process's own egress is refused but the user's is not.
    ``proxy_url`` points at a forward proxy in that context; without it the
    request goes out directly with browser-style headers.
    """

    name = "PSI-CLIENT-PROXY"
    headers = BROWSER_HEADERS

    def __init__(
        self,
        proxy_url: Optional[str] = None,
        locale: str = "en",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        quota: Optional[UpstreamQuota] = None,
        api_url: str = API_URL,
    ):
        super().__init__(locale=locale, http_transport=http_transport, quota=quota, api_url=api_url)
        self.proxy_url = proxy_url

    def _client(self, **kwargs) -> httpx.AsyncClient:
        if self.proxy_url and self.http_transport is None:
            kwargs['proxy'] = self.proxy_url
        return super()._client(**kwargs)


class BackendProxyStrategy(TransportStrategy):
    """
    Forward the request to a trusted backend that holds the API key.

    Endpoints are tried in order and the first one that answers with a
    success status wins. The API key is never sent.
    """

    name = "PSI-PROXY"

    def __init__(
        self,
        endpoints: List[str],
        locale: str = "en",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(locale=locale, http_transport=http_transport)
        self.endpoints = list(endpoints)

    async def _attempt(self, request: MeasurementRequest) -> AttemptOutcome:
        if not self.endpoints:
            return Failure("No backend proxy endpoints configured")

        params = {'url': request.target_url, 'strategy': request.strategy.value}
        last_error = None

        async with self._client() as client:
            for endpoint in self.endpoints:
                try:
                    response = await client.get(
                        endpoint, params=params, headers={'Accept': 'application/json'}
                    )
                except httpx.HTTPError as e:
                    last_error = Failure(f"{endpoint}: {str(e) or type(e).__name__}")
                    logger.debug(f"[{self.name}] {endpoint} unreachable: {last_error.message}")
                    continue

                outcome = self._to_outcome(response, request)
                if response.is_success:
                    return outcome
                last_error = outcome

        return Failure(
            f"All proxy endpoints failed. Last error: {last_error.message}",
            status_code=last_error.status_code,
        )
