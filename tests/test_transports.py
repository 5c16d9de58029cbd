"""Tests for the PSI transport strategies."""

import asyncio

import httpx
import pytest

pytest_plugins = ('pytest_asyncio',)

from speedsnapshot.external.pagespeed_insights import (
    API_URL,
    BackendProxyStrategy,
    BrowserProxyStrategy,
    DirectStrategy,
    build_query,
    parse_response,
)
from speedsnapshot.infrastructure.rate_limiter import UpstreamQuota
from speedsnapshot.models import DeviceStrategy, MeasurementRequest


@pytest.fixture
def mobile_request():
    return MeasurementRequest("https://example.com/", DeviceStrategy.MOBILE, api_key="secret")


def _direct(handler, **kwargs):
    return DirectStrategy(
        http_transport=httpx.MockTransport(handler),
        quota=UpstreamQuota(max_requests=100, window=1.0),
        **kwargs,
    )


class TestParsing:

    def test_build_query(self, mobile_request):
        params = build_query(mobile_request, locale="de")
        assert params == {
            'url': "https://example.com/",
            'strategy': "mobile",
            'key': "secret",
            'category': "performance",
            'locale': "de",
        }

    def test_build_query_without_key(self):
        request = MeasurementRequest("https://example.com/", DeviceStrategy.DESKTOP)
        assert 'key' not in build_query(request)

    def test_parse_response(self, psi_payload, mobile_request):
        result = parse_response(psi_payload, mobile_request)

        assert result.performance_score == 87.5
        assert result.timing_metrics['fcp'] == 1234
        assert result.timing_metrics['lcp'] == 2500
        assert result.timing_metrics['tbt'] == 150
        assert result.timing_metrics['cls'] == 0.012
        assert result.final_url == "https://example.com/"
        assert result.strategy == "mobile"
        assert result.lighthouse_version == "12.0.0"

    def test_parse_response_without_lighthouse(self, mobile_request):
        assert parse_response({"id": "x"}, mobile_request) is None
        assert parse_response([], mobile_request) is None

    def test_parse_response_missing_score(self, psi_payload, mobile_request):
        psi_payload['lighthouseResult']['categories'] = {}
        result = parse_response(psi_payload, mobile_request)
        assert result.performance_score is None


class TestDirectStrategy:

    @pytest.mark.asyncio
    async def test_success(self, psi_payload, mobile_request):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=psi_payload)

        outcome = await _direct(handler).attempt(mobile_request, timeout=5)

        assert outcome.ok
        assert outcome.result.performance_score == 87.5
        sent = seen[0]
        assert str(sent.url).startswith(API_URL)
        assert sent.url.params['key'] == "secret"
        assert sent.url.params['category'] == "performance"
        assert "Google-PSI" in sent.headers['User-Agent']
        assert sent.headers['Cache-Control'] == "no-cache"

    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_detail(self, mobile_request):
        def handler(request):
            return httpx.Response(429, json={"error": {"code": 429, "message": "Quota exceeded"}})

        outcome = await _direct(handler).attempt(mobile_request, timeout=5)

        assert not outcome.ok
        assert outcome.status_code == 429
        assert outcome.message == "HTTP 429 Too Many Requests :: Quota exceeded"

    @pytest.mark.asyncio
    async def test_non_json_error_body_is_truncated(self, mobile_request):
        def handler(request):
            return httpx.Response(500, text="x" * 500)

        outcome = await _direct(handler).attempt(mobile_request, timeout=5)

        assert outcome.message == "HTTP 500 Internal Server Error :: " + "x" * 200

    @pytest.mark.asyncio
    async def test_malformed_body(self, mobile_request):
        def handler(request):
            return httpx.Response(200, text="<html>not json</html>")

        outcome = await _direct(handler).attempt(mobile_request, timeout=5)

        assert not outcome.ok
        assert outcome.message == "Malformed PSI response: body is not JSON"

    @pytest.mark.asyncio
    async def test_missing_lighthouse_result(self, mobile_request):
        def handler(request):
            return httpx.Response(200, json={"id": "https://example.com/"})

        outcome = await _direct(handler).attempt(mobile_request, timeout=5)

        assert outcome.message == "Malformed PSI response: missing lighthouseResult"

    @pytest.mark.asyncio
    async def test_timeout_cancels_attempt(self, psi_payload, mobile_request):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json=psi_payload)

        outcome = await _direct(handler).attempt(mobile_request, timeout=0.05)

        assert not outcome.ok
        assert outcome.message == "Timed out after 0.05s"
        assert outcome.status_code is None

    @pytest.mark.asyncio
    async def test_connection_error(self, mobile_request):
        def handler(request):
            raise httpx.ConnectError("Connection refused")

        outcome = await _direct(handler).attempt(mobile_request, timeout=5)

        assert not outcome.ok
        assert "Connection refused" in outcome.message

    @pytest.mark.asyncio
    async def test_acquires_quota(self, psi_payload, mobile_request):
        quota = UpstreamQuota(max_requests=100, window=10.0)
        strategy = DirectStrategy(
            http_transport=httpx.MockTransport(lambda r: httpx.Response(200, json=psi_payload)),
            quota=quota,
        )

        await strategy.attempt(mobile_request, timeout=5)
        await strategy.attempt(mobile_request, timeout=5)

        assert quota.get_metrics().total_requests == 2


class TestBrowserProxyStrategy:

    @pytest.mark.asyncio
    async def test_sends_browser_headers(self, psi_payload, mobile_request):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=psi_payload)

        strategy = BrowserProxyStrategy(
            http_transport=httpx.MockTransport(handler),
            quota=UpstreamQuota(),
        )
        outcome = await strategy.attempt(mobile_request, timeout=5)

        assert outcome.ok
        assert strategy.name == "PSI-CLIENT-PROXY"
        assert seen[0].headers['Referer'] == "https://developers.google.com/speed/pagespeed/insights/"
        assert seen[0].headers['Accept'] == "application/json"


class TestBackendProxyStrategy:

    @pytest.mark.asyncio
    async def test_first_successful_endpoint_wins(self, psi_payload, mobile_request):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if request.url.host == "down.example":
                return httpx.Response(502, json={"error": "Upstream request failed"})
            return httpx.Response(200, json=psi_payload)

        strategy = BackendProxyStrategy(
            endpoints=["http://down.example/psi-proxy", "http://up.example/psi-proxy"],
            http_transport=httpx.MockTransport(handler),
        )
        outcome = await strategy.attempt(mobile_request, timeout=5)

        assert outcome.ok
        assert hosts == ["down.example", "up.example"]

    @pytest.mark.asyncio
    async def test_never_sends_api_key(self, psi_payload, mobile_request):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=psi_payload)

        strategy = BackendProxyStrategy(
            endpoints=["http://proxy.example/psi-proxy"],
            http_transport=httpx.MockTransport(handler),
        )
        await strategy.attempt(mobile_request, timeout=5)

        params = seen[0].url.params
        assert 'key' not in params
        assert params['url'] == "https://example.com/"
        assert params['strategy'] == "mobile"

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, mobile_request):
        def handler(request):
            if request.url.host == "a.example":
                raise httpx.ConnectError("refused")
            return httpx.Response(503, json={"error": {"message": "busy"}})

        strategy = BackendProxyStrategy(
            endpoints=["http://a.example/psi-proxy", "http://b.example/psi-proxy"],
            http_transport=httpx.MockTransport(handler),
        )
        outcome = await strategy.attempt(mobile_request, timeout=5)

        assert not outcome.ok
        assert outcome.message.startswith("All proxy endpoints failed. Last error: HTTP 503")
        assert outcome.status_code == 503

    @pytest.mark.asyncio
    async def test_no_endpoints(self, mobile_request):
        strategy = BackendProxyStrategy(endpoints=[])
        outcome = await strategy.attempt(mobile_request, timeout=5)
        assert outcome.message == "No backend proxy endpoints configured"
