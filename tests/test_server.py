"""Tests for the FastAPI backend."""

import httpx
import pytest
from fastapi.testclient import TestClient

from speedsnapshot.database import LocalSqliteDatabase
from speedsnapshot.server import app, get_api_key, get_http_client, get_store


@pytest.fixture
def store(tmp_path):
    db = LocalSqliteDatabase(db_url=f"sqlite:///{tmp_path / 'server.db'}")
    yield db
    db.close()


@pytest.fixture
def upstream():
    """Records proxied requests; tests set ``upstream.reply``."""

    class Upstream:
        def __init__(self):
            self.requests = []
            self.reply = lambda request: httpx.Response(200, json={"lighthouseResult": {}})

        def __call__(self, request):
            self.requests.append(request)
            return self.reply(request)

    return Upstream()


@pytest.fixture
def client(store, upstream):
    async def http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as c:
            yield c

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_api_key] = lambda: "server-key"
    app.dependency_overrides[get_http_client] = http_client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestPsiProxy:

    def test_missing_url(self, client):
        response = client.get("/psi-proxy")
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid or missing URL"}

    def test_non_http_url(self, client):
        response = client.get("/psi-proxy", params={"url": "ftp://example.com"})
        assert response.status_code == 400

    def test_missing_api_key(self, client):
        app.dependency_overrides[get_api_key] = lambda: None
        response = client.get("/psi-proxy", params={"url": "https://example.com/"})
        assert response.status_code == 500
        assert response.json() == {"error": "Server not configured with API key"}

    def test_forwards_with_server_key(self, client, upstream):
        response = client.get(
            "/psi-proxy", params={"url": "https://example.com/", "strategy": "desktop"}
        )

        assert response.status_code == 200
        assert response.json() == {"lighthouseResult": {}}
        params = upstream.requests[0].url.params
        assert params["key"] == "server-key"
        assert params["strategy"] == "desktop"
        assert params["category"] == "performance"

    def test_upstream_status_passes_through(self, client, upstream):
        upstream.reply = lambda request: httpx.Response(
            429, json={"error": {"code": 429, "message": "Quota exceeded"}}
        )

        response = client.get("/psi-proxy", params={"url": "https://example.com/"})

        assert response.status_code == 429
        assert response.json()["error"]["message"] == "Quota exceeded"

    def test_upstream_unreachable(self, client, upstream):
        def refuse(request):
            raise httpx.ConnectError("Connection refused")

        upstream.reply = refuse

        response = client.get("/psi-proxy", params={"url": "https://example.com/"})

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "Upstream request failed"
        assert "Connection refused" in body["detail"]


class TestReports:

    def _payload(self, **overrides):
        payload = {
            "group_id": "1760691900000",
            "case_id": "261017090512",
            "url": "https://example.com/",
            "device": "mobile",
            "perf_with": 92,
            "perf_without": 61,
        }
        payload.update(overrides)
        return payload

    def test_save_and_fetch(self, client):
        saved = client.post("/save_report", json=self._payload())
        assert saved.status_code == 200
        body = saved.json()
        assert body["ok"] is True

        fetched = client.get("/get_report", params={"id": body["id"]})
        assert fetched.status_code == 200
        assert fetched.json()["perf_with"] == 92

    def test_save_requires_fields(self, client):
        response = client.post("/save_report", json=self._payload(url=None))
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing field: url"

    def test_unknown_id(self, client):
        response = client.get("/get_report", params={"id": 999})
        assert response.status_code == 404

    def test_group_lookup(self, client):
        client.post("/save_report", json=self._payload(device="mobile"))
        client.post("/save_report", json=self._payload(device="desktop"))

        response = client.get("/get_report", params={"group_id": "1760691900000"})

        assert response.status_code == 200
        assert [r["device"] for r in response.json()] == ["desktop", "mobile"]

    def test_root(self, client):
        assert client.get("/").json()["endpoints"] == ["/psi-proxy", "/save_report", "/get_report"]
