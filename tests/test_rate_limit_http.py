"""End-to-end tests for rate limited routes through the FastAPI app."""

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from corpusguard.app.core.config import Settings
from corpusguard.app.exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    UnknownPresetError,
)
from corpusguard.app.main import create_app
from corpusguard.app.middleware.rate_limit import RateLimit
from corpusguard.app.services.rate_limit.store import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    SlidingWindowStore,
)


class UnreachableStore(SlidingWindowStore):
    """Store that behaves like a Redis server that is down."""

    backend_name = "redis"

    async def check_and_record(self, key, now_ms, window_ms, limit):
        raise BackendUnavailableError("check_and_record", "Connection refused")

    async def ping(self) -> bool:
        raise BackendUnavailableError("ping", "Connection refused")

    async def clear(self, pattern: str) -> int:
        raise BackendUnavailableError("clear", "Connection refused")


def build_app(store):
    app = create_app(config=Settings(_env_file=None, redis_url=""), store=store)
    app.state.summaries = 0

    @app.post("/api/summary", dependencies=[Depends(RateLimit("summary"))])
    async def summarize():
        app.state.summaries += 1
        return {"summary": "ok"}

    return app


@pytest.fixture
def app():
    return build_app(InMemorySlidingWindowStore())


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


CLIENT_A = {"X-Forwarded-For": "203.0.113.7"}
CLIENT_B = {"X-Forwarded-For": "198.51.100.2"}


class TestProtectedRoute:

    def test_admitted_response_carries_headers(self, client):
        response = client.post("/api/summary", headers=CLIENT_A)

        assert response.status_code == 200
        assert response.json() == {"summary": "ok"}
        assert response.headers["x-ratelimit-limit"] == "2"
        assert response.headers["x-ratelimit-remaining"] == "1"
        assert int(response.headers["x-ratelimit-reset"]) > 0

    def test_burst_denial(self, client, app):
        client.post("/api/summary", headers=CLIENT_A)
        client.post("/api/summary", headers=CLIENT_A)

        response = client.post("/api/summary", headers=CLIENT_A)

        assert response.status_code == 429
        assert 0 < int(response.headers["retry-after"]) <= 60
        assert response.headers["x-ratelimit-limit"] == "2"
        assert response.headers["x-ratelimit-remaining"] == "0"

        body = response.json()
        assert set(body) == {"error", "retryAfter", "resetAt", "limit", "remaining"}
        assert body["error"].startswith("Too many requests in quick succession")
        assert body["limit"] == 2
        assert body["remaining"] == 0
        assert body["resetAt"].endswith("Z")

        # The denied request never reached the handler
        assert app.state.summaries == 2

    def test_clients_are_isolated(self, client):
        client.post("/api/summary", headers=CLIENT_A)
        client.post("/api/summary", headers=CLIENT_A)
        assert client.post("/api/summary", headers=CLIENT_A).status_code == 429

        assert client.post("/api/summary", headers=CLIENT_B).status_code == 200

    def test_anonymous_callers_share_a_budget(self, client):
        client.post("/api/summary")
        client.post("/api/summary", headers={"X-Forwarded-For": "garbage value"})
        assert client.post("/api/summary").status_code == 429

    def test_real_ip_header(self, client):
        for _ in range(2):
            client.post("/api/summary", headers={"X-Real-IP": "192.0.2.1"})
        assert client.post("/api/summary", headers={"X-Real-IP": "192.0.2.1"}).status_code == 429
        assert client.post("/api/summary", headers=CLIENT_A).status_code == 200

    def test_unknown_preset_rejected_at_declaration(self):
        with pytest.raises(UnknownPresetError):
            RateLimit("nope")


class TestStoreUnavailable:

    @pytest.fixture
    def client(self):
        with TestClient(build_app(UnreachableStore())) as client:
            yield client

    def test_expensive_route_fails_closed(self, client):
        response = client.post("/api/summary", headers=CLIENT_A)

        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert "temporarily unavailable" in response.json()["error"]

    def test_lightweight_route_fails_open(self, client):
        response = client.get("/v1/limits", headers=CLIENT_A)

        assert response.status_code == 200
        assert "x-ratelimit-remaining" not in response.headers

    def test_health_reports_degraded(self, client):
        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["components"]["store"]["status"] == "error"
        assert data["components"]["store"]["type"] == "redis"
        assert len(data["components"]["store"]["error"]) <= 100

    def test_failures_visible_in_metrics(self, client):
        client.post("/api/summary", headers=CLIENT_A)
        client.get("/v1/limits", headers=CLIENT_A)

        metrics = client.get("/metrics").text
        assert (
            'ratelimit_backend_failures_total{preset="expensive-operation",policy="closed"} 1'
            in metrics
        )
        assert (
            'ratelimit_backend_failures_total{preset="lightweight-operation",policy="open"} 1'
            in metrics
        )


class TestOperationalEndpoints:

    def test_health_ok(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "components": {"store": {"status": "ok", "type": "memory"}},
        }

    def test_health_reports_redis_backend(self, mock_redis):
        with TestClient(build_app(RedisSlidingWindowStore(mock_redis))) as client:
            data = client.get("/health").json()

        assert data["components"]["store"] == {"status": "ok", "type": "redis"}

    def test_limits_listing(self, client):
        response = client.get("/v1/limits", headers=CLIENT_A)

        assert response.status_code == 200
        assert response.headers["x-ratelimit-limit"] == "50"
        data = response.json()
        assert data["object"] == "list"

        by_name = {entry["name"]: entry for entry in data["data"]}
        assert set(by_name) == {
            "expensive-operation",
            "quota-limited-operation",
            "resource-intensive-operation",
            "lightweight-operation",
        }
        assert by_name["expensive-operation"]["quota"] == {"limit": 10, "window_ms": 3_600_000}
        assert by_name["expensive-operation"]["burst"] == {"limit": 2, "window_ms": 60_000}
        assert by_name["expensive-operation"]["failure_policy"] == "closed"
        assert by_name["lightweight-operation"]["burst"] is None
        assert by_name["lightweight-operation"]["failure_policy"] == "open"

    def test_denials_visible_in_metrics(self, client):
        for _ in range(3):
            client.post("/api/summary", headers=CLIENT_A)

        metrics = client.get("/metrics").text
        assert 'ratelimit_checks_total{preset="expensive-operation"} 3' in metrics
        assert 'ratelimit_denied_total{preset="expensive-operation",tier="burst"} 1' in metrics

        stats = client.get("/stats").json()
        assert stats["endpoints"]["/api/summary"]["throttled"] == 1


class TestStartup:

    def test_missing_redis_url_prevents_startup(self):
        app = create_app(config=Settings(_env_file=None, redis_url=""))

        with pytest.raises(ConfigurationError):
            with TestClient(app):
                pass

    def test_shutdown_closes_store(self):
        store = InMemorySlidingWindowStore()
        closed = []

        async def close():
            closed.append(True)

        store.close = close
        with TestClient(build_app(store)):
            pass

        assert closed == [True]
