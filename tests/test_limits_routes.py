"""Tests for the administrative limits API and application lifecycle.

Configuration:
- conftest.py sets APP_ENV=testing and the API keys before any app imports
- Each test builds its own app with an injected clock-driven store
"""

import math
import threading
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.adapters.rate_limit.in_memory import InMemoryWindowCounterStore
from app.core.app_factory import create_app
from app.core.policies import resolve_policy


@pytest.fixture
def store(clock) -> InMemoryWindowCounterStore:
    return InMemoryWindowCounterStore(clock=clock)


@pytest.fixture
def app(store):
    return create_app(store=store)


@pytest.fixture
def client(app) -> Iterator[TestClient]:
    """Test client with the lifespan (and therefore the reaper) running."""
    with TestClient(app) as test_client:
        yield test_client


def _exhaust_login(app, identifier: str) -> None:
    engine = app.state.rate_limit_engine
    config = resolve_policy("auth.login")
    for _ in range(config.max):
        assert engine.check_limit(identifier, "login", config) is True


class TestAuthentication:
    def test_missing_api_key_is_forbidden(self, client: TestClient) -> None:
        response = client.get("/v1/limits/policies")

        assert response.status_code == 403

    def test_invalid_api_key_is_forbidden(self, client: TestClient) -> None:
        response = client.get("/v1/limits/policies", headers={"X-API-Key": "nope"})

        assert response.status_code == 403
        assert "Invalid or missing API key" in response.json()["detail"]


class TestPolicies:
    def test_lists_policy_table(self, client: TestClient, api_key_headers) -> None:
        response = client.get("/v1/limits/policies", headers=api_key_headers)

        assert response.status_code == 200
        policies = {p["name"]: p for p in response.json()}
        assert policies["auth.login"] == {
            "name": "auth.login",
            "policy_type": "login",
            "window_ms": 900_000,
            "max": 5,
        }
        assert len(policies) == 10

    def test_admin_routes_carry_rate_limit_headers(self, client: TestClient, api_key_headers) -> None:
        first = client.get("/v1/limits/policies", headers=api_key_headers)
        second = client.get("/v1/limits/policies", headers=api_key_headers)

        assert first.headers["X-RateLimit-Limit"] == "200"
        assert first.headers["X-RateLimit-Remaining"] == "199"
        assert second.headers["X-RateLimit-Remaining"] == "198"


class TestStatus:
    def test_status_without_history(self, client: TestClient, api_key_headers, clock) -> None:
        response = client.get(
            "/v1/limits/auth.login/status",
            params={"identifier": "1.2.3.4"},
            headers=api_key_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["policy"] == "auth.login"
        assert body["policy_type"] == "login"
        assert body["limit"] == 5
        assert body["remaining"] == 4
        assert body["reset_at"] == math.ceil((clock.current + 900_000) / 1000)
        assert body["violations"] == 0

    def test_status_is_read_only(self, client: TestClient, app, api_key_headers) -> None:
        app.state.rate_limit_engine.check_limit("1.2.3.4", "login", resolve_policy("auth.login"))

        bodies = [
            client.get(
                "/v1/limits/auth.login/status",
                params={"identifier": "1.2.3.4"},
                headers=api_key_headers,
            ).json()
            for _ in range(3)
        ]

        assert [b["remaining"] for b in bodies] == [4, 4, 4]

    def test_status_reports_exhausted_quota(self, client: TestClient, app, api_key_headers) -> None:
        _exhaust_login(app, "1.2.3.4")

        body = client.get(
            "/v1/limits/auth.login/status",
            params={"identifier": "1.2.3.4"},
            headers=api_key_headers,
        ).json()

        assert body["remaining"] == 0

    def test_unknown_policy_returns_400(self, client: TestClient, api_key_headers) -> None:
        response = client.get(
            "/v1/limits/auth.teleport/status",
            params={"identifier": "1.2.3.4"},
            headers=api_key_headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "unknown_rate_limit_policy"
        assert "request_id" in error

    def test_identifier_is_required(self, client: TestClient, api_key_headers) -> None:
        response = client.get("/v1/limits/auth.login/status", headers=api_key_headers)

        assert response.status_code == 422


class TestClear:
    def test_clear_restores_quota(self, client: TestClient, app, api_key_headers) -> None:
        _exhaust_login(app, "1.2.3.4")

        response = client.delete("/v1/limits/auth.login/1.2.3.4", headers=api_key_headers)

        assert response.status_code == 200
        assert response.json() == {
            "policy": "auth.login",
            "policy_type": "login",
            "cleared": True,
            "include_violations": False,
        }
        engine = app.state.rate_limit_engine
        assert engine.check_limit("1.2.3.4", "login", resolve_policy("auth.login")) is True

    def test_clear_with_violations(self, client: TestClient, app, api_key_headers) -> None:
        engine = app.state.rate_limit_engine
        config = resolve_policy("auth.login")
        for _ in range(config.max + 1):
            engine.check_progressive_limit("1.2.3.4", "login", config)
        assert engine.get_violation_count("1.2.3.4", "login") == 1

        response = client.delete(
            "/v1/limits/auth.login/1.2.3.4",
            params={"include_violations": "true"},
            headers=api_key_headers,
        )

        assert response.json()["cleared"] is True
        assert engine.get_violation_count("1.2.3.4", "login") == 0

    def test_clear_unknown_identifier(self, client: TestClient, api_key_headers) -> None:
        response = client.delete("/v1/limits/auth.login/9.9.9.9", headers=api_key_headers)

        assert response.status_code == 200
        assert response.json()["cleared"] is False


class TestLifecycle:
    def test_stats_reports_store_and_reaper(self, client: TestClient, api_key_headers) -> None:
        response = client.get("/v1/limits/stats", headers=api_key_headers)

        assert response.status_code == 200
        body = response.json()
        # the admin guard's own counter for this client
        assert body["entries"] == 1
        assert body["reaper_running"] is True
        assert body["sweep_interval_seconds"] == 300.0

    def test_reaper_stops_on_shutdown(self, app) -> None:
        with TestClient(app) as test_client:
            assert test_client.get("/health").json() == {"status": "ok", "reaper": "running"}
            assert app.state.rate_limit_reaper.is_running

        assert app.state.rate_limit_reaper.is_running is False

    def test_reaper_is_stopped_off_the_event_loop(self, app, monkeypatch) -> None:
        reaper = app.state.rate_limit_reaper
        threads = {}
        original_start, original_stop = reaper.start, reaper.stop

        def recording_start() -> None:
            threads["start"] = threading.current_thread()
            original_start()

        def recording_stop() -> None:
            threads["stop"] = threading.current_thread()
            original_stop()

        monkeypatch.setattr(reaper, "start", recording_start)
        monkeypatch.setattr(reaper, "stop", recording_stop)

        with TestClient(app):
            pass

        assert threads["stop"] is not threads["start"]
        assert reaper.is_running is False

    def test_health_without_lifespan_is_degraded(self, app) -> None:
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_each_app_owns_its_store(self) -> None:
        first = create_app()
        second = create_app()

        assert first.state.rate_limit_engine.store is not second.state.rate_limit_engine.store

    def test_openapi_documents_security_and_429(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert "ApiKeyAuth" in schema["components"]["securitySchemes"]
        operation = schema["paths"]["/v1/limits/policies"]["get"]
        assert operation["security"] == [{"ApiKeyAuth": []}]
        assert "429" in operation["responses"]
        assert "security" not in schema["paths"]["/health"]["get"]
