"""HTTP tests for the throttled status route, admin reset and health check."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from ratekeeper.adapters.rate_limit.registry import RateLimitPolicy
from ratekeeper.core.app_factory import cleanup_loop, create_app
from ratekeeper.core.config import AppSettings, DatabaseSettings, LogSettings, RateLimitSettings, Settings
from ratekeeper.core.errors import StorageAppError

START = 1_700_000_000.0
ADMIN_HEADERS = {"X-API-Key": "test-api-key-123"}


def _build_client(tmp_path: Path, clock: Mock, *, app=None, log=None, **rate_limit_overrides) -> TestClient:
    overrides = {"default_max_requests": 2, "default_window_seconds": 60, **rate_limit_overrides}
    sections = {"app": app, "log": log}
    app_settings = Settings(
        db=DatabaseSettings(url=f"sqlite:///{tmp_path / 'routes.db'}"),
        rate_limit=RateLimitSettings(**overrides),
        **{name: section for name, section in sections.items() if section is not None},
    )
    return TestClient(create_app(app_settings, clock=clock))


@pytest.fixture
def client(tmp_path: Path, clock: Mock) -> TestClient:
    return _build_client(tmp_path, clock)


class TestThrottledRoute:
    def test_success_carries_rate_limit_headers(self, client: TestClient) -> None:
        response = client.get("/v1/rate-limits/strict/login")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert response.headers["X-RateLimit-Reset"] == str(int(START) + 60)

    def test_blocks_with_429_and_retry_after(self, client: TestClient) -> None:
        assert client.get("/v1/rate-limits/strict/login").status_code == 200
        assert client.get("/v1/rate-limits/strict/login").status_code == 200

        blocked = client.get("/v1/rate-limits/strict/login")

        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "60"
        assert blocked.headers["X-RateLimit-Limit"] == "2"
        assert blocked.headers["X-RateLimit-Remaining"] == "0"
        assert blocked.headers["X-RateLimit-Reset"] == str(int(START) + 60)
        error = blocked.json()["error"]
        assert error["code"] == "rate_limit_exceeded"
        assert error["message"] == "Too many requests. Please try again later."
        assert error["details"]["retry_after"] == 60
        assert error["details"]["policy"] == "default"

    def test_window_rolls_over_after_expiry(self, client: TestClient, clock: Mock) -> None:
        client.get("/v1/rate-limits/strict/login")
        client.get("/v1/rate-limits/strict/login")
        assert client.get("/v1/rate-limits/strict/login").status_code == 429

        clock.return_value = START + 61

        response = client.get("/v1/rate-limits/strict/login")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_headers_can_be_disabled(self, tmp_path: Path, clock: Mock) -> None:
        client = _build_client(tmp_path, clock, include_headers=False)
        assert "X-RateLimit-Limit" not in client.get("/v1/rate-limits/strict/login").headers
        client.get("/v1/rate-limits/strict/login")

        blocked = client.get("/v1/rate-limits/strict/login")

        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "60"
        assert "X-RateLimit-Limit" not in blocked.headers

    def test_disabled_rate_limiting_lets_everything_through(self, tmp_path: Path, clock: Mock) -> None:
        client = _build_client(tmp_path, clock, enabled=False, default_max_requests=1)

        responses = [client.get("/v1/rate-limits/strict/login") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert all("X-RateLimit-Limit" not in r.headers for r in responses)

    def test_forwarded_for_ignored_by_default(self, client: TestClient) -> None:
        for spoofed in ("198.51.100.1", "198.51.100.2"):
            client.get("/v1/rate-limits/strict/login", headers={"X-Forwarded-For": spoofed})
        blocked = client.get("/v1/rate-limits/strict/login", headers={"X-Forwarded-For": "198.51.100.3"})

        assert blocked.status_code == 429
        registry = client.app.state.rate_limiters
        assert registry.get("default").check("rate-limits:testclient").remaining == 0

    def test_clients_are_separated_by_trusted_forwarded_for(self, tmp_path: Path, clock: Mock) -> None:
        client = _build_client(tmp_path, clock, app=AppSettings(trust_forwarded_for=True))
        first = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
        other = {"X-Forwarded-For": "198.51.100.2"}

        assert client.get("/v1/rate-limits/strict/login", headers=first).status_code == 200
        assert client.get("/v1/rate-limits/strict/login", headers=first).status_code == 200
        assert client.get("/v1/rate-limits/strict/login", headers=first).status_code == 429
        assert client.get("/v1/rate-limits/strict/login", headers=other).status_code == 200

        registry = client.app.state.rate_limiters
        assert registry.get("default").check("rate-limits:203.0.113.7").remaining == 0

    def test_storage_failure_returns_500(self, client: TestClient, monkeypatch) -> None:
        failure = StorageAppError(code="rate_limit_storage_unavailable", message="Rate limit storage is unavailable")
        monkeypatch.setattr(client.app.state.rate_limiters.store, "find_one", Mock(side_effect=failure))

        response = client.get("/v1/rate-limits/strict/login")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "rate_limit_storage_unavailable"


class TestStatusEndpoint:
    def test_reports_without_consuming(self, client: TestClient, clock: Mock) -> None:
        client.app.state.rate_limiters.get("strict").consume("login:testclient")

        for _ in range(2):
            body = client.get("/v1/rate-limits/strict/login").json()
            assert body == {
                "policy": "strict",
                "scope": "login",
                "limit": 10,
                "remaining": 9,
                "reset": int(START) + 60,
                "window_seconds": 60,
            }

    def test_fresh_scope_reports_full_quota(self, client: TestClient) -> None:
        body = client.get("/v1/rate-limits/auth/signup").json()

        assert body["limit"] == 20
        assert body["remaining"] == 20
        assert body["window_seconds"] == 900
        assert client.app.state.rate_limiters.store.find_one("rate_limit:auth:signup:testclient") is None

    def test_sub_second_policy_reports_one_second_window(self, client: TestClient) -> None:
        client.app.state.rate_limiters.get_or_create("burst", RateLimitPolicy(max_requests=5, window_ms=500))

        body = client.get("/v1/rate-limits/burst/upload").json()

        assert body["limit"] == 5
        assert body["window_seconds"] == 1

    def test_unknown_policy_returns_404(self, client: TestClient) -> None:
        response = client.get("/v1/rate-limits/bogus/login")

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "unknown_rate_limit_policy"
        assert error["details"]["policy"] == "bogus"


class TestAdminReset:
    def test_requires_api_key(self, client: TestClient) -> None:
        response = client.delete("/v1/rate-limits/strict/login", params={"client": "1.2.3.4"})
        assert response.status_code == 403

    def test_rejects_invalid_api_key(self, client: TestClient) -> None:
        response = client.delete(
            "/v1/rate-limits/strict/login",
            params={"client": "1.2.3.4"},
            headers={"X-API-Key": "wrong-key"},
        )
        assert response.status_code == 403

    def test_requires_client(self, client: TestClient) -> None:
        response = client.delete("/v1/rate-limits/strict/login", headers=ADMIN_HEADERS)
        assert response.status_code == 422

    def test_reset_clears_window(self, client: TestClient) -> None:
        client.get("/v1/rate-limits/strict/login")
        client.get("/v1/rate-limits/strict/login")
        assert client.get("/v1/rate-limits/strict/login").status_code == 429

        response = client.delete(
            "/v1/rate-limits/default/rate-limits",
            params={"client": "testclient"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 204
        assert response.content == b""
        assert client.get("/v1/rate-limits/strict/login").status_code == 200

    def test_reset_of_unknown_client_is_a_no_op(self, client: TestClient) -> None:
        response = client.delete(
            "/v1/rate-limits/auth/login",
            params={"client": "192.0.2.1"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 204

    def test_reset_unknown_policy_returns_404(self, client: TestClient) -> None:
        response = client.delete(
            "/v1/rate-limits/bogus/login",
            params={"client": "192.0.2.1"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 404

    def test_accepts_keys_configured_on_the_app(self, tmp_path: Path, clock: Mock) -> None:
        client = _build_client(tmp_path, clock, app=AppSettings(api_key_required=True, api_keys="ops-only"))
        params = {"client": "192.0.2.1"}

        assert client.delete("/v1/rate-limits/auth/login", params=params, headers=ADMIN_HEADERS).status_code == 403
        assert (
            client.delete("/v1/rate-limits/auth/login", params=params, headers={"X-API-Key": "ops-only"}).status_code
            == 204
        )


class TestRequestIdHeader:
    def test_header_name_comes_from_app_settings(self, tmp_path: Path, clock: Mock) -> None:
        client = _build_client(tmp_path, clock, log=LogSettings(request_id_header="X-Correlation-ID", level="WARNING"))

        response = client.get("/health", headers={"X-Correlation-ID": "corr-1"})

        assert response.headers["X-Correlation-ID"] == "corr-1"
        assert "X-Request-ID" not in response.headers


class TestHealth:
    def test_healthy(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["database"] == "connected"

    def test_unhealthy_when_database_unreachable(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(
            client.app.state.database,
            "ping",
            Mock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))),
        )

        response = client.get("/health")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["services"]["database"] == "disconnected"
        assert "connection refused" in body["error"]

    def test_health_is_not_rate_limited(self, client: TestClient) -> None:
        for _ in range(5):
            response = client.get("/health")
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers


class TestBackgroundCleanup:
    def test_lifespan_runs_with_background_sweeper(self, tmp_path: Path, clock: Mock) -> None:
        client = _build_client(tmp_path, clock, cleanup_on_request=False, cleanup_interval_seconds=3600)

        with client:
            assert client.get("/v1/rate-limits/strict/login").status_code == 200

    def test_cleanup_loop_purges_periodically(self) -> None:
        registry = Mock()
        registry.purge_expired.return_value = 1

        async def run() -> None:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(cleanup_loop(registry, 0), timeout=0.05)

        asyncio.run(run())

        assert registry.purge_expired.called
