"""HTTP-level tests for the rate limit dependency and the limits routes.

The process-wide limiter reads ``RATE_LIMIT_RATE="3 requests in 1 minute"``
(see conftest). Its clock is pinned so bucket boundaries never interfere.
"""

from __future__ import annotations

import logging

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from fakes import FakeRedis
from window_limiter.adapters.slots.in_memory import InMemorySlotProvider
from window_limiter.adapters.slots.redis_store import RedisSlotProvider
from window_limiter.core import rate_limit as rate_limit_module
from window_limiter.core.app_factory import create_app
from window_limiter.core.config import settings
from window_limiter.core.errors import ConfigurationAppError
from window_limiter.core.rate_limit import (
    RateLimitDependency,
    build_slot_provider,
    close_retired_limiters,
    default_request_key,
    get_rate_limiter,
)
from window_limiter.services.rate_limiter import RateLimiter


@pytest.fixture
def client(clock) -> TestClient:
    get_rate_limiter().clock = clock
    return TestClient(create_app())


class TestPingGuard:
    def test_allows_up_to_rate_then_returns_429(self, client: TestClient) -> None:
        for _ in range(3):
            assert client.get("/v1/ping").status_code == 200

        resp = client.get("/v1/ping")

        assert resp.status_code == 429
        # clock at 1000: bucket 960-1020 is full until 1020
        assert resp.headers["Retry-After"] == "20"
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Period"] == "60"

    def test_api_keys_have_separate_budgets(self, client: TestClient) -> None:
        for _ in range(3):
            client.get("/v1/ping", headers={"X-API-Key": "alpha"})

        assert client.get("/v1/ping", headers={"X-API-Key": "alpha"}).status_code == 429
        assert client.get("/v1/ping", headers={"X-API-Key": "beta"}).status_code == 200
        assert client.get("/v1/ping").status_code == 200

    def test_budget_recovers_after_time_passes(self, client: TestClient, clock) -> None:
        for _ in range(3):
            client.get("/v1/ping")
        assert client.get("/v1/ping").status_code == 429

        clock.advance(180)

        assert client.get("/v1/ping").status_code == 200

    def test_headers_can_be_disabled(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "include_headers", False)
        for _ in range(3):
            client.get("/v1/ping")

        resp = client.get("/v1/ping")

        assert resp.status_code == 429
        assert "Retry-After" not in resp.headers
        assert "X-RateLimit-Limit" not in resp.headers

    def test_disabled_limiting_never_throttles(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "enabled", False)

        for _ in range(10):
            assert client.get("/v1/ping").status_code == 200


class TestLimitRoutes:
    def test_post_counts_and_get_only_checks(self, client: TestClient) -> None:
        for _ in range(3):
            assert client.get("/v1/limits/user-1").json()["decision"] == "allowed"

        for _ in range(3):
            body = client.post("/v1/limits/user-1").json()
            assert body["decision"] == "allowed"
            assert body["counted"] is True
            assert body["retry_after_seconds"] is None

        body = client.post("/v1/limits/user-1").json()
        assert body["decision"] == "rate-limited"
        assert body["counted"] is False
        assert body["retry_after_seconds"] == 20

        body = client.get("/v1/limits/user-1").json()
        assert body["decision"] == "rate-limited"
        assert body["counted"] is False

    def test_response_describes_rate(self, client: TestClient) -> None:
        body = client.get("/v1/limits/anyone").json()

        assert body["key"] == "anyone"
        assert body["rate"] == {
            "requests": 3,
            "period": 1,
            "unit": "minutes",
            "period_in_seconds": 60,
        }

    def test_health_reports_backend(self, client: TestClient) -> None:
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "rate_limit_backend": "memory"}


class TestCustomDependency:
    def _app(self, guard: RateLimitDependency) -> FastAPI:
        app = FastAPI()

        @app.get("/login", dependencies=[Depends(guard)])
        async def login() -> dict:
            return {"jwt": "..."}

        return app

    def test_own_limiter_and_key(self, clock) -> None:
        guard = RateLimitDependency(
            limiter=RateLimiter(rate="1 request in 1 minute", clock=clock),
            key=lambda request: request.query_params.get("email"),
        )
        client = TestClient(self._app(guard))

        assert client.get("/login", params={"email": "a@b.c"}).status_code == 200
        assert client.get("/login", params={"email": "a@b.c"}).status_code == 429
        assert client.get("/login", params={"email": "x@y.z"}).status_code == 200

    def test_none_key_skips_limiting(self, clock) -> None:
        guard = RateLimitDependency(
            limiter=RateLimiter(rate="1 request in 1 minute", clock=clock),
            key=lambda request: None,
        )
        client = TestClient(self._app(guard))

        for _ in range(5):
            assert client.get("/login").status_code == 200


class TestLimiterConstruction:
    def test_default_key_prefers_api_key(self) -> None:
        class _Client:
            host = "10.0.0.1"

        class _Request:
            client = _Client()

        assert default_request_key(_Request(), "secret") == "api_key:secret"
        assert default_request_key(_Request(), None) == "ip:10.0.0.1"

    def test_limiter_is_cached_until_config_changes(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_rate_limiter()
        assert get_rate_limiter() is first

        monkeypatch.setattr(settings.rate_limit, "rate", "5 requests in 1 hour")
        second = get_rate_limiter()

        assert second is not first
        assert second.rate.requests == 5

    def test_memory_backend(self) -> None:
        assert isinstance(build_slot_provider(settings.rate_limit), InMemorySlotProvider)

    def test_redis_backend_requires_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "backend", "redis")
        monkeypatch.setattr(settings.rate_limit, "redis_url", None)

        with pytest.raises(ConfigurationAppError) as exc_info:
            get_rate_limiter()

        assert exc_info.value.code == "redis_url_missing"
        assert "RATE_LIMIT_REDIS_URL" in exc_info.value.details["hint"]

    def test_invalid_configured_rate_fails_fast(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "rate", "ten per minute")

        with pytest.raises(ConfigurationAppError):
            get_rate_limiter()


class TestRedisBackend:
    @pytest.fixture
    def redis_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "backend", "redis")
        monkeypatch.setattr(settings.rate_limit, "redis_url", "redis://cache:6379/0")

    @pytest.fixture
    def fake_clients(self, monkeypatch: pytest.MonkeyPatch) -> list[FakeRedis]:
        clients: list[FakeRedis] = []

        def _build(cfg) -> RedisSlotProvider:
            clients.append(FakeRedis())
            return RedisSlotProvider(clients[-1], cfg.key_prefix)

        monkeypatch.setattr(rate_limit_module, "build_slot_provider", _build)
        return clients

    def test_redis_backend_builds_redis_provider(self, redis_settings) -> None:
        provider = build_slot_provider(settings.rate_limit)

        assert isinstance(provider, RedisSlotProvider)
        assert provider.key_prefix == "window-limiter"

    def test_process_limiter_uses_redis_provider(self, redis_settings) -> None:
        limiter = get_rate_limiter()

        assert isinstance(limiter.slot_provider, RedisSlotProvider)

    def test_lifespan_drains_and_closes_redis(self, redis_settings, fake_clients, clock) -> None:
        with TestClient(create_app()) as client:
            get_rate_limiter().clock = clock
            for _ in range(3):
                assert client.get("/v1/ping").status_code == 200
            assert client.get("/health").json()["rate_limit_backend"] == "redis"

        (redis_client,) = fake_clients
        assert redis_client.closed
        # clock at 1000: one-minute bucket starts at 960
        assert redis_client.memory == {"window-limiter:ip:testclient:960": 3}

    @pytest.mark.asyncio
    async def test_replaced_limiter_closes_its_client(
        self, redis_settings, fake_clients, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        first = get_rate_limiter()
        monkeypatch.setattr(settings.rate_limit, "rate", "5 requests in 1 hour")

        second = get_rate_limiter()
        await close_retired_limiters()

        assert second is not first
        assert fake_clients[0].closed
        assert not fake_clients[1].closed

    def test_replaced_limiter_outside_loop_is_reported(
        self,
        redis_settings,
        fake_clients,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        get_rate_limiter()
        monkeypatch.setattr(settings.rate_limit, "rate", "5 requests in 1 hour")

        with caplog.at_level(logging.WARNING):
            get_rate_limiter()

        assert any(record.getMessage() == "rate_limit.retired_unclosed" for record in caplog.records)
        assert not fake_clients[0].closed
