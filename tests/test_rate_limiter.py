# Tests for the token-bucket rate limiter.
# Created: 2026-03-02

from unittest.mock import patch

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from tokenwarden.security.rate_limiter import (
    RateLimiter,
    RateLimitInfo,
    get_limiter,
    rate_limit,
    reset_limiters,
)


class TestRateLimiter:
    def test_allows_up_to_capacity(self):
        limiter = RateLimiter(rate=0.0001, capacity=3)
        assert all(limiter.allow("ip") for _ in range(3))
        assert not limiter.allow("ip")

    def test_keys_are_independent(self):
        limiter = RateLimiter(rate=0.0001, capacity=1)
        assert limiter.allow("a")
        assert limiter.allow("b")
        assert not limiter.allow("a")

    def test_refills_over_time(self):
        limiter = RateLimiter(rate=1.0, capacity=1)
        with patch("tokenwarden.security.rate_limiter.time.monotonic", return_value=100.0):
            assert limiter.allow("ip")
            assert not limiter.allow("ip")
        with patch("tokenwarden.security.rate_limiter.time.monotonic", return_value=101.5):
            assert limiter.allow("ip")

    def test_per_minute(self):
        limiter = RateLimiter.per_minute(30)
        assert limiter.capacity == 30
        assert limiter.rate == 0.5

    def test_cleanup_drops_idle_buckets(self):
        limiter = RateLimiter(rate=1.0, capacity=1)
        with patch("tokenwarden.security.rate_limiter.time.monotonic", return_value=0.0):
            limiter.allow("old")
        with patch("tokenwarden.security.rate_limiter.time.monotonic", return_value=7200.0):
            limiter.allow("new")
            assert limiter.cleanup(max_age=3600) == 1


class TestRateLimitInfo:
    def test_retry_after_only_when_denied(self):
        assert "Retry-After" not in RateLimitInfo(True, 10, 9, 6.0).headers()
        denied = RateLimitInfo(False, 10, 0, 0.2).headers()
        assert denied["Retry-After"] == "1"
        assert denied["X-RateLimit-Remaining"] == "0"


class TestSettingsAndDependency:
    def test_limiter_sized_from_settings(self, monkeypatch):
        from tokenwarden.config import reset_settings

        monkeypatch.setenv("TOKENWARDEN_RATE_LIMIT_TOKEN", "5")
        reset_settings()
        reset_limiters()
        assert get_limiter("token").capacity == 5
        assert get_limiter("token") is get_limiter("token")

    def test_dependency_returns_429(self, monkeypatch):
        from tokenwarden.config import reset_settings

        monkeypatch.setenv("TOKENWARDEN_RATE_LIMIT_REVOKE", "2")
        reset_settings()
        reset_limiters()

        app = FastAPI()

        @app.get("/limited", dependencies=[Depends(rate_limit("revoke"))])
        async def limited():
            return {"ok": True}

        client = TestClient(app)
        assert client.get("/limited").status_code == 200
        assert client.get("/limited").status_code == 200
        resp = client.get("/limited")
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1
