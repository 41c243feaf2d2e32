"""In-memory token-bucket rate limiting for the OAuth endpoints.

Each endpoint group gets its own limiter, keyed by client IP:

  - token:      20 req/min  (POST /oauth/token)
  - authorize:  30 req/min  (GET/POST /oauth/authorize)
  - revoke:     30 req/min  (POST /oauth/revoke)
  - userinfo:   60 req/min  (GET /oauth/userinfo)

Limits come from Settings.rate_limit_*. ``rate_limit(name)`` returns a
FastAPI dependency that answers 429 with Retry-After when a bucket is empty.
"""

from __future__ import annotations

import math
import threading
import time

from fastapi import HTTPException, Request

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "get_limiter",
    "rate_limit",
    "reset_limiters",
    "cleanup_all",
]


class _Bucket:
    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimitInfo:
    """Outcome of one ``check()``."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        h: dict[str, str] = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            h["Retry-After"] = str(max(1, math.ceil(self.reset_after)))
        return h


class RateLimiter:
    """Token bucket per key.

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Bucket size (burst).
    """

    def __init__(self, rate: float, capacity: int):
        self.rate = rate
        self.capacity = capacity
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    @classmethod
    def per_minute(cls, limit: int) -> RateLimiter:
        return cls(rate=limit / 60.0, capacity=limit)

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitInfo:
        """Consume one token for *key* if available."""
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(self.capacity, now)

            elapsed = now - bucket.last_refill
            bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
            bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                reset_after = (self.capacity - bucket.tokens) / self.rate if self.rate > 0 else 0
                return RateLimitInfo(True, self.capacity, int(bucket.tokens), reset_after)

            reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
            return RateLimitInfo(False, self.capacity, 0, reset_after)

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Drop buckets idle for more than *max_age* seconds."""
        now = time.monotonic()
        with self._lock:
            stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
            for k in stale:
                del self._buckets[k]
        return len(stale)


_DEFAULT_LIMITS = {"token": 20, "authorize": 30, "revoke": 30, "userinfo": 60}

_limiters: dict[str, RateLimiter] = {}
_limiters_lock = threading.Lock()


def get_limiter(name: str) -> RateLimiter:
    """Return the limiter for an endpoint group, sized from settings on first use."""
    with _limiters_lock:
        limiter = _limiters.get(name)
        if limiter is None:
            from tokenwarden.config import get_settings

            limit = getattr(get_settings(), f"rate_limit_{name}", _DEFAULT_LIMITS.get(name, 60))
            limiter = _limiters[name] = RateLimiter.per_minute(limit)
        return limiter


def reset_limiters() -> None:
    with _limiters_lock:
        _limiters.clear()


def cleanup_all() -> int:
    with _limiters_lock:
        limiters = list(_limiters.values())
    return sum(limiter.cleanup() for limiter in limiters)


def rate_limit(name: str):
    """FastAPI dependency enforcing the *name* limiter per client IP."""

    async def _check(request: Request) -> None:
        client_ip = request.client.host if request.client else "unknown"
        info = get_limiter(name).check(client_ip)
        if not info.allowed:
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers=info.headers(),
            )

    return _check
