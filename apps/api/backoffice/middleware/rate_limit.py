from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from backoffice.context import get_correlation_id
from backoffice.core.config import get_settings


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


PRUNE_THRESHOLD = 1024


class _TokenBucketLimiter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}

    def take(self, client_key: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        key = (client_key, route_group)

        with self._lock:
            current = self._buckets.get(key)
            if current is None:
                if len(self._buckets) >= PRUNE_THRESHOLD:
                    self._prune(now, window_seconds)
                current = _BucketState(tokens=float(capacity), last_refill=now)
                self._buckets[key] = current

            elapsed = max(0.0, now - current.last_refill)
            current.tokens = min(float(capacity), current.tokens + (elapsed * refill_rate))
            current.last_refill = now

            if current.tokens < 1.0:
                retry_after = max(1, math.ceil((1.0 - current.tokens) / refill_rate))
                return False, retry_after

            current.tokens -= 1.0
            return True, 0

    def _prune(self, now: float, window_seconds: int) -> None:
        # A bucket idle for a full window has refilled and equals a new one.
        idle = [key for key, state in self._buckets.items() if now - state.last_refill >= window_seconds]
        for key in idle:
            del self._buckets[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = _TokenBucketLimiter()

ACCESS_LOOKUP_PREFIX = "/products/access/"


class AccessLinkRateLimitMiddleware(BaseHTTPMiddleware):
    """Throttles unauthenticated access-link lookups per client address."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)

        if not request.url.path.startswith(ACCESS_LOOKUP_PREFIX) or request.method.upper() != "GET":
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            client_key=_resolve_client_key(request, settings.trusted_proxies),
            route_group="access-link",
            capacity=settings.rate_limit_access_lookups_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or request.headers.get("x-correlation-id")
            or str(uuid.uuid4())
        )
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many requests",
                "details": None,
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def _resolve_client_key(request: Request, trusted_proxies: frozenset[str]) -> str:
    peer = request.client.host if request.client is not None and request.client.host else "unknown"
    if peer not in trusted_proxies:
        return peer

    hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return peer


def reset_rate_limiter() -> None:
    _limiter.clear()


def tracked_buckets() -> int:
    return len(_limiter)
