# imgproxy/infra/rate_limiter.py
"""
Per-client sliding-window rate limiting for the proxy route.

Every proxied request can trigger up to six upstream fetches, so the
public route is limited per client IP before any validation runs.

State is per process: with N replicas the effective limit is
N × ``max_requests``.
"""
from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Deque, Optional

from fastapi import HTTPException, Request, status

from imgproxy.infra.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryRateLimiter:
    """
    Sliding window of hit timestamps per key.

    Keys whose window has emptied are swept from the request path at most
    once per ``sweep_interval_seconds`` (default: one window), so memory
    tracks active clients only.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int = 60,
        sweep_interval_seconds: Optional[int] = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds or window_seconds
        self._hits: dict[str, Deque[float]] = {}
        self._lock = Lock()
        self._next_sweep = time.time() + self.sweep_interval_seconds

    def _window(self, key: str, now: float) -> Deque[float]:
        """Hits for ``key`` inside the current window (caller holds the lock)."""
        hits = self._hits.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def is_allowed(self, key: str) -> tuple[bool, Optional[int]]:
        """
        Record a hit for ``key`` if it is under the limit.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = time.time()
        if now >= self._next_sweep:
            self._next_sweep = now + self.sweep_interval_seconds
            self.cleanup(max_age_seconds=self.window_seconds)

        with self._lock:
            hits = self._window(key, now)
            if len(hits) < self.max_requests:
                hits.append(now)
                return True, None

            # Hits are appended in time order: the oldest one expires first
            retry_after = int(hits[0] + self.window_seconds - now) + 1
            count = len(hits)

        logger.warning(
            "Rate limit exceeded for key=%s", key,
            extra={"count": count, "limit": self.max_requests, "retry_after": retry_after},
        )
        return False, retry_after

    def get_usage(self, key: str) -> dict:
        with self._lock:
            count = len(self._window(key, time.time())) if key in self._hits else 0
        return {
            "count": count,
            "limit": self.max_requests,
            "window_seconds": self.window_seconds,
            "remaining": max(0, self.max_requests - count),
        }

    def cleanup(self, max_age_seconds: int = 3600) -> int:
        """Forget clients idle for longer than ``max_age_seconds``. Returns keys removed."""
        cutoff = time.time() - max_age_seconds
        with self._lock:
            stale = [key for key, hits in self._hits.items() if not hits or hits[-1] < cutoff]
            for key in stale:
                del self._hits[key]

        if stale:
            logger.info("Rate limiter cleanup: removed %d keys", len(stale))
        return len(stale)


class RateLimitDependency:
    """FastAPI dependency: 429 with Retry-After once a client IP is over the limit"""

    def __init__(self, limiter: InMemoryRateLimiter, trust_proxy_headers: bool = False):
        self.limiter = limiter
        self.trust_proxy_headers = trust_proxy_headers

    def client_key(self, request: Request) -> str:
        # X-Forwarded-For is client-controlled unless a trusted proxy sets it
        if self.trust_proxy_headers:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def __call__(self, request: Request) -> None:
        allowed, retry_after = self.limiter.is_allowed(self.client_key(request))
        if allowed:
            return

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(retry_after)} if retry_after else None,
        )
