# media_bridge/infra/rate_limiter.py
"""
Per-client sliding-window rate limiting for the conversion endpoints.

Each client key (the resolved client IP) keeps a deque of request
timestamps; entries older than the window are dropped on every check.
State is per process: with N replicas the effective limit is
N x max_requests.
"""
from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import NamedTuple, Optional

from fastapi import HTTPException, Request, status

from media_bridge.infra.logging_config import get_logger
from media_bridge.infra.metrics import inc_counter

logger = get_logger(__name__)


class RateLimitDecision(NamedTuple):
    allowed: bool
    retry_after: Optional[int]
    remaining: int


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by client"""

    def __init__(self, max_requests: int, window_seconds: int = 60):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: dict[str, deque[float]] = {}
        self._lock = Lock()

    def _prune(self, hits: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def check(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` if the window has room."""
        now = time.monotonic()

        with self._lock:
            hits = self._requests.setdefault(key, deque())
            self._prune(hits, now)

            if len(hits) >= self.max_requests:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                return RateLimitDecision(False, retry_after, 0)

            hits.append(now)
            return RateLimitDecision(True, None, self.max_requests - len(hits))

    def get_usage(self, key: str) -> dict:
        """Current window usage for ``key`` without recording a request"""
        with self._lock:
            hits = self._requests.get(key)
            if hits is not None:
                self._prune(hits, time.monotonic())
            count = len(hits) if hits else 0

        return {
            "count": count,
            "limit": self.max_requests,
            "window_seconds": self.window_seconds,
            "remaining": max(0, self.max_requests - count),
        }

    def cleanup(self) -> int:
        """Forget clients with no requests left in the window. Returns keys removed."""
        now = time.monotonic()

        with self._lock:
            stale = []
            for key, hits in self._requests.items():
                self._prune(hits, now)
                if not hits:
                    stale.append(key)
            for key in stale:
                del self._requests[key]

        if stale:
            logger.debug(f"Rate limiter cleanup: removed {len(stale)} idle clients")
        return len(stale)


class RateLimitDependency:
    """FastAPI dependency: 429 with Retry-After once a client IP exceeds its window"""

    EXEMPT_PATHS = ("/health",)
    CLEANUP_EVERY = 1000  # checks between idle-client sweeps

    def __init__(self, limiter: InMemoryRateLimiter):
        self.limiter = limiter
        self._checks = 0

    async def __call__(self, request: Request) -> None:
        from media_bridge.transport.security import get_client_ip

        if request.url.path in self.EXEMPT_PATHS:
            return

        self._checks += 1
        if self._checks % self.CLEANUP_EVERY == 0:
            self.limiter.cleanup()

        client_ip = get_client_ip(request)
        decision = self.limiter.check(client_ip)
        if decision.allowed:
            return

        inc_counter("rate_limited_requests", path=request.url.path)
        logger.warning(
            f"Rate limit exceeded: client={client_ip} path={request.url.path} "
            f"limit={self.limiter.max_requests}/{self.limiter.window_seconds}s",
            extra={"client_ip": client_ip, "path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please try again later",
            headers={"Retry-After": str(decision.retry_after)},
        )
