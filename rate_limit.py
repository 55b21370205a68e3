# rate_limit.py
from __future__ import annotations

import logging
import math
import os
import threading
import time
from collections import defaultdict, deque

from fastapi import HTTPException, Request

from services.metrics import increment_rate_limited

logger = logging.getLogger("gasbridge.rate_limit")


class InMemoryRateLimiter:
    """Sliding window per key. Process-local; put a shared limiter in front when scaling out."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # key -> deque[timestamps]
        self._hits: dict[str, deque] = defaultdict(deque)

    def hit(self, key: str, *, limit: int, window_seconds: float, now: float | None = None) -> tuple[bool, float]:
        """Record a hit. Returns (allowed, retry_after_seconds)."""
        now = time.monotonic() if now is None else now
        with self._lock:
            self._prune(now, window_seconds)
            q = self._hits[key]
            if len(q) >= limit:
                return False, max(0.0, window_seconds - (now - q[0]))
            q.append(now)
            return True, 0.0

    def _prune(self, now: float, window_seconds: float) -> None:
        # drained keys are dropped so idle clients do not accumulate
        for key in list(self._hits):
            q = self._hits[key]
            while q and (now - q[0]) >= window_seconds:
                q.popleft()
            if not q:
                del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_limiter = InMemoryRateLimiter()


def rate_limit_enabled() -> bool:
    raw = os.getenv("RATE_LIMIT_ENABLED")
    if raw is None:
        from settings import settings

        return bool(settings.RATE_LIMIT_ENABLED)
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def rate_limit_or_429(*, key: str, limit: int, window_seconds: float) -> None:
    allowed, retry_after = _limiter.hit(key, limit=limit, window_seconds=window_seconds)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "RATE_LIMITED", "message": "Too many requests, please try again later"},
            headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
        )


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class AdmissionGuard:
    """
    FastAPI dependency: admit at most `max_requests` per client address in any
    `window_ms` window. Runs before the route body, so a rejected request
    never reaches the registry, the processor or the chain.
    """

    def __init__(self, name: str, *, window_ms: int, max_requests: int, enabled: bool | None = None):
        self.name = name
        self.window_ms = int(window_ms)
        self.max_requests = int(max_requests)
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return rate_limit_enabled() if self._enabled is None else self._enabled

    def __call__(self, request: Request) -> None:
        if not self.enabled:
            return
        client = _client_key(request)
        try:
            rate_limit_or_429(
                key=f"{self.name}:{client}",
                limit=self.max_requests,
                window_seconds=self.window_ms / 1000.0,
            )
        except HTTPException:
            increment_rate_limited(self.name)
            logger.warning("rate limited guard=%s client=%s path=%s", self.name, client, request.url.path)
            raise
