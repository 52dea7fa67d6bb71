"""In-memory rate limiter for lightweight endpoint protection."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

from fastapi import HTTPException, Request

from ..config import settings

_SCOPES = {
    "forms": lambda: (settings.FORMS_RATE_LIMIT_MAX, settings.FORMS_RATE_LIMIT_WINDOW_SECONDS),
    "api": lambda: (settings.API_RATE_LIMIT_MAX, settings.API_RATE_LIMIT_WINDOW_SECONDS),
}


class InMemoryRateLimiter:
    """Sliding-window limiter per key.

    Every `sweep_every` calls the limiter prunes all keys and forgets the
    ones with no hits left in their window, so clients that stop calling
    do not stay in memory.
    """

    def __init__(self, sweep_every: int = 1000, clock: Callable[[], float] = time.monotonic):
        self._hits: Dict[str, Deque[float]] = {}
        self._windows: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._sweep_every = sweep_every
        self._calls = 0
        self._clock = clock

    def __len__(self) -> int:
        return len(self._hits)

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        now = self._clock()
        retry_after = 0
        with self._lock:
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(now)
            q = self._hits.setdefault(key, deque())
            self._windows[key] = window_seconds
            self._prune(q, now - window_seconds)
            if len(q) >= max_requests:
                retry_after = max(1, int(window_seconds - (now - q[0])))
                return False, retry_after
            q.append(now)
        return True, retry_after

    @staticmethod
    def _prune(q: Deque[float], cutoff: float) -> None:
        while q and q[0] < cutoff:
            q.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            q = self._hits[key]
            self._prune(q, now - self._windows[key])
            if not q:
                del self._hits[key]
                del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._windows.clear()
            self._calls = 0


limiter = InMemoryRateLimiter()


def _client_key(request: Request) -> str:
    principals = request.session.get("principals") or {}
    for role in ("admin", "user"):
        principal = principals.get(role)
        if isinstance(principal, dict) and principal.get("id") is not None:
            return f"{role}:{principal['id']}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def rate_limited(scope: str):
    """Build a dependency that answers 429 once `scope`'s budget is spent.

    Limits are skipped entirely when the environment is `test`.
    """
    def dependency(request: Request) -> None:
        if not settings.rate_limiting_enabled:
            return
        max_requests, window = _SCOPES[scope]()
        key = f"{scope}:{_client_key(request)}"
        allowed, retry_after = limiter.allow(key, max_requests, window)
        if not allowed:
            raise HTTPException(
                status_code=429,
                detail=f"rate limit exceeded; retry after {retry_after}s",
                headers={"Retry-After": str(retry_after)},
            )

    return dependency
