import os
import threading
import time
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from . import json_error_response


DEFAULT_PATH_PREFIXES = (
    "/api/verify-and-attest",
    "/api/verify-did",
    "/api/discover-controlling-wallet",
)


def _now() -> float:
    return time.monotonic()


def _extract_client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        parts = [p.strip() for p in xff.split(",") if p.strip()]
        if parts:
            return parts[0]
    return request.client.host if request.client else "unknown"


class SlidingWindow:
    """Sliding-window counter over a deque of monotonic timestamps."""

    def __init__(self, window_seconds: int) -> None:
        self.window_seconds = max(int(window_seconds or 60), 1)
        self._events: Deque[float] = deque()

    def add_and_prune(self, now_value: Optional[float] = None) -> int:
        now_value = now_value or _now()
        self._events.append(now_value)
        cutoff = now_value - self.window_seconds
        while self._events and self._events[0] < cutoff:
            self._events.popleft()
        return len(self._events)

    def is_stale(self, now_value: float) -> bool:
        return not self._events or self._events[-1] < now_value - self.window_seconds


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-process IP+path-prefix limiter for the endpoints that hit DNS, HTTPS and RPC.

    - Default limit: 20 requests/min per IP per tracked path prefix.
    - RATE_LIMIT_PATH_PREFIXES adds comma-separated prefixes.
    - RATE_LIMIT_WINDOW_SEC and RATE_LIMIT_LIMIT tune the window.
    """

    def __init__(
        self,
        app,
        *,
        path_prefixes: Optional[Iterable[str]] = None,
        limit_per_window: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> None:
        super().__init__(app)
        raw_prefixes = os.getenv("RATE_LIMIT_PATH_PREFIXES", "")
        env_prefixes: List[str] = [p.strip() for p in raw_prefixes.split(",") if p.strip()]
        self.path_prefixes: Tuple[str, ...] = (
            tuple(dict.fromkeys([*(path_prefixes or ()), *env_prefixes])) or DEFAULT_PATH_PREFIXES
        )

        env_limit = int(os.getenv("RATE_LIMIT_LIMIT", "0") or "0")
        env_window = int(os.getenv("RATE_LIMIT_WINDOW_SEC", "60") or "60")
        default_limit = int(os.getenv("RATE_LIMIT_PER_MINUTE", "20") or "20")
        self.limit_per_window = int(limit_per_window or env_limit or default_limit)
        self.window_seconds = int(window_seconds or env_window or 60)

        self._lock = threading.Lock()
        self._buckets: Dict[Tuple[str, str], SlidingWindow] = {}
        self._last_sweep = _now()

    def _evict_stale(self, now_value: float) -> None:
        """Drop buckets with no events inside the window; runs at most once per window."""
        if now_value - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now_value
        for key in [k for k, bucket in self._buckets.items() if bucket.is_stale(now_value)]:
            del self._buckets[key]

    def _match_prefix(self, path: str) -> Optional[str]:
        for prefix in self.path_prefixes:
            if path.startswith(prefix):
                return prefix
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        prefix = self._match_prefix(request.url.path)
        if prefix and request.method in {"GET", "POST"}:
            key = (_extract_client_ip(request), prefix)
            now_value = _now()
            with self._lock:
                self._evict_stale(now_value)
                bucket = self._buckets.get(key)
                if bucket is None:
                    bucket = SlidingWindow(self.window_seconds)
                    self._buckets[key] = bucket
                count = bucket.add_and_prune(now_value)
            if count > self.limit_per_window:
                return json_error_response(
                    request,
                    "rate_limited",
                    status_code=429,
                    detail="Too many verification requests; please slow down.",
                )

        return await call_next(request)


__all__ = ["DEFAULT_PATH_PREFIXES", "RateLimitMiddleware"]
