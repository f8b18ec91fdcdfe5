"""
Sliding-window Rate Limiter

Throttles inbound callers of the enrichment service (one window per key,
usually the caller IP). Outbound throttling from the third-party APIs is
handled separately by RetryingFetcher.

Memory is bounded two ways:
- a key whose window empties is dropped on the next check
- a background sweep purges stale keys every few minutes

Usage:
    limiter = RateLimiter(window_ms=60_000, max_requests=100)
    limiter.start()  # background sweep

    result = limiter.allow(client_key(request.headers))
    if not result.allowed:
        # reply 429 with result.headers()
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

CLEANUP_INTERVAL_SECONDS = 5 * 60


@dataclass
class RateLimitResult:
    """Outcome of a single allow() check"""
    allowed: bool
    remaining: int
    limit: int
    reset_at: float  # epoch seconds when the oldest request leaves the window

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))

    def headers(self, now: Optional[float] = None) -> Dict[str, str]:
        headers = {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': str(int(self.reset_at * 1000)),
        }
        if not self.allowed:
            headers['Retry-After'] = str(self.retry_after(now))
        return headers


class RateLimiter:
    """
    Per-key sliding window limiter.

    Thread-safe: every read/modify of the window map happens under one lock.
    """

    def __init__(self, window_ms: int = 60_000, max_requests: int = 100,
                 cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.time):
        if window_ms <= 0 or max_requests <= 0:
            raise ValueError("window_ms and max_requests must be positive")

        self.window = window_ms / 1000.0
        self.max_requests = max_requests
        self.cleanup_interval = cleanup_interval
        self.clock = clock

        # {key: [timestamp, ...]} oldest first
        self.requests: Dict[str, List[float]] = {}
        self.lock = threading.RLock()

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Stats
        self.allowed_total = 0
        self.denied_total = 0

    def allow(self, key: str) -> RateLimitResult:
        """Record a request for key if it fits in the window"""
        now = self.clock()
        cutoff = now - self.window

        with self.lock:
            timestamps = [ts for ts in self.requests.get(key, []) if ts > cutoff]

            if len(timestamps) >= self.max_requests:
                self.requests[key] = timestamps
                self.denied_total += 1
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=self.max_requests,
                    reset_at=timestamps[0] + self.window,
                )

            timestamps.append(now)
            self.requests[key] = timestamps
            self.allowed_total += 1

            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests - len(timestamps),
                limit=self.max_requests,
                reset_at=timestamps[0] + self.window,
            )

    def sweep(self) -> int:
        """Drop expired timestamps and empty keys. Returns keys removed."""
        cutoff = self.clock() - self.window
        removed = 0

        with self.lock:
            for key in list(self.requests.keys()):
                valid = [ts for ts in self.requests[key] if ts > cutoff]
                if valid:
                    self.requests[key] = valid
                else:
                    del self.requests[key]
                    removed += 1

        return removed

    def start(self) -> threading.Thread:
        """Start the periodic sweep in a daemon thread"""
        if self._thread and self._thread.is_alive():
            return self._thread

        self._stop.clear()
        self._thread = threading.Thread(target=self._sweep_loop, daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

    def _sweep_loop(self):
        while not self._stop.wait(self.cleanup_interval):
            self.sweep()

    def tracked_keys(self) -> int:
        with self.lock:
            return len(self.requests)

    def reset(self):
        with self.lock:
            self.requests.clear()


def client_key(headers: Mapping[str, str]) -> str:
    """
    Caller identity from proxy headers.

    Order: x-forwarded-for (first hop), x-vercel-forwarded-for,
    cf-connecting-ip, x-real-ip.
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    for name in ('x-forwarded-for', 'x-vercel-forwarded-for'):
        value = lowered.get(name)
        if value:
            first = value.split(',')[0].strip()
            if first:
                return first

    for name in ('cf-connecting-ip', 'x-real-ip'):
        value = lowered.get(name)
        if value:
            return value.strip()

    return 'unknown'
