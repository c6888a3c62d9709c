"""
auth/ratelimit.py -- Fixed-window request counter keyed by an arbitrary string.

Keys look like "auth:login:203.0.113.7". The first hit for a key opens a
window of window_ms; hits inside the window increment the counter; once the
counter reaches the limit, further hits are refused until reset_at. The
window resets lazily on the next hit after it expires -- there is no sweeper
thread.

A fixed window is an approximation: a burst straddling a boundary can admit
up to 2x limit requests in a short span. That is accepted for abuse
mitigation; exact quota enforcement would need a shared store anyway.

State lives in an injected CounterStore rather than a module global, so each
test (or each app instance) gets an isolated counter map. MemoryCounterStore
is process-local: in a multi-instance deployment every instance enforces its
own independent limit.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol

from auth.models import RateLimitEntry, RateLimitResult


class CounterStore(Protocol):
    def compute(
        self,
        key: str,
        fn: Callable[[RateLimitEntry | None], RateLimitEntry],
    ) -> RateLimitEntry:
        """Atomically replace the entry for key with fn(current) and return it."""
        ...


class MemoryCounterStore:
    """Thread-safe in-memory CounterStore.

    A single lock guards the dict. compute() holds it for the whole
    read-modify-write so concurrent hits on one key can never undercount.

    Expired entries are dropped opportunistically once the map grows past
    max_entries, which bounds memory under key-spraying without a background
    task.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._clock = clock

    def compute(
        self,
        key: str,
        fn: Callable[[RateLimitEntry | None], RateLimitEntry],
    ) -> RateLimitEntry:
        with self._lock:
            entry = fn(self._entries.get(key))
            self._entries[key] = entry
            if len(self._entries) > self._max_entries:
                self._prune()
            return entry

    def _prune(self) -> None:
        now_ms = int(self._clock() * 1000)
        expired = [k for k, e in self._entries.items() if e.reset_at <= now_ms]
        for k in expired:
            del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RateLimiter:
    """check(key, limit, window_ms) -> RateLimitResult. Never raises.

    Usage:
        limiter = RateLimiter()
        result = limiter.check("auth:login:10.0.0.1", limit=10, window_ms=60_000)
        if not result.allowed:
            retry_after = result.reset_at - now_ms
    """

    def __init__(self, store: CounterStore | None = None, clock: Callable[[], float] = time.time) -> None:
        self.store: CounterStore = store if store is not None else MemoryCounterStore(clock=clock)
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        now = self.now_ms()
        if limit <= 0:
            return RateLimitResult(allowed=False, remaining=0, reset_at=now + max(window_ms, 0))

        allowed = True

        def step(entry: RateLimitEntry | None) -> RateLimitEntry:
            nonlocal allowed
            if entry is None or now >= entry.reset_at:
                return RateLimitEntry(count=1, reset_at=now + window_ms)
            if entry.count >= limit:
                allowed = False
                return entry
            return RateLimitEntry(count=entry.count + 1, reset_at=entry.reset_at)

        entry = self.store.compute(key, step)
        remaining = max(limit - entry.count, 0) if allowed else 0
        return RateLimitResult(allowed=allowed, remaining=remaining, reset_at=entry.reset_at)
