"""
auth/ratelimit.py -- Sliding-window rate limiter with a pluggable record store.

Algorithm: each key owns one RateLimitRecord (count, window_start). The window
opens at the key's first event and lasts window_ms; the first event after it
expires opens a new window with count=1. Records are never purged in the
background -- a stale record is overwritten by the next event for its key, or
dropped by reset()/reset_all().

Three ways to touch a key:
  consume()    -- counts the call as an attempt and reports whether it fits.
  is_limited() -- read-only check, does not count.
  increment()  -- counts an event (e.g. a failed login) without checking.

Splitting consume() from is_limited()/increment() lets one limiter count
every attempt while a second one only counts failures and is reset on
success.

Storage is a RateLimitStore. InMemoryRateLimitStore is the default; a shared
store (Redis, database) can be dropped in for multi-process deployments
without touching the algorithm. The limiter serializes its own
read-modify-write cycles with a lock, so the in-memory store is safe under
threaded servers as well as on a single event loop.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RateLimitRecord:
    count: int
    window_start: int  # milliseconds


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_ms: int


class RateLimitStore(Protocol):
    """Mapping from identifier key to its current RateLimitRecord."""

    def get(self, key: str) -> RateLimitRecord | None: ...

    def set(self, key: str, record: RateLimitRecord) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...


class InMemoryRateLimitStore:
    """Process-local store. State is lost on restart (limits fail open)."""

    def __init__(self) -> None:
        self._records: dict[str, RateLimitRecord] = {}

    def get(self, key: str) -> RateLimitRecord | None:
        return self._records.get(key)

    def set(self, key: str, record: RateLimitRecord) -> None:
        self._records[key] = record

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class SlidingWindowRateLimiter:
    """Fixed-capacity counter over a window of window_ms, keyed by identifier.

    Usage:
        limiter = SlidingWindowRateLimiter(window_ms=15 * 60 * 1000, limit=30)
        result = limiter.consume("ip:203.0.113.7", now_ms)
        if not result.allowed:
            ...  # reject, retry after result.retry_after_ms
    """

    def __init__(self, window_ms: int, limit: int, store: RateLimitStore | None = None) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.window_ms = window_ms
        self.limit = limit
        self._store: RateLimitStore = store if store is not None else InMemoryRateLimitStore()
        self._lock = threading.Lock()

    def _expired(self, record: RateLimitRecord, now: int) -> bool:
        return now - record.window_start >= self.window_ms

    def _remaining_ms(self, record: RateLimitRecord, now: int) -> int:
        return self.window_ms - (now - record.window_start)

    def consume(self, key: str, now: int) -> RateLimitResult:
        """Count one attempt for key and report whether it is within the limit."""
        with self._lock:
            record = self._store.get(key)
            if record is None or self._expired(record, now):
                self._store.set(key, RateLimitRecord(count=1, window_start=now))
                return RateLimitResult(allowed=True, retry_after_ms=self.window_ms)

            record = RateLimitRecord(count=record.count + 1, window_start=record.window_start)
            self._store.set(key, record)
            return RateLimitResult(
                allowed=record.count <= self.limit,
                retry_after_ms=self._remaining_ms(record, now),
            )

    def is_limited(self, key: str, now: int) -> RateLimitResult:
        """Report whether key has reached the limit without counting this call.

        A stale record is dropped on read.
        """
        with self._lock:
            record = self._store.get(key)
            if record is None:
                return RateLimitResult(allowed=True, retry_after_ms=self.window_ms)
            if self._expired(record, now):
                self._store.delete(key)
                return RateLimitResult(allowed=True, retry_after_ms=self.window_ms)
            return RateLimitResult(
                allowed=record.count < self.limit,
                retry_after_ms=self._remaining_ms(record, now),
            )

    def increment(self, key: str, now: int) -> None:
        """Count one event for key unconditionally."""
        with self._lock:
            record = self._store.get(key)
            if record is None or self._expired(record, now):
                self._store.set(key, RateLimitRecord(count=1, window_start=now))
                return
            self._store.set(key, RateLimitRecord(count=record.count + 1, window_start=record.window_start))

    def reset(self, key: str) -> None:
        with self._lock:
            self._store.delete(key)

    def reset_all(self) -> None:
        with self._lock:
            self._store.clear()
