"""In-memory rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading
from datetime import datetime

from ratekeeper.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitWindow


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Dict-backed store implementing the same primitives as the SQL store.

    Useful for tests and single-process development. The lock makes the
    conditional upsert and increment atomic within the process, which is all
    this store can promise.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._windows: dict[str, RateLimitWindow] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def find_one(self, key: str) -> RateLimitWindow | None:
        with self._lock:
            return self._windows.get(key)

    def upsert(
        self,
        key: str,
        *,
        count: int,
        expires_at: datetime,
        now: datetime | None = None,
    ) -> RateLimitWindow | None:
        window = RateLimitWindow(key=key, count=count, expires_at=expires_at)
        with self._lock:
            current = self._windows.get(key)
            if now is not None and current is not None and not current.is_expired(now):
                return None
            self._windows[key] = window
        return window

    def increment_count(self, key: str, *, max_requests: int, now: datetime) -> RateLimitWindow | None:
        with self._lock:
            current = self._windows.get(key)
            if current is None or current.is_expired(now) or current.count >= max_requests:
                return None
            updated = RateLimitWindow(key=key, count=current.count + 1, expires_at=current.expires_at)
            self._windows[key] = updated
            return updated


    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, window in self._windows.items() if window.is_expired(now)]
            for key in expired:
                del self._windows[key]
            return len(expired)

    def delete_key(self, key: str) -> int:
        with self._lock:
            return 1 if self._windows.pop(key, None) is not None else 0
