"""Fixed-window rate limiter on top of a pluggable counter store.

Each key owns one window of ``window_ms`` milliseconds that starts on the
first consumption. Every consumption inside the window shares one counter;
once ``expires_at`` has passed the stored window is treated as absent and the
next consumption starts a fresh one.

The limiter holds no lock of its own. Correctness across threads and
processes comes from the store: opening a window and bumping a count are
conditional writes, so the exceed-or-increment decision is re-checked
atomically per key and a live count never exceeds ``max_requests``.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from ratekeeper.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractRateLimitStore,
    RateLimitInfo,
    RateLimitWindow,
)
from ratekeeper.core.errors import RateLimitExceededError
from ratekeeper.core.logging import hash_for_log

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit"


class FixedWindowRateLimiter(AbstractRateLimiter):
    """Enforce at most ``max_requests`` consumptions per window for each identifier."""

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        max_requests: int,
        window_ms: int,
        namespace: str = "default",
        clock: Callable[[], float] = time.time,
        cleanup_on_request: bool = True,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Counter storage shared by every limiter instance.
            max_requests: Maximum consumptions allowed per window.
            window_ms: Window length in milliseconds.
            namespace: Policy name; keeps limiters sharing one store apart.
            clock: Time source returning UNIX time in seconds.
            cleanup_on_request: Purge expired windows on every check/consume.

        Raises:
            ValueError: If max_requests, window_ms or namespace are invalid.
        """
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if not namespace:
            raise ValueError("namespace must be a non-empty string")

        self._store = store
        self._max_requests = max_requests
        self._window_ms = window_ms
        self._namespace = namespace
        self._clock = clock
        self._cleanup_on_request = cleanup_on_request

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def window_seconds(self) -> int:
        """Window length in whole seconds, rounded up so short windows never read as 0."""
        return math.ceil(self._window_ms / 1000)

    @property
    def namespace(self) -> str:
        return self._namespace

    def key_for(self, identifier: str) -> str:
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        return f"{KEY_PREFIX}:{self._namespace}:{identifier}"

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _info(self, count: int, expires_at: datetime) -> RateLimitInfo:
        return RateLimitInfo(
            limit=self._max_requests,
            remaining=max(0, self._max_requests - count),
            reset=math.ceil(expires_at.timestamp()),
        )

    def purge_expired(self) -> int:
        """Best-effort removal of every expired window in the store.

        Failures are logged and swallowed; they never fail the caller.
        """
        try:
            return self._store.delete_expired(self._now())
        except Exception as exc:
            logger.warning(
                "rate_limit.cleanup_failed",
                extra={"namespace": self._namespace, "error_type": type(exc).__name__},
            )
            return 0

    def check(self, identifier: str) -> RateLimitInfo:
        """Report the current quota for identifier without touching its window.

        When no live window exists the result describes a hypothetical window
        starting now, so callers always receive a ``reset`` value.
        """
        key = self.key_for(identifier)
        if self._cleanup_on_request:
            self.purge_expired()

        now = self._now()
        window = self._store.find_one(key)
        if window is None or window.is_expired(now):
            return self._info(0, now + timedelta(milliseconds=self._window_ms))
        return self._info(window.count, window.expires_at)

    def consume(self, identifier: str) -> RateLimitInfo:
        """Consume one request from identifier's budget.

        Every write is conditional (open a window only over an absent or
        expired one, bump only a live window below the limit). When a write
        loses a race with another caller the window is read again and the
        decision repeated, so a live count never exceeds ``max_requests``.

        Raises:
            RateLimitExceededError: When the live window is already full. The
                stored window is left untouched.
        """
        key = self.key_for(identifier)
        if self._cleanup_on_request:
            self.purge_expired()

        now = self._now()
        while True:
            window = self._store.find_one(key)

            if window is None or window.is_expired(now):
                window = self._store.upsert(
                    key,
                    count=1,
                    expires_at=now + timedelta(milliseconds=self._window_ms),
                    now=now,
                )
            elif window.count >= self._max_requests:
                raise self._rejection(key, window, now)
            else:
                window = self._store.increment_count(key, max_requests=self._max_requests, now=now)

            if window is not None:
                return self._info(window.count, window.expires_at)
            # Another caller changed the window between the read and the write.

    def _rejection(self, key: str, window: RateLimitWindow, now: datetime) -> RateLimitExceededError:
        retry_after = max(0, math.ceil((window.expires_at - now).total_seconds()))
        logger.debug(
            "rate_limit.rejected",
            extra={
                "namespace": self._namespace,
                "key_hash": hash_for_log(key),
                "count": window.count,
                "retry_after_s": retry_after,
            },
        )
        return RateLimitExceededError(
            retry_after,
            policy=self._namespace,
            limit=self._max_requests,
            reset=math.ceil(window.expires_at.timestamp()),
        )

    def reset(self, identifier: str) -> None:
        """Delete any stored window for identifier. Idempotent."""
        key = self.key_for(identifier)
        removed = self._store.delete_key(key)
        logger.info(
            "rate_limit.reset",
            extra={"namespace": self._namespace, "key_hash": hash_for_log(key), "removed": removed},
        )
