"""Named rate limit policies and the registry that hands out their limiters.

The registry is built once at startup and passed by reference (stored on
``app.state``), so every handler using the ``auth`` policy shares the same
limiter instance and configuration lives in one place.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Mapping

from ratekeeper.adapters.rate_limit.base import AbstractRateLimitStore
from ratekeeper.adapters.rate_limit.fixed_window import FixedWindowRateLimiter
from ratekeeper.core.config import RateLimitSettings

logger = logging.getLogger(__name__)

DEFAULT_POLICY = "default"
AUTH_POLICY = "auth"
STRICT_POLICY = "strict"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Max requests per window for one named limiter."""

    max_requests: int
    window_ms: int


DEFAULT_POLICIES: Mapping[str, RateLimitPolicy] = {
    DEFAULT_POLICY: RateLimitPolicy(max_requests=100, window_ms=15 * 60 * 1000),
    AUTH_POLICY: RateLimitPolicy(max_requests=20, window_ms=15 * 60 * 1000),
    STRICT_POLICY: RateLimitPolicy(max_requests=10, window_ms=60 * 1000),
}


def policies_from_settings(rate_limit_settings: RateLimitSettings) -> dict[str, RateLimitPolicy]:
    """Build the built-in policies, applying RATE_LIMIT_* overrides."""

    s = rate_limit_settings
    return {
        DEFAULT_POLICY: RateLimitPolicy(s.default_max_requests, s.default_window_seconds * 1000),
        AUTH_POLICY: RateLimitPolicy(s.auth_max_requests, s.auth_window_seconds * 1000),
        STRICT_POLICY: RateLimitPolicy(s.strict_max_requests, s.strict_window_seconds * 1000),
    }


class RateLimiterRegistry:
    """One shared FixedWindowRateLimiter per policy name."""

    def __init__(
        self,
        store: AbstractRateLimitStore,
        policies: Mapping[str, RateLimitPolicy] | None = None,
        *,
        clock: Callable[[], float] = time.time,
        cleanup_on_request: bool = True,
    ) -> None:
        self._store = store
        self._clock = clock
        self._cleanup_on_request = cleanup_on_request
        self._lock = threading.Lock()
        self._limiters: dict[str, FixedWindowRateLimiter] = {}
        for name, policy in (policies if policies is not None else DEFAULT_POLICIES).items():
            self._limiters[name] = self._build(name, policy)

    @classmethod
    def from_settings(
        cls,
        store: AbstractRateLimitStore,
        rate_limit_settings: RateLimitSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "RateLimiterRegistry":
        return cls(
            store,
            policies_from_settings(rate_limit_settings),
            clock=clock,
            cleanup_on_request=rate_limit_settings.cleanup_on_request,
        )

    @property
    def store(self) -> AbstractRateLimitStore:
        return self._store

    def _build(self, name: str, policy: RateLimitPolicy) -> FixedWindowRateLimiter:
        return FixedWindowRateLimiter(
            self._store,
            max_requests=policy.max_requests,
            window_ms=policy.window_ms,
            namespace=name,
            clock=self._clock,
            cleanup_on_request=self._cleanup_on_request,
        )

    def get(self, name: str) -> FixedWindowRateLimiter:
        """Return the limiter for a registered policy.

        Raises:
            KeyError: If no policy with that name is registered.
        """
        return self._limiters[name]

    def get_or_create(self, name: str, policy: RateLimitPolicy) -> FixedWindowRateLimiter:
        """Register a custom policy on first use; later calls return the same limiter.

        The first registration wins: a different policy passed for an existing
        name is ignored.
        """
        with self._lock:
            limiter = self._limiters.get(name)
            if limiter is None:
                limiter = self._build(name, policy)
                self._limiters[name] = limiter
                logger.info(
                    "rate_limit.policy_registered",
                    extra={"policy": name, "max_requests": policy.max_requests, "window_ms": policy.window_ms},
                )
            return limiter

    def purge_expired(self) -> int:
        """Sweep expired windows for every policy (they share one table)."""
        limiter = next(iter(self._limiters.values()), None)
        return limiter.purge_expired() if limiter is not None else 0

    def __contains__(self, name: object) -> bool:
        return name in self._limiters

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._limiters))

    def __len__(self) -> int:
        return len(self._limiters)
