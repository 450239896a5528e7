"""Rate limiter interfaces.

The API depends on these abstractions, not on a concrete store, so the
counters can live in the relational database in production and in process
memory in tests without changing the HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RateLimitInfo:
    """Quota snapshot returned by check/consume operations.

    Attributes:
        limit: Max requests per window.
        remaining: Remaining requests in the current window.
        reset: UNIX epoch seconds when the current window ends.
    """

    limit: int
    remaining: int
    reset: int


@dataclass(frozen=True)
class RateLimitWindow:
    """Stored state of one limiter key.

    Attributes:
        key: Fully namespaced limiter key.
        count: Requests recorded in the current window.
        expires_at: Timezone-aware UTC end of the window.
    """

    key: str
    count: int
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


class AbstractRateLimitStore(ABC):
    """Storage primitives the fixed-window limiter is built on.

    ``upsert`` and ``increment_count`` are conditional writes that must be
    atomic per key at the storage layer. The limiter reads a window only to
    decide which write to attempt; the write itself re-checks the condition,
    so concurrent callers can never push a live count past its ceiling.
    """

    @abstractmethod
    def find_one(self, key: str) -> RateLimitWindow | None:
        """Return the stored window for key, expired or not, or None."""
        raise NotImplementedError

    @abstractmethod
    def upsert(
        self,
        key: str,
        *,
        count: int,
        expires_at: datetime,
        now: datetime | None = None,
    ) -> RateLimitWindow | None:
        """Create or replace the window for key.

        Args:
            key: Limiter key.
            count: Count of the new window.
            expires_at: End of the new window.
            now: When given, an existing window is only replaced if it expired
                before ``now``.

        Returns:
            The stored window, or None when a live window blocked the write.
        """
        raise NotImplementedError

    @abstractmethod
    def increment_count(self, key: str, *, max_requests: int, now: datetime) -> RateLimitWindow | None:
        """Add one to a live window whose count is below ``max_requests``.

        Returns:
            The updated window, or None when the key is missing, expired or
            already full.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        """Delete every window with ``expires_at < now``; return rows removed."""
        raise NotImplementedError

    @abstractmethod
    def delete_key(self, key: str) -> int:
        """Delete the window for key if present; return rows removed."""
        raise NotImplementedError


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def check(self, identifier: str) -> RateLimitInfo:
        """Report the quota for identifier without consuming it."""
        raise NotImplementedError

    @abstractmethod
    def consume(self, identifier: str) -> RateLimitInfo:
        """Consume one unit of budget for identifier.

        Raises:
            RateLimitExceededError: If the quota for the window is exhausted.
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self, identifier: str) -> None:
        """Forget any stored window for identifier."""
        raise NotImplementedError
