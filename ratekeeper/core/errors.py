"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: int
    policy: str
    operation: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class NotFoundAppError(AppError):
    """Raised when a named resource (e.g. a rate limit policy) does not exist."""


class StorageAppError(AppError):
    """Raised when the backing store fails on a read/write the caller depends on."""


class RateLimitExceededError(AppError):
    """Raised when a caller has exhausted its quota for the current window.

    Attributes:
        retry_after_seconds: Whole seconds until the window expires (>= 0).
        limit: Max requests per window of the rejecting policy, when known.
        reset: UNIX epoch seconds when the window ends, when known.
    """

    def __init__(
        self,
        retry_after_seconds: int,
        *,
        policy: str | None = None,
        limit: int | None = None,
        reset: int | None = None,
    ) -> None:
        self.retry_after_seconds = max(0, int(retry_after_seconds))
        self.limit = limit
        self.reset = reset
        details: ErrorDetails = {"retry_after": self.retry_after_seconds}
        if policy:
            details["policy"] = policy
        super().__init__(
            code="rate_limit_exceeded",
            message="Too many requests. Please try again later.",
            details=details,
        )
