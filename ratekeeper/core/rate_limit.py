"""Rate limiting dependency for FastAPI routes.

This module wires the fixed-window limiter into the HTTP layer.

- Routes declare ``Depends(rate_limit("auth", scope="login"))``.
- The limiter comes from the registry stored on ``app.state`` at startup.
- Identifiers are ``"<scope>:<client ip>"``, so each route keeps its own
  quota inside the shared policy.
- A rejection propagates as RateLimitExceededError; the exception handler
  turns it into a 429 with Retry-After.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from fastapi import Request, Response

from ratekeeper.adapters.rate_limit.base import RateLimitInfo
from ratekeeper.adapters.rate_limit.headers import apply_rate_limit_headers
from ratekeeper.adapters.rate_limit.registry import DEFAULT_POLICY, RateLimiterRegistry
from ratekeeper.core.config import settings_for
from ratekeeper.core.errors import NotFoundAppError, RateLimitExceededError
from ratekeeper.core.logging import hash_for_log

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def get_rate_limiter_registry(request: Request) -> RateLimiterRegistry:
    """Return the registry built by the application factory."""

    return request.app.state.rate_limiters


def resolve_client_ip(request: Request) -> str:
    """Best-effort client address for rate limiting.

    Uses the first X-Forwarded-For entry when the app is configured to trust
    its proxy (APP_TRUST_FORWARDED_FOR), then the socket peer, then a shared
    ``"unknown"`` bucket.
    """

    if settings_for(request.app).app.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def get_policy_limiter(registry: RateLimiterRegistry, policy: str):
    """Look up a policy, mapping unknown names to a 404-style domain error."""

    try:
        return registry.get(policy)
    except KeyError:
        raise NotFoundAppError(
            code="unknown_rate_limit_policy",
            message=f"Unknown rate limit policy: '{policy}'",
            details={"policy": policy},
        ) from None


def rate_limit(
    policy: str = DEFAULT_POLICY,
    *,
    scope: str | None = None,
) -> Callable[[Request, Response], Awaitable[RateLimitInfo | None]]:
    """Build a dependency that consumes one unit of ``policy`` per request.

    Args:
        policy: Registered policy name (default, auth, strict, ...).
        scope: Route qualifier prefixed to the client IP. Defaults to the
            request path.

    Returns:
        An async FastAPI dependency returning the RateLimitInfo, or None when
        rate limiting is disabled.
    """

    async def enforce_rate_limit(request: Request, response: Response) -> RateLimitInfo | None:
        rate_limit_settings = settings_for(request.app).rate_limit
        if not rate_limit_settings.enabled:
            return None

        limiter = get_policy_limiter(get_rate_limiter_registry(request), policy)
        identifier = f"{scope or request.url.path}:{resolve_client_ip(request)}"
        identifier_hash = hash_for_log(identifier)

        try:
            # The SQL store blocks; keep it off the event loop.
            info = await asyncio.to_thread(limiter.consume, identifier)
        except RateLimitExceededError as exc:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "policy": policy,
                    "identifier_hash": identifier_hash,
                    "limit": limiter.max_requests,
                    "window_ms": limiter.window_ms,
                    "retry_after_s": exc.retry_after_seconds,
                },
            )
            raise

        logger.info(
            "rate_limit.allowed",
            extra={
                "policy": policy,
                "identifier_hash": identifier_hash,
                "limit": info.limit,
                "remaining": info.remaining,
                "window_ms": limiter.window_ms,
            },
        )
        if rate_limit_settings.include_headers:
            apply_rate_limit_headers(response.headers, info)
        return info

    return enforce_rate_limit
