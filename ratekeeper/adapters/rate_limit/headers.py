"""Projection of RateLimitInfo onto HTTP response headers."""

from __future__ import annotations

from typing import MutableMapping

from ratekeeper.adapters.rate_limit.base import RateLimitInfo

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"


def build_rate_limit_headers(info: RateLimitInfo) -> dict[str, str]:
    return {
        LIMIT_HEADER: str(info.limit),
        REMAINING_HEADER: str(info.remaining),
        RESET_HEADER: str(info.reset),
    }


def apply_rate_limit_headers(headers: MutableMapping[str, str], info: RateLimitInfo) -> None:
    """Write the three X-RateLimit-* headers onto an existing header mapping."""
    headers.update(build_rate_limit_headers(info))
