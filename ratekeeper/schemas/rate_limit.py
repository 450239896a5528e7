"""Pydantic schemas for rate limit and health responses."""

from __future__ import annotations

from datetime import datetime
from typing import Dict

from pydantic import BaseModel, Field


class RateLimitStatusResponse(BaseModel):
    """Quota for one client under one policy, as reported by check()."""

    policy: str = Field(..., description="Registered policy name (default, auth, strict, ...).")
    scope: str = Field(..., description="Route qualifier the quota is tracked under.")
    limit: int = Field(..., description="Maximum requests per window.")
    remaining: int = Field(..., description="Requests left in the current window.")
    reset: int = Field(
        ...,
        description=(
            "UNIX epoch seconds when the current window ends; for a client with no "
            "live window this is when a window started now would end."
        ),
    )
    window_seconds: int = Field(..., description="Window length of the policy in seconds.")


class HealthResponse(BaseModel):
    """Liveness plus database connectivity."""

    status: str = Field(..., description="'healthy' or 'unhealthy'.")
    timestamp: datetime
    services: Dict[str, str] = Field(default_factory=dict)
    error: str | None = Field(default=None, description="Database error message when unhealthy.")
