from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ratekeeper.core.auth import verify_api_key
from ratekeeper.core.logging import hash_for_log
from ratekeeper.core.rate_limit import (
    get_policy_limiter,
    get_rate_limiter_registry,
    rate_limit,
    resolve_client_ip,
)
from ratekeeper.schemas.rate_limit import RateLimitStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rate-limits", tags=["Rate Limits"])


@router.get(
    "/{policy}/{scope}",
    response_model=RateLimitStatusResponse,
    dependencies=[Depends(rate_limit(scope="rate-limits"))],
)
async def get_rate_limit_status(policy: str, scope: str, request: Request) -> RateLimitStatusResponse:
    """Report the caller's quota for ``scope`` under ``policy``.

    Read-only: the inspected window is not consumed or created. The endpoint
    itself is throttled under the default policy.
    """
    limiter = get_policy_limiter(get_rate_limiter_registry(request), policy)
    info = await asyncio.to_thread(limiter.check, f"{scope}:{resolve_client_ip(request)}")
    return RateLimitStatusResponse(
        policy=policy,
        scope=scope,
        limit=info.limit,
        remaining=info.remaining,
        reset=info.reset,
        window_seconds=limiter.window_seconds,
    )


@router.delete(
    "/{policy}/{scope}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(verify_api_key)],
)
async def reset_rate_limit(
    policy: str,
    scope: str,
    request: Request,
    client: str = Query(..., min_length=1, description="Client IP whose window should be cleared."),
) -> None:
    """Clear one client's window so its next request starts a fresh quota."""
    limiter = get_policy_limiter(get_rate_limiter_registry(request), policy)
    identifier = f"{scope}:{client}"
    await asyncio.to_thread(limiter.reset, identifier)
    logger.info(
        "rate_limit.admin_reset",
        extra={"policy": policy, "scope": scope, "identifier_hash": hash_for_log(identifier)},
    )
