from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ratekeeper.schemas.rate_limit import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse | JSONResponse:
    """Health check endpoint.

    Runs ``SELECT 1`` against the rate limit database. Returns 200 when it
    answers and 503 otherwise, so load balancers can take the replica out of
    rotation when counters cannot be persisted.
    """

    timestamp = datetime.now(timezone.utc)
    try:
        await asyncio.to_thread(request.app.state.database.ping)
    except SQLAlchemyError as exc:
        logger.error("health.database_unreachable", extra={"error_type": type(exc).__name__})
        body = HealthResponse(
            status="unhealthy",
            timestamp=timestamp,
            services={"database": "disconnected", "api": "running"},
            error=str(exc),
        )
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))

    return HealthResponse(
        status="healthy",
        timestamp=timestamp,
        services={"database": "connected", "api": "running"},
    )
