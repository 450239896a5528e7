"""Factory for the configured rate limit store."""

from __future__ import annotations

from ratekeeper.adapters.rate_limit.base import AbstractRateLimitStore
from ratekeeper.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from ratekeeper.adapters.rate_limit.sql import SqlAlchemyRateLimitStore
from ratekeeper.core.config import RateLimitSettings
from ratekeeper.core.errors import ValidationAppError
from ratekeeper.db.session import Database


def create_rate_limit_store(
    rate_limit_settings: RateLimitSettings,
    database: Database | None = None,
) -> AbstractRateLimitStore:
    """Instantiate the store selected by RATE_LIMIT_BACKEND.

    Args:
        rate_limit_settings: Rate limit configuration.
        database: Shared database handle; required for the database backend.

    Returns:
        AbstractRateLimitStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown or its requirements are not met.
    """
    backend = rate_limit_settings.backend.lower()

    if backend == "database":
        if database is None:
            raise ValidationAppError(
                code="rate_limit_missing_database",
                message="The database rate limit backend requires a configured database",
            )
        return SqlAlchemyRateLimitStore(database)

    if backend == "memory":
        return InMemoryRateLimitStore()

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=f"Unknown rate limit backend: '{backend}'. Supported backends: database, memory",
    )
