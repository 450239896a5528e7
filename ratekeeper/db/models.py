"""Database models for the rate limiter."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String

from .session import Base


class RateLimitRecord(Base):
    """One fixed-window counter, addressed by its namespaced limiter key.

    ``expires_at`` is stored as naive UTC so comparisons behave the same on
    SQLite (which drops tzinfo) and PostgreSQL.
    """

    __tablename__ = "rate_limit_records"

    key = Column(String(512), primary_key=True)
    count = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<RateLimitRecord key={self.key!r} count={self.count} expires_at={self.expires_at}>"
