"""SQLAlchemy-backed rate limit store.

Counters live in the ``rate_limit_records`` table so limits hold across
process restarts and across every replica pointed at the same database.
Atomicity comes from the database, not from in-process locks:

- increment: ``UPDATE ... SET count = count + 1 WHERE key = :key AND
  count < :max AND expires_at >= :now``, so a full or expired window is
  never bumped.
- upsert: ``INSERT ... ON CONFLICT (key) DO UPDATE ... WHERE expires_at < :now``
  on SQLite/PostgreSQL, update-then-insert elsewhere. Only one of several
  callers racing to open a window wins.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ratekeeper.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitWindow
from ratekeeper.core.errors import StorageAppError
from ratekeeper.db.models import RateLimitRecord
from ratekeeper.db.session import Database

logger = logging.getLogger(__name__)

# Core table: conditional writes rely on the cursor rowcount.
_records = RateLimitRecord.__table__

_DIALECT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _to_db(value: datetime) -> datetime:
    """Normalise to naive UTC for storage."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_window(record: RateLimitRecord) -> RateLimitWindow:
    return RateLimitWindow(key=record.key, count=record.count, expires_at=_from_db(record.expires_at))


class SqlAlchemyRateLimitStore(AbstractRateLimitStore):
    """Store implementation on top of a shared relational table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def _fetch(self, session: Session, key: str) -> RateLimitWindow | None:
        record = session.execute(
            select(RateLimitRecord).where(RateLimitRecord.key == key)
        ).scalar_one_or_none()
        return _to_window(record) if record is not None else None

    def find_one(self, key: str) -> RateLimitWindow | None:
        try:
            with self._db.session_scope() as session:
                return self._fetch(session, key)
        except SQLAlchemyError as exc:
            raise self._storage_error("find_one", exc) from exc

    def upsert(
        self,
        key: str,
        *,
        count: int,
        expires_at: datetime,
        now: datetime | None = None,
    ) -> RateLimitWindow | None:
        values = {"key": key, "count": count, "expires_at": _to_db(expires_at)}
        live_before = _to_db(now) if now is not None else None
        try:
            with self._db.session_scope() as session:
                dialect_insert = _DIALECT_INSERTS.get(self._db.dialect)
                if dialect_insert is not None:
                    stmt = dialect_insert(_records).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[_records.c.key],
                        set_={"count": stmt.excluded["count"], "expires_at": stmt.excluded["expires_at"]},
                        where=_records.c.expires_at < live_before if live_before is not None else None,
                    )
                    written = session.execute(stmt).rowcount
                else:
                    written = self._portable_upsert(session, values, live_before)
                window = self._fetch(session, key) if written else None
        except SQLAlchemyError as exc:
            raise self._storage_error("upsert", exc) from exc
        if not written:
            return None
        if window is None:
            # Deleted by a concurrent reset between write and read-back.
            return RateLimitWindow(key=key, count=count, expires_at=expires_at)
        return window

    def _portable_upsert(self, session: Session, values: dict, live_before: datetime | None) -> int:
        replace = (
            update(_records)
            .where(_records.c.key == values["key"])
            .values(count=values["count"], expires_at=values["expires_at"])
        )
        if live_before is not None:
            replace = replace.where(_records.c.expires_at < live_before)
        if session.execute(replace).rowcount:
            return 1
        try:
            with session.begin_nested():
                session.execute(insert(_records).values(**values))
        except IntegrityError:
            if live_before is not None:
                # A live window already exists or another writer just created one.
                return 0
            return session.execute(replace).rowcount
        return 1

    def increment_count(self, key: str, *, max_requests: int, now: datetime) -> RateLimitWindow | None:
        try:
            with self._db.session_scope() as session:
                result = session.execute(
                    update(_records)
                    .where(
                        _records.c.key == key,
                        _records.c.count < max_requests,
                        _records.c.expires_at >= _to_db(now),
                    )
                    .values(count=_records.c.count + 1)
                )
                return self._fetch(session, key) if result.rowcount else None
        except SQLAlchemyError as exc:
            raise self._storage_error("increment_count", exc) from exc

    def delete_expired(self, now: datetime) -> int:
        with self._db.session_scope() as session:
            result = session.execute(delete(_records).where(_records.c.expires_at < _to_db(now)))
            return result.rowcount or 0

    def delete_key(self, key: str) -> int:
        try:
            with self._db.session_scope() as session:
                result = session.execute(delete(_records).where(_records.c.key == key))
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise self._storage_error("delete_key", exc) from exc


    @staticmethod
    def _storage_error(operation: str, exc: SQLAlchemyError) -> StorageAppError:
        logger.error(
            "rate_limit.storage_failed",
            extra={"operation": operation, "error_type": type(exc).__name__},
        )
        return StorageAppError(
            code="rate_limit_storage_unavailable",
            message="Rate limit storage is unavailable",
            details={"operation": operation},
        )
