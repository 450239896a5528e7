"""Database engine and session management."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ratekeeper.core.config import DatabaseSettings

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Owns one SQLAlchemy engine and the session factory bound to it.

    Built once at application startup and shared by reference with every
    store that needs it.
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        engine_kwargs: dict[str, Any] = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            # Sessions are opened from worker threads (asyncio.to_thread).
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.url = url
        self.engine: Engine = create_engine(url, **engine_kwargs)
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine, expire_on_commit=False, future=True
        )

    @classmethod
    def from_settings(cls, db_settings: DatabaseSettings) -> "Database":
        return cls(db_settings.url, echo=db_settings.echo)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_tables(self) -> None:
        """Create database tables if they do not already exist."""

        # Imported for its side effect of registering the models on Base.
        from ratekeeper.db import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("db.tables_ready", extra={"dialect": self.dialect})

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> None:
        """Run a trivial query; raises if the database is unreachable."""

        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()
