"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests. It
points the default settings at a throwaway SQLite file so importing
``ratekeeper.main`` never touches a real database.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

# CRITICAL: Set these before any imports that might load settings
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="ratekeeper-tests-"))
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DB_URL", f"sqlite:///{_TEST_DB_DIR / 'default.db'}")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from ratekeeper.adapters.rate_limit.in_memory import InMemoryRateLimitStore  # noqa: E402
from ratekeeper.adapters.rate_limit.sql import SqlAlchemyRateLimitStore  # noqa: E402
from ratekeeper.db.session import Database  # noqa: E402

START = 1_700_000_000.0


@pytest.fixture
def clock() -> Mock:
    """Fake time source returning fixed UNIX seconds; tests move it by hand."""
    return Mock(return_value=START)


@pytest.fixture
def database(tmp_path: Path):
    db = Database(f"sqlite:///{tmp_path / 'rate_limits.db'}")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def sql_store(database: Database) -> SqlAlchemyRateLimitStore:
    return SqlAlchemyRateLimitStore(database)


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path: Path):
    """Run a test against both store implementations."""
    if request.param == "memory":
        yield InMemoryRateLimitStore()
        return
    db = Database(f"sqlite:///{tmp_path / 'param.db'}")
    db.create_tables()
    yield SqlAlchemyRateLimitStore(db)
    db.dispose()
