"""Shared test fixtures and configuration.

Sets up fake environment variables before any hourlog imports and provides
common fixtures like a temp DB, a service and a registered user.
"""

import os
import tempfile

# Patch env vars BEFORE any hourlog imports
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.gettempdir(), "hourlog-tests.db"))
os.environ.setdefault("DB_BUSY_TIMEOUT_SECONDS", "10")

from datetime import datetime, timezone

import pytest

# 15:00 UTC on Tuesday 2026-03-10
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = "2026-03-10"


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_hourlog.db")


@pytest.fixture
def db(tmp_db_path):
    """Return a Database backed by a temp file."""
    from hourlog.data.db import Database
    return Database(db_path=tmp_db_path)


@pytest.fixture
def service(db):
    """Return a DayService with no enrichment configured."""
    from hourlog.core.day_service import DayService
    return DayService(db)


@pytest.fixture
def user(service):
    """A registered user on UTC."""
    return service.register_user("Amit", "UTC")


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def today():
    return TODAY
