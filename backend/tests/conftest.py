"""
Test configuration.

Settings are read once and cached, so the environment must be fixed
before any `kyb` module is imported: an in-memory SQLite database, no
Redis cache and no API keys.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CACHE_ENABLED"] = "false"
os.environ["ENV"] = "dev"
for _key in ("API_AUTH_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY", "EXA_API_KEY", "COMPANIES_HOUSE_API_KEY"):
    os.environ.pop(_key, None)

import pytest

from kyb.core.db import Base, engine
from kyb.models.kyb_job import KybJob  # noqa: F401  (registers the table)
from kyb.models.kyb_log_entry import KybLogEntry  # noqa: F401
from kyb.services.job_store import JobStore


@pytest.fixture(autouse=True)
def db_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store() -> JobStore:
    return JobStore()
