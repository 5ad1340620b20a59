"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Database session (in-memory SQLite)
- In-memory repository and scripted provider
- Reconciler config with fast provider retries
"""

import os

# Keep the module-level engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from reconciler.config import ReconcilerConfig
from reconciler.db.models import Base
from tests.helpers import FakeProvider, InMemoryRepository


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Create an in-memory SQLite database for testing.

    Creates all tables, yields a session, and cleans up after test.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def config() -> ReconcilerConfig:
    """Config with no provider backoff so retry paths run instantly."""
    return ReconcilerConfig(
        provider={"max_attempts": 2, "backoff_seconds": 0},
        processing_errors={"max_retries": 3},
    )
