"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time; keep tests off any real database
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from collections.abc import Generator  # noqa: E402
from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from mastery_engine.api.v1.endpoints.learning import get_rng  # noqa: E402
from mastery_engine.db.base import create_all_tables  # noqa: E402
from mastery_engine.db.session import get_db  # noqa: E402
from mastery_engine.learning_engine.bandit.sampling import create_seeded_rng  # noqa: E402
from mastery_engine.main import app  # noqa: E402


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database with all tables."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_all_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(scope="function")
def db(engine: Engine) -> Generator[Session, None, None]:
    """Session bound to the in-memory database."""
    session = Session(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """API client sharing the test session, with a seeded selection RNG."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_rng] = lambda: create_seeded_rng(42)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def now() -> datetime:
    """Fixed reference time."""
    return datetime(2025, 3, 10, 12, 0, tzinfo=UTC)
