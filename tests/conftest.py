"""Pytest fixtures for the review engine."""

import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from review_engine.api.deps import get_db, get_now
from review_engine.db import models  # noqa: F401  # Imported for side effects
from review_engine.db.base import Base
from review_engine.main import create_app
from review_engine.services.review_session import ReviewSessionRegistry, session_registry
from review_engine.services.store import InMemoryReviewStateStore, SQLAlchemyReviewStateStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(scope="session")
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session(db_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=db_engine, expire_on_commit=False
    )
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        db.close()


@pytest.fixture(autouse=True)
def clear_sessions() -> Generator[None, None, None]:
    session_registry.clear()
    try:
        yield
    finally:
        session_registry.clear()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def sql_store(db_session) -> SQLAlchemyReviewStateStore:
    return SQLAlchemyReviewStateStore(db_session)


@pytest.fixture()
def memory_store() -> InMemoryReviewStateStore:
    return InMemoryReviewStateStore()


@pytest.fixture(params=["sql", "memory"])
def store(request):
    """Run a test against both store adapters."""

    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture()
def registry() -> ReviewSessionRegistry:
    return ReviewSessionRegistry(ttl_minutes=60)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture()
def client(db_session: Session, clock: FrozenClock) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_now] = clock
    with TestClient(app) as test_client:
        yield test_client
