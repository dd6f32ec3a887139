"""Shared API dependencies."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from review_engine.config import settings
from review_engine.core.srs.sm2 import SchedulingParameters
from review_engine.db.session import SessionLocal
from review_engine.services.review_session import (
    ReviewSessionRegistry,
    ReviewSessionService,
    session_registry,
)
from review_engine.services.statistics import ReviewStatisticsService
from review_engine.services.store import SQLAlchemyReviewStateStore


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for request lifetime."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_now() -> datetime:
    """Wall-clock time for the current request."""

    return datetime.now(timezone.utc)


def get_review_store(db: Session = Depends(get_db)) -> SQLAlchemyReviewStateStore:
    return SQLAlchemyReviewStateStore(db, compare_and_swap=settings.REVIEW_COMPARE_AND_SWAP)


def get_session_registry() -> ReviewSessionRegistry:
    return session_registry


def get_review_session_service(
    store: SQLAlchemyReviewStateStore = Depends(get_review_store),
    registry: ReviewSessionRegistry = Depends(get_session_registry),
) -> ReviewSessionService:
    """Assemble the session orchestrator with request-scoped storage."""

    params = SchedulingParameters(max_interval_days=settings.REVIEW_MAX_INTERVAL_DAYS)
    return ReviewSessionService(store, registry=registry, params=params)


def get_statistics_service(
    store: SQLAlchemyReviewStateStore = Depends(get_review_store),
) -> ReviewStatisticsService:
    return ReviewStatisticsService(store)
