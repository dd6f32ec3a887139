"""Endpoints for review scheduling and review sessions."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from review_engine.api.deps import (
    get_now,
    get_review_session_service,
    get_statistics_service,
)
from review_engine.config import settings
from review_engine.core.srs.sm2 import ReviewState, days_until_review, grade_from_correctness
from review_engine.schemas import (
    EnrollRequest,
    GradeRequest,
    GradeResponse,
    ReviewForecastRead,
    ReviewPerformanceRead,
    ReviewStateRead,
    ReviewStatsResponse,
    SessionStartRequest,
    SessionStartResponse,
    SessionSummaryResponse,
    TombstoneResponse,
)
from review_engine.services.review_session import ReviewSessionService
from review_engine.services.statistics import ReviewStatisticsService
from review_engine.utils.exceptions import (
    AlreadyPresentedError,
    NoDueItemsError,
    ReviewEngineException,
    SessionNotFoundError,
    StaleReviewStateError,
    TombstonedItemError,
    handle_conflict_error,
    handle_database_error,
    handle_misuse_error,
    handle_session_not_found_error,
)


router = APIRouter(prefix="/reviews", tags=["reviews"])


def _http_error(exc: ReviewEngineException) -> HTTPException:
    if isinstance(exc, SessionNotFoundError):
        return handle_session_not_found_error(exc)
    if isinstance(exc, (AlreadyPresentedError, TombstonedItemError, StaleReviewStateError)):
        return handle_conflict_error(exc)
    return handle_misuse_error(exc)


def _state_to_schema(state: ReviewState, now: datetime) -> ReviewStateRead:
    return ReviewStateRead(
        learner_id=state.learner_id,
        item_id=state.item_id,
        state=state.phase.value,
        ease_factor=state.ease_factor,
        interval_days=state.interval_days,
        repetition_count=state.repetition_count,
        lapse_count=state.lapse_count,
        due_at=state.due_at,
        last_reviewed_at=state.last_reviewed_at,
        days_until_review=days_until_review(state.due_at, now),
    )


@router.post("/items", response_model=list[ReviewStateRead])
def enroll_items(
    payload: EnrollRequest,
    *,
    service: ReviewSessionService = Depends(get_review_session_service),
    now: datetime = Depends(get_now),
) -> list[ReviewStateRead]:
    """Register items so they enter the learner's schedule."""

    states = service.enroll(payload.learner_id, payload.item_ids, now)
    return [_state_to_schema(state, now) for state in states]


@router.delete("/items/{item_id}", response_model=TombstoneResponse)
def tombstone_item(
    item_id: str,
    *,
    service: ReviewSessionService = Depends(get_review_session_service),
    now: datetime = Depends(get_now),
) -> TombstoneResponse:
    """Remove a deleted item from scheduling while keeping its history."""

    count = service.tombstone_item(item_id, now)
    return TombstoneResponse(item_id=item_id, tombstoned_states=count)


@router.get("/due", response_model=list[ReviewStateRead])
def list_due_items(
    *,
    learner_id: str = Query(..., min_length=1),
    limit: int = Query(settings.REVIEW_BATCH_LIMIT, description="Maximum number of due items to return"),
    service: ReviewSessionService = Depends(get_review_session_service),
    now: datetime = Depends(get_now),
) -> list[ReviewStateRead]:
    """Return due items in review order without opening a session."""

    try:
        states = list(service.selector.due_items(learner_id, limit, now))
    except ReviewEngineException as exc:
        raise _http_error(exc) from exc
    return [_state_to_schema(state, now) for state in states]


@router.post("/sessions", response_model=SessionStartResponse)
def start_session(
    payload: SessionStartRequest,
    *,
    service: ReviewSessionService = Depends(get_review_session_service),
    now: datetime = Depends(get_now),
) -> SessionStartResponse:
    """Draw a batch of due items; an empty batch means all caught up."""

    limit = payload.limit if payload.limit is not None else settings.REVIEW_BATCH_LIMIT
    try:
        session = service.start_session(payload.learner_id, limit, now)
    except NoDueItemsError:
        return SessionStartResponse(all_caught_up=True)
    except ReviewEngineException as exc:
        raise _http_error(exc) from exc
    return SessionStartResponse(
        session_id=session.session_id,
        batch=list(session.batch),
        total_due=service.selector.count_due(payload.learner_id, now),
    )


@router.post("/sessions/{session_id}/grades", response_model=GradeResponse)
def grade_item(
    session_id: str,
    payload: GradeRequest,
    *,
    service: ReviewSessionService = Depends(get_review_session_service),
    now: datetime = Depends(get_now),
) -> GradeResponse:
    """Apply a grade to one item of the session batch."""

    grade = payload.grade if payload.grade is not None else grade_from_correctness(payload.correct)
    try:
        state = service.grade_item(session_id, payload.item_id, grade, now)
    except ReviewEngineException as exc:
        raise _http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise handle_database_error(exc) from exc
    return GradeResponse(
        item_id=state.item_id,
        new_due_at=state.due_at,
        new_state=state.phase.value,
        interval_days=state.interval_days,
        ease_factor=state.ease_factor,
    )


@router.post("/sessions/{session_id}/end", response_model=SessionSummaryResponse)
def end_session(
    session_id: str,
    *,
    service: ReviewSessionService = Depends(get_review_session_service),
    now: datetime = Depends(get_now),
) -> SessionSummaryResponse:
    """Close a session, graded or not, and report its counters."""

    try:
        summary = service.end_session(session_id, now)
    except ReviewEngineException as exc:
        raise _http_error(exc) from exc
    return SessionSummaryResponse(
        session_id=summary.session_id,
        learner_id=summary.learner_id,
        started_at=summary.started_at,
        ended_at=summary.ended_at,
        completed_count=summary.completed_count,
        correct_count=summary.correct_count,
        total_count=summary.total_count,
        graded_item_ids=summary.graded_item_ids,
        remaining_item_ids=summary.remaining_item_ids,
        is_review=summary.is_review,
    )


@router.get("/stats", response_model=ReviewStatsResponse)
def get_review_stats(
    *,
    learner_id: str = Query(..., min_length=1),
    lookback_days: int | None = Query(None, ge=1, description="Only count reviews from the last N days"),
    service: ReviewStatisticsService = Depends(get_statistics_service),
    now: datetime = Depends(get_now),
) -> ReviewStatsResponse:
    """Return the review forecast and recent performance for a learner."""

    forecast = service.schedule_forecast(learner_id, now)
    performance = service.review_performance(learner_id, now, lookback_days=lookback_days)
    return ReviewStatsResponse(
        learner_id=learner_id,
        forecast=ReviewForecastRead(
            due_today=forecast.due_today,
            due_this_week=forecast.due_this_week,
            due_next_week=forecast.due_next_week,
            due_by_date=forecast.due_by_date,
        ),
        performance=ReviewPerformanceRead(
            total_reviews=performance.total_reviews,
            correct_reviews=performance.correct_reviews,
            efficiency=performance.efficiency,
            streak_days=performance.streak_days,
        ),
    )
