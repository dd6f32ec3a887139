"""Pydantic models for review engine endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator


class EnrollRequest(BaseModel):
    """Payload registering learnable items for a learner."""

    learner_id: str = Field(..., min_length=1)
    item_ids: list[str] = Field(..., min_length=1)


class ReviewStateRead(BaseModel):
    """Scheduling record of one learner/item pair."""

    learner_id: str
    item_id: str
    state: str
    ease_factor: float
    interval_days: int
    repetition_count: int
    lapse_count: int
    due_at: datetime
    last_reviewed_at: datetime | None = None
    days_until_review: int | None = None


class TombstoneResponse(BaseModel):
    """Result of deleting an item from scheduling."""

    item_id: str
    tombstoned_states: int


class SessionStartRequest(BaseModel):
    """Payload for opening a review session."""

    learner_id: str = Field(..., min_length=1)
    limit: int | None = Field(None, description="Maximum items in the batch; defaults to the configured batch size")


class SessionStartResponse(BaseModel):
    """Batch drawn for a new session; empty when everything is reviewed."""

    session_id: str | None = None
    batch: list[str] = Field(default_factory=list)
    total_due: int = 0
    all_caught_up: bool = False


class GradeRequest(BaseModel):
    """Grade submission for one batch item.

    Either ``grade`` (0 Again, 1 Hard, 2 Good, 3 Easy) or a binary ``correct``
    flag must be supplied.
    """

    item_id: str = Field(..., min_length=1)
    grade: int | None = None
    correct: bool | None = None

    @model_validator(mode="after")
    def _exactly_one_signal(self) -> "GradeRequest":
        if (self.grade is None) == (self.correct is None):
            raise ValueError("Provide exactly one of 'grade' or 'correct'")
        return self


class GradeResponse(BaseModel):
    """Schedule produced by a grade."""

    item_id: str
    new_due_at: datetime
    new_state: str
    interval_days: int
    ease_factor: float


class SessionSummaryResponse(BaseModel):
    """Counters reported when a session ends."""

    session_id: str
    learner_id: str
    started_at: datetime
    ended_at: datetime
    completed_count: int
    correct_count: int
    total_count: int
    graded_item_ids: list[str]
    remaining_item_ids: list[str]
    is_review: bool = True


class ReviewForecastRead(BaseModel):
    due_today: int
    due_this_week: int
    due_next_week: int
    due_by_date: dict[str, int]


class ReviewPerformanceRead(BaseModel):
    total_reviews: int
    correct_reviews: int
    efficiency: float
    streak_days: int


class ReviewStatsResponse(BaseModel):
    """Dashboard statistics for a learner."""

    learner_id: str
    forecast: ReviewForecastRead
    performance: ReviewPerformanceRead
