"""SM-2 family spaced repetition scheduler.

The scheduler is a pure function over :class:`ReviewState`: it never touches
storage or the wall clock. Callers thread ``now`` through explicitly so the
same inputs always yield the same schedule.

Phases follow a small state machine::

    new --(any grade)--> learning --(2 passes)--> review
    review --(again)--> relearning --(1 pass)--> review

A failed answer (``Grade.AGAIN``) resets the repetition streak, lowers the
ease factor and schedules the item for tomorrow. A passing answer grows the
interval by the ease factor scaled with a per-grade multiplier.
"""
from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, Mapping

from review_engine.utils.exceptions import InvalidGradeError

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5
LAPSE_EASE_PENALTY = 0.2

TZ = dt.timezone.utc


class Grade(IntEnum):
    """Recall quality reported for one review."""

    AGAIN = 0
    HARD = 1
    GOOD = 2
    EASY = 3


class ReviewPhase(str, Enum):
    """Scheduling phase of a learner/item pair."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


# Lower value wins when overdue magnitude ties.
PHASE_PRIORITY: dict[ReviewPhase, int] = {
    ReviewPhase.RELEARNING: 0,
    ReviewPhase.LEARNING: 1,
    ReviewPhase.REVIEW: 2,
    ReviewPhase.NEW: 3,
}


@dataclass(frozen=True, slots=True)
class SchedulingParameters:
    """Tunable constants of the scheduler."""

    initial_ease_factor: float = DEFAULT_EASE_FACTOR
    min_ease_factor: float = MIN_EASE_FACTOR
    lapse_ease_penalty: float = LAPSE_EASE_PENALTY
    lapse_interval_days: int = 1
    first_interval_days: int = 1
    max_interval_days: int = 36500
    grade_multipliers: Mapping[Grade, float] = field(
        default_factory=lambda: {Grade.HARD: 0.85, Grade.GOOD: 1.0, Grade.EASY: 1.3}
    )
    ease_deltas: Mapping[Grade, float] = field(
        default_factory=lambda: {Grade.HARD: -0.15, Grade.GOOD: 0.0, Grade.EASY: 0.10}
    )
    graduation_thresholds: Mapping[ReviewPhase, int] = field(
        default_factory=lambda: {ReviewPhase.LEARNING: 2, ReviewPhase.RELEARNING: 1}
    )


DEFAULT_PARAMETERS = SchedulingParameters()


@dataclass(frozen=True, slots=True)
class ReviewState:
    """Scheduling record for one learner and one learnable item."""

    learner_id: str
    item_id: str
    due_at: dt.datetime
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval_days: int = 0
    repetition_count: int = 0
    lapse_count: int = 0
    phase: ReviewPhase = ReviewPhase.NEW
    last_reviewed_at: dt.datetime | None = None
    tombstoned_at: dt.datetime | None = None
    version: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return self.learner_id, self.item_id

    @property
    def is_tombstoned(self) -> bool:
        return self.tombstoned_at is not None


def ensure_utc(value: dt.datetime | None) -> dt.datetime | None:
    """Attach UTC to naive datetimes and normalise aware ones."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=TZ)
    return value.astimezone(TZ)


def new_review_state(
    learner_id: str,
    item_id: str,
    now: dt.datetime,
    params: SchedulingParameters = DEFAULT_PARAMETERS,
) -> ReviewState:
    """Return the initial state of a never-reviewed item, due immediately."""

    return ReviewState(
        learner_id=learner_id,
        item_id=item_id,
        due_at=ensure_utc(now),
        ease_factor=params.initial_ease_factor,
    )


def coerce_grade(value: Any) -> Grade:
    """Validate a raw grade value."""

    if isinstance(value, Grade):
        return value
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidGradeError(value)
    try:
        return Grade(value)
    except ValueError as exc:
        raise InvalidGradeError(value) from exc


def grade_from_correctness(correct: bool) -> Grade:
    """Map a binary outcome onto the grade scale."""

    return Grade.GOOD if correct else Grade.AGAIN


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def next_interval(
    interval_days: int,
    ease_factor: float,
    grade: Grade,
    params: SchedulingParameters = DEFAULT_PARAMETERS,
) -> int:
    """Return the interval following a passing grade."""

    if interval_days <= 0:
        return params.first_interval_days
    adjusted = ease_factor * params.grade_multipliers[grade]
    grown = max(1, _round_half_up(interval_days * adjusted))
    return min(grown, params.max_interval_days)


def grade_review(
    state: ReviewState,
    grade: Any,
    now: dt.datetime,
    params: SchedulingParameters = DEFAULT_PARAMETERS,
) -> ReviewState:
    """Apply one graded review and return the rescheduled state.

    Args:
        state: Current scheduling record; left untouched.
        grade: A :class:`Grade` or its integer value (0-3).
        now: Time of the review.
        params: Scheduler constants.

    Raises:
        InvalidGradeError: ``grade`` is not one of the four grades.
    """
    grade = coerce_grade(grade)
    now = ensure_utc(now)

    phase = state.phase
    if phase is ReviewPhase.NEW:
        phase = ReviewPhase.LEARNING

    if grade is Grade.AGAIN:
        ease_factor = max(params.min_ease_factor, state.ease_factor - params.lapse_ease_penalty)
        interval_days = params.lapse_interval_days
        repetition_count = 0
        lapse_count = state.lapse_count + 1
        if phase in (ReviewPhase.REVIEW, ReviewPhase.RELEARNING):
            phase = ReviewPhase.RELEARNING
    else:
        repetition_count = state.repetition_count + 1
        lapse_count = state.lapse_count
        interval_days = next_interval(state.interval_days, state.ease_factor, grade, params)
        ease_factor = max(params.min_ease_factor, state.ease_factor + params.ease_deltas[grade])
        threshold = params.graduation_thresholds.get(phase)
        if threshold is not None and repetition_count >= threshold:
            phase = ReviewPhase.REVIEW

    return replace(
        state,
        ease_factor=ease_factor,
        interval_days=interval_days,
        repetition_count=repetition_count,
        lapse_count=lapse_count,
        phase=phase,
        last_reviewed_at=now,
        due_at=now + dt.timedelta(days=interval_days),
    )


def is_due(state: ReviewState, now: dt.datetime) -> bool:
    """Return whether the item may be presented at ``now``."""

    if state.is_tombstoned:
        return False
    return ensure_utc(state.due_at) <= ensure_utc(now)


def days_until_review(due_at: dt.datetime | None, now: dt.datetime) -> int | None:
    """Calendar days from ``now`` to ``due_at``; negative when overdue."""

    if due_at is None:
        return None
    return (ensure_utc(due_at).date() - ensure_utc(now).date()).days
