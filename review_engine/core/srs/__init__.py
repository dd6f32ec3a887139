"""Pure scheduling primitives."""
from review_engine.core.srs.sm2 import (
    DEFAULT_PARAMETERS,
    PHASE_PRIORITY,
    Grade,
    ReviewPhase,
    ReviewState,
    SchedulingParameters,
    coerce_grade,
    days_until_review,
    grade_from_correctness,
    grade_review,
    is_due,
    new_review_state,
)

__all__ = [
    "DEFAULT_PARAMETERS",
    "PHASE_PRIORITY",
    "Grade",
    "ReviewPhase",
    "ReviewState",
    "SchedulingParameters",
    "coerce_grade",
    "days_until_review",
    "grade_from_correctness",
    "grade_review",
    "is_due",
    "new_review_state",
]
