"""Pydantic schemas package."""

from review_engine.schemas.review import (
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

__all__ = [
    "EnrollRequest",
    "GradeRequest",
    "GradeResponse",
    "ReviewForecastRead",
    "ReviewPerformanceRead",
    "ReviewStateRead",
    "ReviewStatsResponse",
    "SessionStartRequest",
    "SessionStartResponse",
    "SessionSummaryResponse",
    "TombstoneResponse",
]
