"""Custom exception classes and error handling utilities."""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from loguru import logger


class ReviewEngineException(Exception):
    """Base exception for the review engine."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NoDueItemsError(ReviewEngineException):
    """Nothing is due for the learner; the caller should show the all-caught-up state."""

    def __init__(self, learner_id: str):
        super().__init__(
            f"No items are due for learner {learner_id}", {"learner_id": learner_id}
        )


class InvalidGradeError(ReviewEngineException):
    """A grade outside Again/Hard/Good/Easy was submitted."""

    def __init__(self, grade: Any):
        super().__init__(
            f"Invalid grade {grade!r}; expected 0 (Again) to 3 (Easy)", {"grade": grade}
        )


class InvalidLimitError(ReviewEngineException):
    """A batch limit outside the accepted range was requested."""

    def __init__(self, limit: Any, maximum: int):
        super().__init__(
            f"Batch limit must be between 1 and {maximum}, got {limit!r}",
            {"limit": limit, "maximum": maximum},
        )


class SessionNotFoundError(ReviewEngineException):
    """The session id is unknown, already ended, or expired."""

    def __init__(self, session_id: str):
        super().__init__(f"Review session {session_id} not found", {"session_id": session_id})


class ItemNotInSessionError(ReviewEngineException):
    """The graded item was not part of the session batch."""

    def __init__(self, session_id: str, item_id: str):
        super().__init__(
            f"Item {item_id} is not part of review session {session_id}",
            {"session_id": session_id, "item_id": item_id},
        )


class AlreadyPresentedError(ReviewEngineException):
    """The item has already been graded in this session."""

    def __init__(self, session_id: str, item_id: str):
        super().__init__(
            f"Item {item_id} was already graded in review session {session_id}",
            {"session_id": session_id, "item_id": item_id},
        )


class TombstonedItemError(ReviewEngineException):
    """The item was deleted after the session batch was drawn."""

    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} has been deleted", {"item_id": item_id})


class StaleReviewStateError(ReviewEngineException):
    """A versioned save lost a race against a concurrent writer."""

    def __init__(self, learner_id: str, item_id: str, expected_version: int):
        super().__init__(
            f"Review state for learner {learner_id} and item {item_id} changed concurrently",
            {
                "learner_id": learner_id,
                "item_id": item_id,
                "expected_version": expected_version,
            },
        )


def handle_misuse_error(error: ReviewEngineException) -> HTTPException:
    """Handle collaborator bugs: bad grades, bad limits, foreign items."""
    logger.warning(f"Review request rejected: {error.message}")
    code = status.HTTP_400_BAD_REQUEST
    if isinstance(error, (InvalidGradeError, InvalidLimitError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return HTTPException(
        status_code=code,
        detail={"message": error.message, "details": error.details},
    )


def handle_session_not_found_error(error: SessionNotFoundError) -> HTTPException:
    """Handle unknown or expired review sessions."""
    logger.warning(f"Session error: {error.message}")
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)


def handle_conflict_error(error: ReviewEngineException) -> HTTPException:
    """Handle duplicate grades, deleted items and lost compare-and-swap races."""
    logger.warning(f"Review conflict: {error.message}")
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"message": error.message, "details": error.details},
    )


def handle_database_error(error: Exception) -> HTTPException:
    """Handle database errors and return appropriate HTTP response."""
    logger.error(f"Database error: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Database operation failed. Outcome unknown; do not assume the review was saved.",
    )
