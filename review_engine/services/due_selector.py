"""Selection of the items a learner should review next."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Iterator

from review_engine.config import settings
from review_engine.core.srs.sm2 import PHASE_PRIORITY, ReviewState, ensure_utc
from review_engine.utils.exceptions import InvalidLimitError

if TYPE_CHECKING:
    from review_engine.services.store import ReviewStateStore


def due_order_key(state: ReviewState) -> tuple[datetime, int, str]:
    """Sort key: most overdue first, then phase priority, then item id.

    The earliest ``due_at`` is the most overdue for any fixed ``now``, so the
    key does not depend on the query time.
    """
    return (
        ensure_utc(state.due_at),
        PHASE_PRIORITY.get(state.phase, len(PHASE_PRIORITY)),
        state.item_id,
    )


class DueSelector:
    """Read-only query over the store returning due items in review order."""

    def __init__(self, store: "ReviewStateStore", *, max_limit: int | None = None) -> None:
        self.store = store
        self.max_limit = max_limit or settings.REVIEW_MAX_BATCH_LIMIT

    def validate_limit(self, limit: int) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= self.max_limit:
            raise InvalidLimitError(limit, self.max_limit)
        return limit

    def due_items(self, learner_id: str, limit: int, now: datetime) -> Iterator[ReviewState]:
        """Yield at most ``limit`` due, non-tombstoned states.

        An empty result means the learner is caught up; it is not an error.
        """
        limit = self.validate_limit(limit)
        return self.store.query_due(learner_id, ensure_utc(now), limit)

    def count_due(self, learner_id: str, now: datetime) -> int:
        """Return how many items are currently due, without a cap."""

        now = ensure_utc(now)
        return sum(1 for state in self.store.iter_states(learner_id) if state.due_at <= now)
