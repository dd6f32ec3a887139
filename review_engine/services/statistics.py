"""Aggregate review statistics for dashboards."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from review_engine.core.srs.sm2 import Grade, ensure_utc
from review_engine.services.store import ReviewStateStore


@dataclass(slots=True)
class ReviewForecast:
    """Upcoming review load."""

    due_today: int = 0
    due_this_week: int = 0
    due_next_week: int = 0
    due_by_date: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class ReviewPerformance:
    """Recent review accuracy and consistency."""

    total_reviews: int = 0
    correct_reviews: int = 0
    efficiency: float = 0.0
    streak_days: int = 0


def streak_length(review_days: set[date], today: date) -> int:
    """Count consecutive days with reviews, ending today."""

    if today not in review_days:
        return 0
    streak = 0
    day = today
    while day in review_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


class ReviewStatisticsService:
    """Compute forecast and performance figures from the store."""

    def __init__(self, store: ReviewStateStore) -> None:
        self.store = store

    def schedule_forecast(self, learner_id: str, now: datetime) -> ReviewForecast:
        now = ensure_utc(now)
        one_week = now + timedelta(days=7)
        two_weeks = now + timedelta(days=14)

        forecast = ReviewForecast()
        by_date: Counter[str] = Counter()
        for state in self.store.iter_states(learner_id):
            due_at = ensure_utc(state.due_at)
            by_date[due_at.date().isoformat()] += 1
            if due_at <= now:
                forecast.due_today += 1
            elif due_at < one_week:
                forecast.due_this_week += 1
            elif due_at < two_weeks:
                forecast.due_next_week += 1
        forecast.due_by_date = dict(sorted(by_date.items()))
        return forecast

    def review_performance(
        self,
        learner_id: str,
        now: datetime,
        *,
        lookback_days: int | None = None,
    ) -> ReviewPerformance:
        """Summarise graded reviews, optionally limited to a recent window."""

        now = ensure_utc(now)
        since = now - timedelta(days=lookback_days) if lookback_days is not None else None

        performance = ReviewPerformance()
        review_days: set[date] = set()
        for entry in self.store.iter_logs(learner_id, since=since):
            performance.total_reviews += 1
            if entry.grade != Grade.AGAIN:
                performance.correct_reviews += 1
            review_days.add(ensure_utc(entry.reviewed_at).date())

        if performance.total_reviews:
            performance.efficiency = performance.correct_reviews / performance.total_reviews * 100
        performance.streak_days = streak_length(review_days, now.date())
        return performance
