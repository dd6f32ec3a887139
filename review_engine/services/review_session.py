"""Service layer for orchestrating review sessions."""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from loguru import logger

from review_engine.config import settings
from review_engine.core.srs.sm2 import (
    DEFAULT_PARAMETERS,
    Grade,
    ReviewState,
    SchedulingParameters,
    coerce_grade,
    ensure_utc,
    grade_review,
)
from review_engine.services.due_selector import DueSelector
from review_engine.services.store import ReviewLogEntry, ReviewStateStore
from review_engine.utils.exceptions import (
    AlreadyPresentedError,
    ItemNotInSessionError,
    NoDueItemsError,
    SessionNotFoundError,
    TombstonedItemError,
)


@dataclass(slots=True)
class ReviewSession:
    """Ephemeral state of one learner's review session."""

    session_id: str
    learner_id: str
    created_at: datetime
    batch: tuple[str, ...]
    presented: set[str] = field(default_factory=set)
    graded: list[str] = field(default_factory=list)
    completed_count: int = 0
    correct_count: int = 0
    last_activity_at: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def total_count(self) -> int:
        return len(self.batch)

    @property
    def remaining(self) -> list[str]:
        return [item_id for item_id in self.batch if item_id not in self.presented]

    @property
    def is_complete(self) -> bool:
        return self.completed_count >= self.total_count


@dataclass(slots=True)
class SessionSummary:
    """Attempt record handed back when a session ends."""

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


class ReviewSessionRegistry:
    """In-process holder for live review sessions."""

    def __init__(self, *, ttl_minutes: int | None = None) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, ReviewSession] = {}
        if ttl_minutes is None:
            ttl_minutes = settings.REVIEW_SESSION_TTL_MINUTES
        self.ttl = timedelta(minutes=ttl_minutes)

    def _expired(self, session: ReviewSession, now: datetime) -> bool:
        last_seen = session.last_activity_at or session.created_at
        return now - last_seen > self.ttl

    def add(self, session: ReviewSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str, now: datetime) -> ReviewSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and self._expired(session, now):
                del self._sessions[session_id]
                logger.info(f"Review session {session_id} expired")
                session = None
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def pop(self, session_id: str) -> ReviewSession:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def evict_expired(self, now: datetime) -> int:
        with self._lock:
            stale = [key for key, session in self._sessions.items() if self._expired(session, now)]
            for key in stale:
                del self._sessions[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


session_registry = ReviewSessionRegistry()


class ReviewSessionService:
    """Coordinate due selection, grading and persistence for review sessions."""

    def __init__(
        self,
        store: ReviewStateStore,
        *,
        registry: ReviewSessionRegistry | None = None,
        selector: DueSelector | None = None,
        params: SchedulingParameters = DEFAULT_PARAMETERS,
    ) -> None:
        self.store = store
        self.registry = registry if registry is not None else session_registry
        self.selector = selector if selector is not None else DueSelector(store)
        self.params = params

    def enroll(self, learner_id: str, item_ids: Iterable[str], now: datetime) -> list[ReviewState]:
        """Create ``new`` states for items the learner has not met yet."""

        now = ensure_utc(now)
        states = [self.store.get_or_create(learner_id, item_id, now) for item_id in dict.fromkeys(item_ids)]
        logger.info(f"Enrolled {len(states)} items for learner {learner_id}")
        return states

    def tombstone_item(self, item_id: str, now: datetime) -> int:
        """Exclude a deleted item from every learner's schedule."""

        count = self.store.tombstone(item_id, ensure_utc(now))
        logger.info(f"Tombstoned item {item_id} ({count} review states)")
        return count

    def start_session(self, learner_id: str, limit: int, now: datetime) -> ReviewSession:
        """Snapshot a batch of due items into a new session.

        Raises:
            NoDueItemsError: nothing is due; no session is created.
        """
        now = ensure_utc(now)
        self.registry.evict_expired(now)
        batch = tuple(state.item_id for state in self.selector.due_items(learner_id, limit, now))
        if not batch:
            raise NoDueItemsError(learner_id)

        session = ReviewSession(
            session_id=uuid.uuid4().hex,
            learner_id=learner_id,
            created_at=now,
            batch=batch,
            last_activity_at=now,
        )
        self.registry.add(session)
        logger.info(
            f"Started review session {session.session_id} for learner {learner_id} "
            f"with {len(batch)} items"
        )
        return session

    def grade_item(self, session_id: str, item_id: str, grade: Any, now: datetime) -> ReviewState:
        """Apply a grade to one batch item and persist the new schedule."""

        grade = coerce_grade(grade)
        now = ensure_utc(now)
        session = self.registry.get(session_id, now)

        with session.lock:
            if item_id not in session.batch:
                raise ItemNotInSessionError(session_id, item_id)
            if item_id in session.presented:
                raise AlreadyPresentedError(session_id, item_id)

            with self.store.locked(session.learner_id, item_id):
                current = self.store.get_or_create(session.learner_id, item_id, now)
                if current.is_tombstoned:
                    raise TombstonedItemError(item_id)
                updated = grade_review(current, grade, now, self.params)
                log = ReviewLogEntry.from_transition(
                    current, updated, grade=grade, reviewed_at=now, session_id=session_id
                )
                saved = self.store.save(updated, log=log)

            session.presented.add(item_id)
            session.graded.append(item_id)
            session.completed_count += 1
            if grade is not Grade.AGAIN:
                session.correct_count += 1
            session.last_activity_at = now
            complete = session.is_complete

        logger.debug(
            f"Session {session_id} graded item {item_id} as {grade.name}: "
            f"{current.phase.value}->{saved.phase.value}, interval {saved.interval_days}d"
        )
        if complete:
            logger.info(f"Session {session_id} has graded every item in its batch")
        return saved

    def end_session(self, session_id: str, now: datetime) -> SessionSummary:
        """Close the session; ungraded items keep their schedule."""

        session = self.registry.pop(session_id)
        with session.lock:
            summary = SessionSummary(
                session_id=session.session_id,
                learner_id=session.learner_id,
                started_at=session.created_at,
                ended_at=ensure_utc(now),
                completed_count=session.completed_count,
                correct_count=session.correct_count,
                total_count=session.total_count,
                graded_item_ids=list(session.graded),
                remaining_item_ids=session.remaining,
            )
        logger.info(
            f"Ended review session {session_id}: {summary.completed_count}/{summary.total_count} "
            f"graded, {summary.correct_count} correct"
        )
        return summary
