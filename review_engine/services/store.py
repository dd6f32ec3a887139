"""Persistence for per-learner review scheduling state.

Two adapters share one contract: :class:`SQLAlchemyReviewStateStore` for the
durable database and :class:`InMemoryReviewStateStore` for single-process use.
Neither applies any scheduling logic; they only load, create, persist and
tombstone :class:`ReviewState` values.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterator, Protocol

from loguru import logger
from sqlalchemy import and_, case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from review_engine.core.srs.sm2 import (
    PHASE_PRIORITY,
    ReviewPhase,
    ReviewState,
    ensure_utc,
    new_review_state,
)
from review_engine.db.models.review import ItemTombstone, ReviewLog, ReviewStateRecord
from review_engine.services.due_selector import due_order_key
from review_engine.utils.exceptions import StaleReviewStateError


@dataclass(slots=True)
class ReviewLogEntry:
    """One graded review, stored alongside the state it produced."""

    learner_id: str
    item_id: str
    grade: int
    reviewed_at: datetime
    phase_before: ReviewPhase
    phase_after: ReviewPhase
    interval_before: int
    interval_after: int
    ease_factor_before: float
    ease_factor_after: float
    session_id: str | None = None

    @classmethod
    def from_transition(
        cls,
        before: ReviewState,
        after: ReviewState,
        *,
        grade: int,
        reviewed_at: datetime,
        session_id: str | None = None,
    ) -> "ReviewLogEntry":
        return cls(
            learner_id=after.learner_id,
            item_id=after.item_id,
            grade=int(grade),
            reviewed_at=reviewed_at,
            phase_before=before.phase,
            phase_after=after.phase,
            interval_before=before.interval_days,
            interval_after=after.interval_days,
            ease_factor_before=before.ease_factor,
            ease_factor_after=after.ease_factor,
            session_id=session_id,
        )


class ReviewStateStore(Protocol):
    """Storage contract used by the due selector and session orchestrator."""

    def get(self, learner_id: str, item_id: str) -> ReviewState | None: ...

    def get_or_create(self, learner_id: str, item_id: str, now: datetime) -> ReviewState: ...

    def save(self, state: ReviewState, *, log: ReviewLogEntry | None = None) -> ReviewState: ...

    def tombstone(self, item_id: str, now: datetime) -> int: ...

    def query_due(self, learner_id: str, now: datetime, limit: int) -> Iterator[ReviewState]: ...

    def iter_states(self, learner_id: str) -> Iterator[ReviewState]: ...

    def iter_logs(self, learner_id: str, since: datetime | None = None) -> Iterator[ReviewLogEntry]: ...

    def locked(self, learner_id: str, item_id: str): ...


class KeyLocks:
    """Process-local mutual exclusion per (learner, item) key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, number of threads holding or waiting on it]
        self._locks: dict[tuple[str, str], list] = {}

    @contextmanager
    def hold(self, key: tuple[str, str]) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every request-scoped SQL store in this process.
_process_key_locks = KeyLocks()


class SQLAlchemyReviewStateStore:
    """Review state store backed by a SQLAlchemy session.

    Every mutating call commits its own transaction. With
    ``compare_and_swap`` enabled, :meth:`save` only succeeds when the stored
    version still matches the version the caller loaded.
    """

    def __init__(
        self,
        db: Session,
        *,
        compare_and_swap: bool = False,
        key_locks: KeyLocks | None = None,
    ) -> None:
        self.db = db
        self.compare_and_swap = compare_and_swap
        self._key_locks = key_locks if key_locks is not None else _process_key_locks
        self._held: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    def _record_query(self, learner_id: str, item_id: str):
        stmt = select(ReviewStateRecord).where(
            and_(
                ReviewStateRecord.learner_id == learner_id,
                ReviewStateRecord.item_id == item_id,
            )
        )
        if (learner_id, item_id) in self._held:
            stmt = stmt.with_for_update()
        return stmt.execution_options(populate_existing=True)

    def _load_record(self, learner_id: str, item_id: str) -> ReviewStateRecord | None:
        return self.db.scalars(self._record_query(learner_id, item_id)).first()

    @staticmethod
    def _to_state(record: ReviewStateRecord) -> ReviewState:
        return ReviewState(
            learner_id=record.learner_id,
            item_id=record.item_id,
            due_at=ensure_utc(record.due_at),
            ease_factor=record.ease_factor,
            interval_days=record.interval_days,
            repetition_count=record.repetition_count,
            lapse_count=record.lapse_count,
            phase=ReviewPhase(record.phase),
            last_reviewed_at=ensure_utc(record.last_reviewed_at),
            tombstoned_at=ensure_utc(record.tombstoned_at),
            version=record.version or 0,
        )

    @staticmethod
    def _scheduling_values(state: ReviewState) -> dict:
        return {
            "ease_factor": state.ease_factor,
            "interval_days": state.interval_days,
            "repetition_count": state.repetition_count,
            "lapse_count": state.lapse_count,
            "phase": state.phase.value,
            "due_at": ensure_utc(state.due_at),
            "last_reviewed_at": ensure_utc(state.last_reviewed_at),
        }

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    @contextmanager
    def locked(self, learner_id: str, item_id: str) -> Iterator[None]:
        """Serialise read-modify-write on one key within this process."""

        key = (learner_id, item_id)
        with self._key_locks.hold(key):
            self._held.add(key)
            try:
                yield
            finally:
                self._held.discard(key)

    def get(self, learner_id: str, item_id: str) -> ReviewState | None:
        record = self._load_record(learner_id, item_id)
        return self._to_state(record) if record is not None else None

    def get_or_create(self, learner_id: str, item_id: str, now: datetime) -> ReviewState:
        """Return the stored state, creating a due-now ``new`` row if absent."""

        record = self._load_record(learner_id, item_id)
        if record is not None:
            return self._to_state(record)

        state = new_review_state(learner_id, item_id, now)
        tombstone = self.db.get(ItemTombstone, item_id)
        record = ReviewStateRecord(
            learner_id=learner_id,
            item_id=item_id,
            tombstoned_at=tombstone.tombstoned_at if tombstone else None,
            version=0,
            **self._scheduling_values(state),
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # Another writer created the row first.
            self.db.rollback()
            record = self._load_record(learner_id, item_id)
            if record is None:
                raise
        return self._to_state(record)

    def save(self, state: ReviewState, *, log: ReviewLogEntry | None = None) -> ReviewState:
        """Persist scheduling fields (and an optional log row) atomically."""

        values = self._scheduling_values(state)
        if self.compare_and_swap:
            new_version = state.version + 1
            result = self.db.execute(
                update(ReviewStateRecord)
                .where(
                    ReviewStateRecord.learner_id == state.learner_id,
                    ReviewStateRecord.item_id == state.item_id,
                    ReviewStateRecord.version == state.version,
                )
                .values(version=new_version, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                logger.warning(
                    f"Stale review state for learner={state.learner_id} item={state.item_id} "
                    f"(expected version {state.version})"
                )
                raise StaleReviewStateError(state.learner_id, state.item_id, state.version)
        else:
            record = self._load_record(state.learner_id, state.item_id)
            if record is None:
                record = ReviewStateRecord(learner_id=state.learner_id, item_id=state.item_id, version=0)
                self.db.add(record)
            for name, value in values.items():
                setattr(record, name, value)
            new_version = (record.version or 0) + 1
            record.version = new_version

        if log is not None:
            self.db.add(
                ReviewLog(
                    learner_id=log.learner_id,
                    item_id=log.item_id,
                    session_id=log.session_id,
                    grade=log.grade,
                    reviewed_at=ensure_utc(log.reviewed_at),
                    phase_before=log.phase_before.value,
                    phase_after=log.phase_after.value,
                    interval_before=log.interval_before,
                    interval_after=log.interval_after,
                    ease_factor_before=log.ease_factor_before,
                    ease_factor_after=log.ease_factor_after,
                )
            )
        self.db.commit()
        return replace(state, version=new_version)

    def tombstone(self, item_id: str, now: datetime) -> int:
        """Hide every learner's state for ``item_id`` from due selection."""

        now = ensure_utc(now)
        if self.db.get(ItemTombstone, item_id) is None:
            self.db.add(ItemTombstone(item_id=item_id, tombstoned_at=now))
        result = self.db.execute(
            update(ReviewStateRecord)
            .where(
                ReviewStateRecord.item_id == item_id,
                ReviewStateRecord.tombstoned_at.is_(None),
            )
            .values(tombstoned_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount or 0

    def query_due(self, learner_id: str, now: datetime, limit: int) -> Iterator[ReviewState]:
        """Yield up to ``limit`` due, live states in presentation order."""

        priority = case(
            {phase.value: rank for phase, rank in PHASE_PRIORITY.items()},
            value=ReviewStateRecord.phase,
            else_=len(PHASE_PRIORITY),
        )
        stmt = (
            select(ReviewStateRecord)
            .where(ReviewStateRecord.learner_id == learner_id)
            .where(ReviewStateRecord.tombstoned_at.is_(None))
            .where(ReviewStateRecord.due_at <= ensure_utc(now))
            .order_by(
                ReviewStateRecord.due_at.asc(),
                priority.asc(),
                ReviewStateRecord.item_id.asc(),
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        for record in self.db.scalars(stmt):
            yield self._to_state(record)

    def iter_states(self, learner_id: str) -> Iterator[ReviewState]:
        stmt = (
            select(ReviewStateRecord)
            .where(ReviewStateRecord.learner_id == learner_id)
            .where(ReviewStateRecord.tombstoned_at.is_(None))
            .order_by(ReviewStateRecord.item_id.asc())
        )
        for record in self.db.scalars(stmt):
            yield self._to_state(record)

    def iter_logs(self, learner_id: str, since: datetime | None = None) -> Iterator[ReviewLogEntry]:
        stmt = select(ReviewLog).where(ReviewLog.learner_id == learner_id)
        if since is not None:
            stmt = stmt.where(ReviewLog.reviewed_at >= ensure_utc(since))
        stmt = stmt.order_by(ReviewLog.reviewed_at.asc())
        for row in self.db.scalars(stmt):
            yield ReviewLogEntry(
                learner_id=row.learner_id,
                item_id=row.item_id,
                grade=row.grade,
                reviewed_at=ensure_utc(row.reviewed_at),
                phase_before=ReviewPhase(row.phase_before),
                phase_after=ReviewPhase(row.phase_after),
                interval_before=row.interval_before,
                interval_after=row.interval_after,
                ease_factor_before=row.ease_factor_before,
                ease_factor_after=row.ease_factor_after,
                session_id=row.session_id,
            )


class InMemoryReviewStateStore:
    """Thread-safe store keeping everything in process memory."""

    def __init__(self, *, compare_and_swap: bool = False) -> None:
        self.compare_and_swap = compare_and_swap
        self._lock = threading.Lock()
        self._key_locks = KeyLocks()
        self._states: dict[tuple[str, str], ReviewState] = {}
        self._tombstones: dict[str, datetime] = {}
        self._logs: list[ReviewLogEntry] = []

    def locked(self, learner_id: str, item_id: str):
        return self._key_locks.hold((learner_id, item_id))

    def get(self, learner_id: str, item_id: str) -> ReviewState | None:
        with self._lock:
            return self._states.get((learner_id, item_id))

    def get_or_create(self, learner_id: str, item_id: str, now: datetime) -> ReviewState:
        key = (learner_id, item_id)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = replace(
                    new_review_state(learner_id, item_id, now),
                    tombstoned_at=self._tombstones.get(item_id),
                )
                self._states[key] = state
            return state

    def save(self, state: ReviewState, *, log: ReviewLogEntry | None = None) -> ReviewState:
        with self._lock:
            current = self._states.get(state.key)
            current_version = current.version if current is not None else 0
            if self.compare_and_swap and current_version != state.version:
                raise StaleReviewStateError(state.learner_id, state.item_id, state.version)
            saved = replace(
                state,
                version=current_version + 1,
                tombstoned_at=current.tombstoned_at if current is not None else None,
            )
            self._states[state.key] = saved
            if log is not None:
                self._logs.append(log)
            return saved

    def tombstone(self, item_id: str, now: datetime) -> int:
        now = ensure_utc(now)
        count = 0
        with self._lock:
            self._tombstones.setdefault(item_id, now)
            for key, state in self._states.items():
                if state.item_id == item_id and state.tombstoned_at is None:
                    self._states[key] = replace(state, tombstoned_at=now)
                    count += 1
        return count

    def query_due(self, learner_id: str, now: datetime, limit: int) -> Iterator[ReviewState]:
        now = ensure_utc(now)
        with self._lock:
            candidates = [
                state
                for state in self._states.values()
                if state.learner_id == learner_id
                and state.tombstoned_at is None
                and state.due_at <= now
            ]
        candidates.sort(key=due_order_key)
        yield from candidates[:limit]

    def iter_states(self, learner_id: str) -> Iterator[ReviewState]:
        with self._lock:
            states = [
                state
                for state in self._states.values()
                if state.learner_id == learner_id and state.tombstoned_at is None
            ]
        yield from sorted(states, key=lambda state: state.item_id)

    def iter_logs(self, learner_id: str, since: datetime | None = None) -> Iterator[ReviewLogEntry]:
        since = ensure_utc(since)
        with self._lock:
            entries = [
                entry
                for entry in self._logs
                if entry.learner_id == learner_id and (since is None or entry.reviewed_at >= since)
            ]
        yield from sorted(entries, key=lambda entry: entry.reviewed_at)
