"""Tests for the review state store adapters."""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import timedelta

import pytest

from review_engine.core.srs.sm2 import Grade, ReviewPhase, grade_review
from review_engine.db.models.review import ReviewLog, ReviewStateRecord
from review_engine.services.store import (
    InMemoryReviewStateStore,
    ReviewLogEntry,
    SQLAlchemyReviewStateStore,
)
from review_engine.utils.exceptions import StaleReviewStateError


def test_get_returns_none_for_unknown_pair(store) -> None:
    assert store.get("learner-1", "card-1") is None


def test_get_or_create_is_idempotent(store, now) -> None:
    created = store.get_or_create("learner-1", "card-1", now)
    again = store.get_or_create("learner-1", "card-1", now + timedelta(days=2))

    assert created.phase is ReviewPhase.NEW
    assert created.due_at == now
    assert again == created
    assert store.get("learner-1", "card-1") == created


def test_save_persists_scheduling_fields_and_bumps_version(store, now) -> None:
    state = store.get_or_create("learner-1", "card-1", now)
    graded = grade_review(state, Grade.GOOD, now)

    saved = store.save(graded)
    loaded = store.get("learner-1", "card-1")

    assert saved.version == state.version + 1
    assert loaded.version == saved.version
    assert loaded.phase is ReviewPhase.LEARNING
    assert loaded.interval_days == 1
    assert loaded.repetition_count == 1
    assert loaded.last_reviewed_at == now
    assert loaded.due_at == now + timedelta(days=1)
    assert loaded.due_at.tzinfo is not None


def test_tombstone_hides_states_but_keeps_history(store, now) -> None:
    store.get_or_create("learner-1", "card-1", now)
    store.get_or_create("learner-2", "card-1", now)
    store.get_or_create("learner-1", "card-2", now)

    count = store.tombstone("card-1", now)

    assert count == 2
    assert [state.item_id for state in store.query_due("learner-1", now, 10)] == ["card-2"]
    assert list(store.query_due("learner-2", now, 10)) == []
    kept = store.get("learner-1", "card-1")
    assert kept is not None
    assert kept.is_tombstoned


def test_tombstone_is_idempotent(store, now) -> None:
    store.get_or_create("learner-1", "card-1", now)

    assert store.tombstone("card-1", now) == 1
    assert store.tombstone("card-1", now + timedelta(hours=1)) == 0
    assert store.get("learner-1", "card-1").tombstoned_at == now


def test_states_created_after_tombstone_are_born_tombstoned(store, now) -> None:
    store.tombstone("card-9", now)

    state = store.get_or_create("learner-1", "card-9", now)

    assert state.is_tombstoned
    assert list(store.query_due("learner-1", now, 10)) == []


def test_save_does_not_resurrect_tombstoned_state(store, now) -> None:
    state = store.get_or_create("learner-1", "card-1", now)
    store.tombstone("card-1", now)

    store.save(grade_review(state, Grade.GOOD, now))

    assert store.get("learner-1", "card-1").is_tombstoned


def test_logs_are_saved_with_state(store, now) -> None:
    before = store.get_or_create("learner-1", "card-1", now)
    after = grade_review(before, Grade.EASY, now)
    entry = ReviewLogEntry.from_transition(before, after, grade=Grade.EASY, reviewed_at=now, session_id="s-1")

    store.save(after, log=entry)
    store.save(
        grade_review(after, Grade.AGAIN, now + timedelta(days=1)),
        log=ReviewLogEntry.from_transition(
            after, after, grade=Grade.AGAIN, reviewed_at=now + timedelta(days=1)
        ),
    )

    logs = list(store.iter_logs("learner-1"))
    assert [log.grade for log in logs] == [3, 0]
    assert logs[0].phase_before is ReviewPhase.NEW
    assert logs[0].phase_after is ReviewPhase.LEARNING
    assert logs[0].session_id == "s-1"
    recent = list(store.iter_logs("learner-1", since=now + timedelta(hours=1)))
    assert [log.grade for log in recent] == [0]
    assert list(store.iter_logs("learner-2")) == []


def test_iter_states_skips_tombstoned_items(store, now) -> None:
    store.get_or_create("learner-1", "b", now)
    store.get_or_create("learner-1", "a", now)
    store.get_or_create("learner-1", "c", now)
    store.tombstone("c", now)

    assert [state.item_id for state in store.iter_states("learner-1")] == ["a", "b"]


def test_last_write_wins_without_versioning(store, now) -> None:
    state = store.get_or_create("learner-1", "card-1", now)
    first = grade_review(state, Grade.EASY, now)
    second = grade_review(state, Grade.AGAIN, now)

    store.save(first)
    store.save(second)

    loaded = store.get("learner-1", "card-1")
    assert loaded.lapse_count == 1
    assert loaded.version == 2


@pytest.fixture(params=["sql", "memory"])
def versioned_store(request, db_session):
    if request.param == "sql":
        return SQLAlchemyReviewStateStore(db_session, compare_and_swap=True)
    return InMemoryReviewStateStore(compare_and_swap=True)


def test_compare_and_swap_rejects_stale_save(versioned_store, now) -> None:
    state = versioned_store.get_or_create("learner-1", "card-1", now)
    winner = versioned_store.save(grade_review(state, Grade.GOOD, now))

    with pytest.raises(StaleReviewStateError):
        versioned_store.save(grade_review(state, Grade.AGAIN, now))

    loaded = versioned_store.get("learner-1", "card-1")
    assert loaded.version == winner.version
    assert loaded.lapse_count == 0
    assert loaded.repetition_count == 1


def test_sql_store_writes_one_row_per_pair(db_session, sql_store, now) -> None:
    sql_store.get_or_create("learner-1", "card-1", now)
    sql_store.get_or_create("learner-1", "card-1", now)
    before = sql_store.get("learner-1", "card-1")
    after = grade_review(before, Grade.GOOD, now)
    sql_store.save(after, log=ReviewLogEntry.from_transition(before, after, grade=2, reviewed_at=now))

    assert db_session.query(ReviewStateRecord).count() == 1
    assert db_session.query(ReviewLog).count() == 1
    record = db_session.query(ReviewStateRecord).one()
    assert record.phase == "learning"


def test_locked_serialises_same_key(memory_store, now) -> None:
    memory_store.get_or_create("learner-1", "card-1", now)
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        with memory_store.locked("learner-1", "card-1"):
            current = memory_store.get("learner-1", "card-1")
            memory_store.save(replace(current, lapse_count=current.lapse_count + 1))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert memory_store.get("learner-1", "card-1").lapse_count == 8
