"""Tests for due item selection."""
from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from review_engine.core.srs.sm2 import ReviewPhase
from review_engine.services.due_selector import DueSelector
from review_engine.utils.exceptions import InvalidLimitError


def seed(store, now, item_id, *, due_in_hours, phase=ReviewPhase.REVIEW, learner_id="learner-1"):
    state = store.get_or_create(learner_id, item_id, now)
    return store.save(replace(state, due_at=now + timedelta(hours=due_in_hours), phase=phase))


def item_ids(states) -> list[str]:
    return [state.item_id for state in states]


def test_most_overdue_items_come_first(store, now) -> None:
    seed(store, now, "recent", due_in_hours=-1)
    seed(store, now, "ancient", due_in_hours=-72)
    seed(store, now, "yesterday", due_in_hours=-24)

    selector = DueSelector(store)

    assert item_ids(selector.due_items("learner-1", 10, now)) == ["ancient", "yesterday", "recent"]


def test_ties_break_on_phase_then_item_id(store, now) -> None:
    seed(store, now, "b-review", due_in_hours=-5, phase=ReviewPhase.REVIEW)
    seed(store, now, "a-review", due_in_hours=-5, phase=ReviewPhase.REVIEW)
    seed(store, now, "z-learning", due_in_hours=-5, phase=ReviewPhase.LEARNING)
    seed(store, now, "y-relearning", due_in_hours=-5, phase=ReviewPhase.RELEARNING)

    selector = DueSelector(store)

    assert item_ids(selector.due_items("learner-1", 10, now)) == [
        "y-relearning",
        "z-learning",
        "a-review",
        "b-review",
    ]


def test_future_items_and_other_learners_are_excluded(store, now) -> None:
    seed(store, now, "due", due_in_hours=0)
    seed(store, now, "later", due_in_hours=1)
    seed(store, now, "theirs", due_in_hours=-10, learner_id="learner-2")

    selector = DueSelector(store)

    assert item_ids(selector.due_items("learner-1", 10, now)) == ["due"]


def test_tombstoned_items_never_appear(store, now) -> None:
    seed(store, now, "kept", due_in_hours=-1)
    seed(store, now, "deleted", due_in_hours=-500)
    store.tombstone("deleted", now)

    selector = DueSelector(store)

    assert item_ids(selector.due_items("learner-1", 10, now + timedelta(days=365))) == ["kept"]


def test_results_are_capped_at_limit(store, now) -> None:
    for index in range(25):
        seed(store, now, f"card-{index:02d}", due_in_hours=-index)

    selector = DueSelector(store)
    batch = list(selector.due_items("learner-1", 20, now))

    assert len(batch) == 20
    assert batch[0].item_id == "card-24"


def test_empty_result_when_caught_up(store, now) -> None:
    seed(store, now, "later", due_in_hours=48)

    assert list(DueSelector(store).due_items("learner-1", 20, now)) == []


def test_selection_is_deterministic(store, now) -> None:
    for index, phase in enumerate([ReviewPhase.REVIEW, ReviewPhase.LEARNING, ReviewPhase.NEW] * 4):
        seed(store, now, f"card-{index}", due_in_hours=-(index % 3), phase=phase)

    selector = DueSelector(store)
    first = item_ids(selector.due_items("learner-1", 10, now))
    second = item_ids(selector.due_items("learner-1", 10, now))

    assert first == second
    assert len(first) == 10


def test_adapters_agree_on_order(sql_store, memory_store, now) -> None:
    layout = [
        ("c", -3, ReviewPhase.REVIEW),
        ("a", -3, ReviewPhase.NEW),
        ("d", -3, ReviewPhase.RELEARNING),
        ("b", -7, ReviewPhase.LEARNING),
        ("e", 2, ReviewPhase.REVIEW),
    ]
    for item_id, hours, phase in layout:
        seed(sql_store, now, item_id, due_in_hours=hours, phase=phase)
        seed(memory_store, now, item_id, due_in_hours=hours, phase=phase)

    from_sql = item_ids(DueSelector(sql_store).due_items("learner-1", 10, now))
    from_memory = item_ids(DueSelector(memory_store).due_items("learner-1", 10, now))

    assert from_sql == from_memory == ["b", "d", "c", "a"]


@pytest.mark.parametrize("limit", [0, -1, 101, True, "5"])
def test_invalid_limits_are_rejected(memory_store, now, limit) -> None:
    with pytest.raises(InvalidLimitError):
        DueSelector(memory_store, max_limit=100).due_items("learner-1", limit, now)


def test_count_due_ignores_limit_and_tombstones(store, now) -> None:
    for index in range(30):
        seed(store, now, f"card-{index}", due_in_hours=-1)
    seed(store, now, "later", due_in_hours=5)
    store.tombstone("card-0", now)

    assert DueSelector(store).count_due("learner-1", now) == 29
