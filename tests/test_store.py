"""Tests for bittersweet/store.py — assembly, change propagation and lifecycle."""

import pytest

from bittersweet import InvalidStateError, StoreEvents, ValidationError
from bittersweet import selectors


def test_focus_session_end_to_end(store, clock):
    store.focus.start_session(25, "work")
    assert store.focus.session_state == "active"
    assert selectors.get_remaining_time(store) == 1500

    clock.advance(1500)
    session = store.focus.complete_session()
    assert session.duration == pytest.approx(25)
    assert session.seeds_earned == 0
    assert store.rewards.balance == 0
    assert store.focus.session_state == "idle"
    assert store.focus.stats.total_sessions == 1


def test_long_session_earns_seeds(store, focus_for):
    session = focus_for(130)
    assert session.seeds_earned == 3
    assert store.rewards.balance == 3
    assert store.check_invariants() == []


def test_event_order_for_completed_session(store, focus_for):
    store.bus.clear_history()
    focus_for(130)
    types = [e.type for e in store.bus.get_event_history()]
    assert types == [
        StoreEvents.FOCUS_SESSION_STARTED,
        StoreEvents.FOCUS_SESSION_COMPLETED,
        StoreEvents.SEEDS_EARNED,
    ]


def test_category_deletion_guard(store, focus_for):
    focus_for(5, category_id="personal")
    with pytest.raises(ValidationError) as exc:
        store.focus.delete_category("personal")
    assert exc.value.rule == "category_in_use"


def test_current_session_cannot_be_deleted(store):
    session = store.focus.start_session(25, "work")
    with pytest.raises(InvalidStateError):
        store.focus.delete_session(session.id)


def test_subscribe_and_unsubscribe(store):
    seen = []
    unsubscribe = store.subscribe(lambda s: seen.append(s.revision))
    store.focus.create_tag("deep")
    assert seen == [store.revision]

    unsubscribe()
    unsubscribe()
    store.focus.create_tag("shallow")
    assert len(seen) == 1


def test_failing_subscriber_is_isolated(store, caplog):
    store.subscribe(lambda s: 1 / 0)
    seen = []
    store.subscribe(lambda s: seen.append(s.revision))
    store.focus.create_tag("deep")
    assert seen
    assert "Store subscriber failed" in caplog.text


def test_memo_per_revision(store):
    calls = []

    def compute():
        calls.append(1)
        return len(calls)

    assert store.memo("k", compute) == 1
    assert store.memo("k", compute) == 1
    store.rewards.earn_seeds(1, "bonus")
    assert store.memo("k", compute) == 2


def test_hydration(store):
    assert store.is_hydrated
    hydrated = [e for e in store.bus.get_event_history() if e.type == StoreEvents.STORE_HYDRATED]
    assert len(hydrated) == 1

    called = []
    store.on_hydrated(called.append)
    assert called == [store]


def test_slice_lookup(store):
    assert store.slice("rewards") is store.rewards
    with pytest.raises(KeyError):
        store.slice("home")


def test_check_invariants_reports_drift(store):
    store.rewards.earn_seeds(5, "bonus")
    store.rewards.balance = 9
    assert store.check_invariants() == ["balance 9 != ledger 5"]


def test_dispose(store, scheduler):
    store.focus.start_session(25, "work")
    assert scheduler.pending

    store.dispose()
    store.dispose()
    assert not store.focus.controller.tick_running
    assert store.bus.listener_count() == 0
    assert scheduler.pending == []


def test_stores_are_independent(make_store, clock):
    first = make_store()
    second = make_store(user_id="other-user")
    first.focus.start_session(130, "work")
    clock.advance(130 * 60)
    first.focus.complete_session()
    assert first.rewards.balance == 3
    assert second.rewards.balance == 0
    assert second.focus.categories.by_id["work"].user_id == "other-user"
