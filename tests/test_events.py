"""Tests for bittersweet/events.py — event bus dispatch, isolation and history."""

from datetime import datetime, timezone

import pytest

from bittersweet import EventBus, EventRecursionError, StoreEvents, create_store_event
from bittersweet.events import WILDCARD, EventEmitter, ListenerGroup


def _event(event_type="PING", **payload):
    return create_store_event(event_type, payload, "test")


def test_type_handlers_run_before_wildcard_in_registration_order():
    bus = EventBus()
    calls = []
    bus.on(WILDCARD, lambda e: calls.append("wild"))
    bus.on("PING", lambda e: calls.append("first"))
    bus.on("PING", lambda e: calls.append("second"))
    bus.emit(_event())
    assert calls == ["first", "second", "wild"]


def test_handler_error_does_not_stop_others(caplog):
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("boom")

    bus.on("PING", broken)
    bus.on("PING", lambda e: calls.append("after"))
    bus.on(WILDCARD, lambda e: calls.append("wild"))
    bus.emit(_event())

    assert calls == ["after", "wild"]
    assert "boom" in caplog.text


def test_unsubscribe():
    bus = EventBus()
    calls = []
    off = bus.on("PING", calls.append)
    bus.emit(_event())
    off()
    off()
    bus.emit(_event())
    assert len(calls) == 1
    assert bus.listener_count("PING") == 0


def test_once():
    bus = EventBus()
    calls = []
    bus.once("PING", calls.append)
    bus.emit(_event(n=1))
    bus.emit(_event(n=2))
    assert [e.payload["n"] for e in calls] == [1]
    assert bus.listener_count() == 0


def test_dispatch_uses_snapshot():
    bus = EventBus()
    calls = []

    def subscribe_more(event):
        calls.append("outer")
        bus.on("PING", lambda e: calls.append("late"))

    bus.on("PING", subscribe_more)
    bus.emit(_event())
    assert calls == ["outer"]
    bus.emit(_event())
    assert calls == ["outer", "outer", "late"]


def test_history_is_bounded():
    bus = EventBus(history_size=3)
    for n in range(5):
        bus.emit(_event(n=n))
    history = bus.get_event_history()
    assert [e.payload["n"] for e in history] == [2, 3, 4]
    bus.clear_history()
    assert bus.get_event_history() == []


def test_recursion_limit():
    bus = EventBus(max_depth=2)
    seen = []

    def echo(event):
        seen.append(bus.depth)
        try:
            bus.emit(_event())
        except EventRecursionError:
            seen.append("limit")

    bus.on("PING", echo)
    bus.emit(_event())
    assert seen == [1, 2, "limit"]
    assert bus.depth == 0


def test_runaway_handler_is_contained(caplog):
    bus = EventBus(max_depth=4)
    calls = []

    def loop(event):
        calls.append(event)
        bus.emit(_event())

    bus.on("PING", loop)
    bus.emit(_event())
    assert len(calls) == 4
    assert bus.depth == 0
    assert "emit depth" in caplog.text


def test_off_and_remove_all():
    bus = EventBus()
    bus.on("PING", lambda e: None)
    bus.on("PONG", lambda e: None)
    bus.off("PING")
    assert bus.listener_count("PING") == 0
    assert bus.listener_count() == 1
    bus.remove_all_listeners()
    assert bus.listener_count() == 0


def test_invalid_bus_settings():
    with pytest.raises(ValueError):
        EventBus(history_size=0)
    with pytest.raises(ValueError):
        EventBus(max_depth=0)


def test_emitter_stamps_source_and_time():
    bus = EventBus()
    when = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    emitter = EventEmitter(bus, "rewards", lambda: when)
    event = emitter.emit(StoreEvents.SEEDS_EARNED, {"amount": 3})
    assert event.source == "rewards"
    assert event.timestamp == when
    assert bus.get_event_history()[-1] is event
    assert event.to_dict()["timestamp"] == when.isoformat()


def test_listener_group_cleanup():
    bus = EventBus()
    group = ListenerGroup(bus)
    group.on("PING", lambda e: None)
    group.once("PONG", lambda e: None)
    bus.on("PING", lambda e: None)
    group.cleanup()
    assert bus.listener_count() == 1


def test_create_store_event_copies_payload():
    payload = {"a": 1}
    event = create_store_event("PING", payload)
    payload["a"] = 2
    assert event.payload == {"a": 1}
    assert event.timestamp is not None
