"""Shared test fixtures for Bittersweet tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from bittersweet import MemoryStorage, StoreConfig, create_store

# A Monday morning.
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, seconds: float) -> None:
        """Move time forward without firing any timers."""
        self._now += timedelta(seconds=seconds)


class FakeTimer:
    def __init__(self, when: datetime, interval: float | None, callback) -> None:
        self.when = when
        self.interval = interval
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class FakeScheduler:
    """Timers driven by a FakeClock; nothing fires until ``advance``."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self._timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.clock.now() + timedelta(seconds=max(0.0, delay)), None, callback)
        self._timers.append(timer)
        return timer

    def call_every(self, interval: float, callback) -> FakeTimer:
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = FakeTimer(self.clock.now() + timedelta(seconds=interval), interval, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Advance the clock, firing due timers in time order."""
        target = self.clock.now() + timedelta(seconds=seconds)
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.clock.set(timer.when)
            if timer.interval is None:
                timer.cancel()
            else:
                timer.when += timedelta(seconds=timer.interval)
            timer.callback()
        self.clock.set(target)
        self._timers = [t for t in self._timers if not t.cancelled]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def make_store(clock, scheduler):
    """Build stores on the shared virtual clock; all are disposed afterwards."""
    stores = []

    def _make(storage=None, **config):
        store = create_store(StoreConfig(**config), clock=clock, scheduler=scheduler, storage=storage)
        stores.append(store)
        return store

    yield _make
    for store in stores:
        store.dispose()


@pytest.fixture
def store(make_store):
    """A hydrated store without durable storage."""
    return make_store()


def run_session(store, clock, minutes: float, target: int | None = None, category_id: str = "work", **kwargs):
    """Start a session, let ``minutes`` pass on the clock, then complete it."""
    store.focus.start_session(target or max(1, int(minutes)), category_id, **kwargs)
    clock.advance(minutes * 60)
    return store.focus.complete_session()


@pytest.fixture
def focus_for(store, clock):
    """``focus_for(minutes, target=None, category_id="work")`` on the default store."""

    def _run(minutes: float, target: int | None = None, category_id: str = "work", **kwargs):
        return run_session(store, clock, minutes, target, category_id, **kwargs)

    return _run
