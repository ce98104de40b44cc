"""Store assembly.

``create_store`` builds every slice, wires their bus listeners, attaches
persistence and rehydrates before returning, so callers never see a
partly built store. Each store owns its bus, tick timer and selector
cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from typing import Any

from bittersweet.app_settings import SettingsSlice
from bittersweet.base import Slice, StoreContext
from bittersweet.clock import AsyncioScheduler, Clock, Scheduler, SystemClock
from bittersweet.config import StoreConfig
from bittersweet.events import EventBus, StoreEvents, create_store_event
from bittersweet.focus import FocusSlice
from bittersweet.persistence import Persistence
from bittersweet.rewards import RewardsSlice
from bittersweet.social import SocialSlice
from bittersweet.storage import KeyValueStorage
from bittersweet.tasks import TasksSlice
from bittersweet.ui_state import UISlice

logger = logging.getLogger(__name__)

Listener = Callable[["AppStore"], None]


class AppStore:
    def __init__(self, config: StoreConfig, clock: Clock, scheduler: Scheduler) -> None:
        self.config = config
        self.clock = clock
        self.scheduler = scheduler
        self.bus = EventBus(history_size=config.event_history_size, max_depth=config.max_emit_depth)
        self.ctx = StoreContext(config=config, clock=clock, scheduler=scheduler, bus=self.bus, commit=self._commit)

        self.focus = FocusSlice(self.ctx)
        self.tasks = TasksSlice(self.ctx)
        self.rewards = RewardsSlice(self.ctx)
        self.social = SocialSlice(self.ctx)
        self.settings = SettingsSlice(self.ctx)
        self.ui = UISlice(self.ctx)

        self.persistence: Persistence | None = None
        self.revision = 0
        self._subscribers: list[Listener] = []
        self._cache: dict[Hashable, Any] = {}
        self._cache_revision = 0
        self._hydration_callbacks: list[Callable[[AppStore], None]] = []
        self._disposed = False

    @property
    def slices(self) -> tuple[Slice, ...]:
        return (self.focus, self.tasks, self.rewards, self.social, self.settings, self.ui)

    def slice(self, name: str) -> Slice:
        for s in self.slices:
            if s.name == name:
                return s
        raise KeyError(name)

    @property
    def is_hydrated(self) -> bool:
        return self.ui.is_hydrated

    # ── Change propagation ────────────────────────────────────

    def _commit(self, persist: bool) -> None:
        self.revision += 1
        for listener in list(self._subscribers):
            try:
                listener(self)
            except Exception:
                logger.exception("Store subscriber failed")
        if persist and self.persistence is not None:
            self.persistence.request_write()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(store)`` after every committed change."""
        self._subscribers.append(listener)

        def unsubscribe() -> None:
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return unsubscribe

    def memo(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Cache ``compute()`` under ``key`` until the next revision."""
        if self._cache_revision != self.revision:
            self._cache.clear()
            self._cache_revision = self.revision
        if key not in self._cache:
            self._cache[key] = compute()
        return self._cache[key]

    # ── Hydration ─────────────────────────────────────────────

    def on_hydrated(self, callback: Callable[[AppStore], None]) -> None:
        if self.is_hydrated:
            callback(self)
        else:
            self._hydration_callbacks.append(callback)

    def finish_hydration(self) -> None:
        """Recompute derived state, recover the session and open the gate."""
        for s in self.slices:
            s.after_hydrate()
        self.focus.controller.recover()
        self.ui.set_hydrated(True)
        self.bus.emit(create_store_event(
            StoreEvents.STORE_HYDRATED, {"revision": self.revision}, "store", self.clock.now()
        ))
        callbacks, self._hydration_callbacks = self._hydration_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("Hydration callback failed")

    # ── Diagnostics ───────────────────────────────────────────

    def check_invariants(self) -> list[str]:
        """Describe every broken store invariant; empty when all hold."""
        problems = []
        collections = {
            "focus.sessions": self.focus.sessions,
            "focus.categories": self.focus.categories,
            "focus.tags": self.focus.tags,
            "tasks.tasks": self.tasks.tasks,
            "rewards.transactions": self.rewards.transactions,
            "rewards.unlockableApps": self.rewards.unlockable_apps,
            "social.squads": self.social.squads,
            "social.challenges": self.social.challenges,
        }
        for path, state in collections.items():
            if not state.is_consistent():
                problems.append(f"{path}: allIds and byId disagree")
        current = [s.id for s in self.focus.sessions.by_id.values() if s.is_current]
        if len(current) > 1:
            problems.append(f"more than one current session: {', '.join(current)}")
        earned = sum(t.amount for t in self.rewards.transactions.by_id.values() if t.type == "earned")
        spent = sum(t.amount for t in self.rewards.transactions.by_id.values() if t.type == "spent")
        if self.rewards.balance != earned - spent:
            problems.append(f"balance {self.rewards.balance} != ledger {earned - spent}")
        return problems

    def dispose(self) -> None:
        """Stop the tick, flush pending writes and drop every listener."""
        if self._disposed:
            return
        self._disposed = True
        for s in self.slices:
            s.dispose()
        if self.persistence is not None:
            self.persistence.flush()
        self.bus.remove_all_listeners()
        self._subscribers.clear()
        self._cache.clear()


def create_store(
    config: StoreConfig | None = None,
    *,
    clock: Clock | None = None,
    scheduler: Scheduler | None = None,
    storage: KeyValueStorage | None = None,
) -> AppStore:
    store = AppStore(config or StoreConfig(), clock or SystemClock(), scheduler or AsyncioScheduler())
    for s in store.slices:
        s.wire()
    if storage is not None:
        store.persistence = Persistence(store, storage)
        store.persistence.hydrate()
    else:
        store.finish_hydration()
    logger.debug("Store ready at revision %d", store.revision)
    return store
