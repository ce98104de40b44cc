"""Shared plumbing for store slices.

A ``StoreContext`` is created once per store and handed to every slice. It
carries the injected ports, the store's own event bus, and the commit hook
that notifies subscribers and schedules persistence.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from bittersweet.clock import Clock, Scheduler
from bittersweet.config import StoreConfig
from bittersweet.errors import ValidationError
from bittersweet.events import EventBus, EventEmitter, ListenerGroup
from bittersweet.models import BaseEntity
from bittersweet.normalized import EntityManager, NormalizedState, update_normalized_state

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseEntity)

ReferenceCheck = Callable[[str], bool]


@dataclass
class StoreContext:
    config: StoreConfig
    clock: Clock
    scheduler: Scheduler
    bus: EventBus
    commit: Callable[[bool], None] = lambda persist: None
    # kind -> callables answering "is this id referenced?"
    references: dict[str, list[ReferenceCheck]] = field(default_factory=dict)
    # kind -> callable answering "does this id exist?"
    lookups: dict[str, ReferenceCheck] = field(default_factory=dict)

    def now(self) -> datetime:
        return self.clock.now()

    def register_reference(self, kind: str, check: ReferenceCheck) -> None:
        self.references.setdefault(kind, []).append(check)

    def is_referenced(self, kind: str, entity_id: str) -> bool:
        return any(check(entity_id) for check in self.references.get(kind, ()))

    def register_lookup(self, kind: str, exists: ReferenceCheck) -> None:
        self.lookups[kind] = exists

    def exists(self, kind: str, entity_id: str) -> bool:
        lookup = self.lookups.get(kind)
        return lookup is not None and lookup(entity_id)


class Slice:
    """Base for a domain partition of the store.

    Subclasses keep their state as plain attributes and mutate it only in
    action methods, calling ``_commit`` once per action.
    """

    name = ""

    def __init__(self, ctx: StoreContext) -> None:
        self.ctx = ctx
        self.events = EventEmitter(ctx.bus, self.name, ctx.now)
        self.listeners = ListenerGroup(ctx.bus)

    def wire(self) -> None:
        """Register bus listeners. Called once by the store builder."""

    def dispose(self) -> None:
        self.listeners.cleanup()

    def _commit(self, persist: bool = True) -> None:
        self.ctx.commit(persist)

    def _mutate(
        self, state: NormalizedState[E], updater: Callable[[EntityManager[E]], Any]
    ) -> NormalizedState[E]:
        return update_normalized_state(state, updater, now=self.ctx.now)

    def _require_reference_free(self, kind: str, entity_id: str) -> None:
        if self.ctx.is_referenced(kind, entity_id):
            raise ValidationError(f"{kind} {entity_id} is still referenced", rule=f"{kind}_in_use")

    # Persistence hooks

    def to_persisted(self) -> dict[str, Any]:
        return {}

    def parse_persisted(self, data: dict[str, Any]) -> dict[str, Any]:
        """Turn a persisted payload section into attribute values."""
        return {}

    def after_hydrate(self) -> None:
        """Recompute derived values once persisted data is merged."""
