"""Synchronous publish/subscribe channel between store slices.

Slices never call each other; they emit events here and register
listeners for the events they react to.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from bittersweet.clock import utc_now
from bittersweet.errors import EventRecursionError

logger = logging.getLogger(__name__)

WILDCARD = "*"


class StoreEvents:
    """Canonical event type names."""

    # Focus sessions
    FOCUS_SESSION_STARTED = "FOCUS_SESSION_STARTED"
    FOCUS_SESSION_PAUSED = "FOCUS_SESSION_PAUSED"
    FOCUS_SESSION_RESUMED = "FOCUS_SESSION_RESUMED"
    FOCUS_SESSION_COMPLETED = "FOCUS_SESSION_COMPLETED"
    FOCUS_SESSION_CANCELLED = "FOCUS_SESSION_CANCELLED"
    FOCUS_SESSION_DELETED = "FOCUS_SESSION_DELETED"

    # Tasks
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_STARTED = "TASK_STARTED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_CANCELLED = "TASK_CANCELLED"
    TASK_DELETED = "TASK_DELETED"

    # Rewards
    SEEDS_EARNED = "SEEDS_EARNED"
    SEEDS_SPENT = "SEEDS_SPENT"
    APP_UNLOCKED = "APP_UNLOCKED"
    APP_RELOCKED = "APP_RELOCKED"

    # Social
    SQUAD_JOINED = "SQUAD_JOINED"
    SQUAD_LEFT = "SQUAD_LEFT"
    CHALLENGE_JOINED = "CHALLENGE_JOINED"
    CHALLENGE_LEFT = "CHALLENGE_LEFT"
    CHALLENGE_COMPLETED = "CHALLENGE_COMPLETED"

    # Settings
    SETTINGS_UPDATED = "SETTINGS_UPDATED"
    THEME_CHANGED = "THEME_CHANGED"

    # UI
    MODAL_OPENED = "MODAL_OPENED"
    MODAL_CLOSED = "MODAL_CLOSED"
    ERROR_OCCURRED = "ERROR_OCCURRED"

    # App blocking
    APP_LAUNCH_BLOCKED = "APP_LAUNCH_BLOCKED"
    BLOCK_NOTIFICATION = "BLOCK_NOTIFICATION"
    UNLOCK_SESSION_EXPIRED = "UNLOCK_SESSION_EXPIRED"

    # Lifecycle
    STORE_HYDRATED = "STORE_HYDRATED"


@dataclass
class StoreEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


Handler = Callable[[StoreEvent], None]


def create_store_event(
    event_type: str,
    payload: dict[str, Any] | None = None,
    source: str = "",
    timestamp: datetime | None = None,
) -> StoreEvent:
    return StoreEvent(
        type=event_type,
        payload=dict(payload or {}),
        source=source,
        timestamp=timestamp or utc_now(),
    )


class EventBus:
    """Dispatches events to handlers synchronously, in registration order.

    Handlers for the event's type run first, then wildcard handlers. A
    handler that raises is logged and skipped. Nested emits deeper than
    ``max_depth`` raise ``EventRecursionError``.
    """

    def __init__(self, history_size: int = 100, max_depth: int = 8) -> None:
        if history_size < 1:
            raise ValueError("history_size must be >= 1")
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self._listeners: dict[str, list[Handler]] = {}
        self._history: deque[StoreEvent] = deque(maxlen=history_size)
        self._max_depth = max_depth
        self._depth = 0

    @property
    def depth(self) -> int:
        return self._depth

    def emit(self, event: StoreEvent) -> None:
        if self._depth >= self._max_depth:
            raise EventRecursionError(
                f"emit depth {self._depth} reached while emitting {event.type}"
            )
        self._history.append(event)
        # Snapshot so handlers may (un)subscribe during dispatch.
        handlers = list(self._listeners.get(event.type, ()))
        wildcard = list(self._listeners.get(WILDCARD, ())) if event.type != WILDCARD else []
        self._depth += 1
        try:
            for handler in handlers:
                self._dispatch(handler, event, event.type)
            for handler in wildcard:
                self._dispatch(handler, event, WILDCARD)
        finally:
            self._depth -= 1

    def _dispatch(self, handler: Handler, event: StoreEvent, channel: str) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception("Error in %s handler for %s", channel, event.type)

    def on(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; returns a function that unregisters it."""
        self._listeners.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._listeners.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def once(self, event_type: str, handler: Handler) -> Callable[[], None]:
        fired = False

        def wrapper(event: StoreEvent) -> None:
            nonlocal fired
            if fired:
                return
            fired = True
            unsubscribe()
            handler(event)

        unsubscribe = self.on(event_type, wrapper)
        return unsubscribe

    def off(self, event_type: str) -> None:
        self._listeners.pop(event_type, None)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def get_event_history(self) -> list[StoreEvent]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, ()))
        return sum(len(h) for h in self._listeners.values())


class EventEmitter:
    """Emits events stamped with a fixed source and the store clock."""

    def __init__(self, bus: EventBus, source: str, now: Callable[[], datetime] = utc_now) -> None:
        self._bus = bus
        self._source = source
        self._now = now

    def emit(self, event_type: str, payload: dict[str, Any] | None = None) -> StoreEvent:
        event = create_store_event(event_type, payload, self._source, self._now())
        self._bus.emit(event)
        return event


class ListenerGroup:
    """Tracks a slice's subscriptions so they can be removed together."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._subscriptions: list[Callable[[], None]] = []

    def on(self, event_type: str, handler: Handler) -> Callable[[], None]:
        unsubscribe = self._bus.on(event_type, handler)
        self._subscriptions.append(unsubscribe)
        return unsubscribe

    def once(self, event_type: str, handler: Handler) -> Callable[[], None]:
        unsubscribe = self._bus.once(event_type, handler)
        self._subscriptions.append(unsubscribe)
        return unsubscribe

    def cleanup(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
