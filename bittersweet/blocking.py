"""Bridge between the store and the native app-blocking adapter.

The native side reports blocked launches and expired unlock windows; the
bridge turns them into store events. In the other direction it forwards
APP_UNLOCKED / APP_RELOCKED events to the injected port. Store actions
never call the port themselves.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from bittersweet.errors import ValidationError
from bittersweet.events import EventEmitter, ListenerGroup, StoreEvent, StoreEvents
from bittersweet.models import format_datetime, parse_datetime

if TYPE_CHECKING:
    from bittersweet.store import AppStore

logger = logging.getLogger(__name__)


class AppBlockingPort(Protocol):
    def grant_unlock(self, bundle_identifier: str, minutes: int) -> None: ...

    def restore_block(self, bundle_identifier: str) -> None: ...


class BlockingBridge:
    def __init__(self, store: AppStore, port: AppBlockingPort | None = None) -> None:
        self.store = store
        self.port = port
        self.events = EventEmitter(store.bus, "blocking", store.clock.now)
        self.listeners = ListenerGroup(store.bus)
        if port is not None:
            self.listeners.on(StoreEvents.APP_UNLOCKED, self._forward_unlock)
            self.listeners.on(StoreEvents.APP_RELOCKED, self._forward_relock)

    def _parse(self, payload: dict[str, Any]) -> tuple[str, str]:
        bundle = payload.get("bundleIdentifier")
        if not isinstance(bundle, str) or not bundle:
            raise ValidationError("bundleIdentifier is required", rule="bundle_required")
        timestamp = parse_datetime(payload.get("timestamp")) or self.store.clock.now()
        return bundle, format_datetime(timestamp)

    def app_launch_blocked(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Record a blocked launch and announce that nothing else changed."""
        bundle, timestamp = self._parse(payload)
        app = self.store.rewards.find_app_by_bundle(bundle)
        self.events.emit(StoreEvents.APP_LAUNCH_BLOCKED, {
            "bundleIdentifier": bundle,
            "timestamp": timestamp,
            "appId": app.id if app else None,
        })
        notification = {
            "bundleIdentifier": bundle,
            "timestamp": timestamp,
            "rewardsAffected": False,
            "sessionAffected": False,
            "balance": self.store.rewards.balance,
            "unlockCost": app.cost if app else None,
            "canUnlock": bool(app) and self.store.rewards.can_afford(app.cost),
        }
        self.events.emit(StoreEvents.BLOCK_NOTIFICATION, notification)
        logger.debug("Launch of %s blocked", bundle)
        return notification

    def unlock_session_expired(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Relock the app whose unlock window ended."""
        bundle, timestamp = self._parse(payload)
        app = self.store.rewards.find_app_by_bundle(bundle)
        if app is not None:
            self.store.rewards.relock_app(app.id)
        else:
            logger.warning("Unlock expiry for unknown app %s", bundle)
        event_payload = {"bundleIdentifier": bundle, "timestamp": timestamp, "appId": app.id if app else None}
        self.events.emit(StoreEvents.UNLOCK_SESSION_EXPIRED, event_payload)
        return event_payload

    def _forward_unlock(self, event: StoreEvent) -> None:
        self.port.grant_unlock(event.payload["bundleIdentifier"], int(event.payload.get("unlockMinutes", 0)))

    def _forward_relock(self, event: StoreEvent) -> None:
        self.port.restore_block(event.payload["bundleIdentifier"])

    def dispose(self) -> None:
        self.listeners.cleanup()
