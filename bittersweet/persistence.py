"""Persistence middleware: partialize, version, migrate, validate, merge.

Loading never raises. Undecodable payloads and failed migrations are
copied to ``<key>:backup`` and the store starts from defaults; shape
problems found by the validator are repaired field by field.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import TYPE_CHECKING, Any

from bittersweet.errors import IntegrityError, MigrationError
from bittersweet.migrations import CURRENT_VERSION, NORMALIZED_COLLECTIONS, empty_normalized, run_migrations
from bittersweet.storage import BatchedStorage, KeyValueStorage

if TYPE_CHECKING:
    from bittersweet.store import AppStore

logger = logging.getLogger(__name__)

PERSISTED_SLICES = ("focus", "tasks", "rewards", "social", "settings")


def partialize(store: AppStore) -> dict[str, Any]:
    """The durable subset of the store. UI state is never included."""
    payload: dict[str, Any] = {"version": CURRENT_VERSION}
    for name in PERSISTED_SLICES:
        payload[name] = store.slice(name).to_persisted()
    return payload


# ── Validation ────────────────────────────────────────────────


def _repair_normalized(value: Any, path: str, issues: list[IntegrityError]) -> dict[str, Any]:
    if not isinstance(value, dict) or not isinstance(value.get("byId"), dict) or not isinstance(
        value.get("allIds"), list
    ):
        issues.append(IntegrityError(path, "missing or malformed byId/allIds; reset to empty"))
        return empty_normalized()

    by_id = {str(k): v for k, v in value["byId"].items() if isinstance(v, dict)}
    if len(by_id) != len(value["byId"]):
        issues.append(IntegrityError(path, "dropped non-object records"))
    seen: set[str] = set()
    all_ids: list[str] = []
    for raw_id in value["allIds"]:
        entity_id = str(raw_id)
        if entity_id in seen or entity_id not in by_id:
            continue
        seen.add(entity_id)
        all_ids.append(entity_id)
    orphans = [k for k in by_id if k not in seen]
    all_ids.extend(orphans)
    if all_ids != [str(i) for i in value["allIds"]]:
        issues.append(IntegrityError(path, "allIds did not match byId; reindexed"))
    return {**value, "byId": by_id, "allIds": all_ids}


def validate_payload(data: dict[str, Any]) -> tuple[dict[str, Any], list[IntegrityError]]:
    """Return a structurally sound copy of ``data`` and the problems fixed."""
    data = copy.deepcopy(data)
    issues: list[IntegrityError] = []
    for name in PERSISTED_SLICES:
        if name in data and not isinstance(data[name], dict):
            issues.append(IntegrityError(name, "slice is not an object; dropped"))
            del data[name]
    for name, keys in NORMALIZED_COLLECTIONS.items():
        section = data.get(name)
        if section is None:
            continue
        for key in keys:
            if key in section:
                section[key] = _repair_normalized(section[key], f"{name}.{key}", issues)
    return data, issues


# ── Merge ─────────────────────────────────────────────────────


def merge_into(store: AppStore, data: dict[str, Any]) -> None:
    """Copy persisted plain values onto the live slices.

    Methods and other callables on the live slices are never replaced.
    """
    for name in PERSISTED_SLICES:
        section = data.get(name)
        if not isinstance(section, dict):
            continue
        live = store.slice(name)
        for attr, value in live.parse_persisted(section).items():
            if not hasattr(live, attr) or callable(getattr(live, attr)) or callable(value):
                logger.debug("Skipping non-data field %s.%s during merge", name, attr)
                continue
            setattr(live, attr, value)


class Persistence:
    """Connects a store to durable storage through a write batcher."""

    def __init__(self, store: AppStore, backend: KeyValueStorage) -> None:
        config = store.config
        self.store = store
        self.key = config.storage_key
        self.backup_key = f"{config.storage_key}:backup"
        self.storage = BatchedStorage(backend, store.scheduler, config.write_batch_window_ms / 1000)
        self.last_error: str | None = None
        self.integrity_issues: list[IntegrityError] = []
        self.loaded_version: int | None = None
        self._ready = False

    def serialize(self) -> str:
        return json.dumps(partialize(self.store), ensure_ascii=False, separators=(",", ":"))

    def request_write(self) -> None:
        """Queue the current state; the batcher coalesces rapid requests."""
        if not self._ready:
            return
        try:
            self.storage.set_item(self.key, self.serialize())
        except (TypeError, ValueError):
            logger.exception("Could not serialize store state")

    def flush(self) -> None:
        self.storage.flush()

    def hydrate(self) -> None:
        """Load, migrate, validate and merge persisted state, then finish
        hydration on the store. Never raises for bad data."""
        raw = self.storage.get_item(self.key)
        data = self._load(raw) if raw is not None else None
        if data is not None:
            merge_into(self.store, data)
        self._ready = True
        self.store.finish_hydration()
        if data is not None and self.loaded_version != CURRENT_VERSION:
            self.request_write()

    def _load(self, raw: str) -> dict[str, Any] | None:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("payload is not a JSON object")
        except ValueError as exc:
            self._fail(raw, f"Persisted store is unreadable: {exc}", "decode_error")
            return None

        version = data.pop("version", 0)
        if isinstance(version, bool) or not isinstance(version, int):
            version = 0
        self.loaded_version = version
        try:
            migrated = run_migrations(data, version)
        except MigrationError as exc:
            self._fail(raw, str(exc), exc.code)
            return None

        validated, issues = validate_payload(migrated)
        for issue in issues:
            logger.warning("Repaired persisted state: %s", issue)
        self.integrity_issues = issues
        return validated

    def _fail(self, raw: str, message: str, code: str) -> None:
        logger.error("%s; keeping raw copy under %s and starting fresh", message, self.backup_key)
        try:
            self.storage.backend.set_item(self.backup_key, raw)
        except Exception:
            logger.exception("Could not write backup copy")
        self.last_error = message
        self.store.ui.add_error(message, code=code, source="persistence")
