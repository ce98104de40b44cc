"""Schema migrations for the persisted payload.

``MIGRATIONS[n]`` upgrades a version n-1 payload to version n. Every step
works on a deep copy, never fails on well-formed input, and leaves
payloads that are already in the newer shape unchanged.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from bittersweet.errors import MigrationError

logger = logging.getLogger(__name__)

CURRENT_VERSION = 3

# Collections stored as normalized maps, per slice.
NORMALIZED_COLLECTIONS: dict[str, tuple[str, ...]] = {
    "focus": ("sessions", "categories", "tags"),
    "tasks": ("tasks",),
    "rewards": ("transactions", "unlockableApps"),
    "social": ("squads", "challenges"),
}

DEFAULT_STATS = {
    "totalSessions": 0,
    "totalFocusTime": 0,
    "currentStreak": 0,
    "longestStreak": 0,
    "averageSessionLength": 0,
    "completionRate": 0,
}


def empty_normalized() -> dict[str, Any]:
    return {"byId": {}, "allIds": [], "loading": False, "error": None, "lastUpdated": None}


def normalize_list(items: list[Any], prefix: str) -> dict[str, Any]:
    """List of records -> ``{byId, allIds}``. Records without an id get a
    positional one so the result is deterministic."""
    state = empty_normalized()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        item_id = str(item.get("id") or f"{prefix}-legacy-{index}")
        if item_id not in state["byId"]:
            state["allIds"].append(item_id)
        state["byId"][item_id] = {**item, "id": item_id}
    return state


def _section(state: dict[str, Any], name: str) -> dict[str, Any]:
    section = state.get(name)
    if not isinstance(section, dict):
        section = {}
        state[name] = section
    return section


# ── Steps ─────────────────────────────────────────────────────


def migrate_v1(state: dict[str, Any]) -> dict[str, Any]:
    """Fold the legacy ``homeSlice`` task list into ``tasks.tasks``."""
    state = copy.deepcopy(state)
    home = state.pop("homeSlice", None)
    if not isinstance(home, dict):
        return state
    legacy_tasks = home.get("tasks")
    if isinstance(legacy_tasks, list):
        tasks = _section(state, "tasks")
        existing = tasks.get("tasks")
        migrated = normalize_list(legacy_tasks, "task")
        if isinstance(existing, dict) and isinstance(existing.get("byId"), dict):
            for task_id in migrated["allIds"]:
                if task_id not in existing["byId"]:
                    existing.setdefault("allIds", []).append(task_id)
                existing["byId"][task_id] = migrated["byId"][task_id]
        else:
            tasks["tasks"] = migrated
        logger.info("Moved %d legacy task(s) out of homeSlice", len(migrated["allIds"]))
    if home.get("user"):
        logger.info("Dropping legacy homeSlice user record")
    return state


def migrate_v2(state: dict[str, Any]) -> dict[str, Any]:
    """Convert list collections to normalized maps; add focus stats."""
    state = copy.deepcopy(state)
    focus = state.get("focus")
    if isinstance(focus, dict) and not isinstance(focus.get("stats"), dict):
        focus["stats"] = dict(DEFAULT_STATS)
    for slice_name, keys in NORMALIZED_COLLECTIONS.items():
        section = state.get(slice_name)
        if not isinstance(section, dict):
            continue
        for key in keys:
            if isinstance(section.get(key), list):
                section[key] = normalize_list(section[key], key.rstrip("s"))
    return state


def _rename(record: dict[str, Any], old: str, new: str) -> None:
    if old in record:
        value = record.pop(old)
        record.setdefault(new, value)


def _legacy_status(session: dict[str, Any]) -> str:
    if session.get("isCompleted"):
        return "completed"
    if session.get("isPaused"):
        return "paused"
    if session.get("endTime"):
        return "cancelled"
    return "active"


def migrate_v3(state: dict[str, Any]) -> dict[str, Any]:
    """Rename legacy session fields and reward counters."""
    state = copy.deepcopy(state)
    focus = state.get("focus")
    sessions = focus.get("sessions") if isinstance(focus, dict) else None
    if isinstance(sessions, dict) and isinstance(sessions.get("byId"), dict):
        for session in sessions["byId"].values():
            if not isinstance(session, dict):
                continue
            _rename(session, "fruitsEarned", "seedsEarned")
            _rename(session, "category", "categoryId")
            _rename(session, "tags", "tagIds")
            if "isCompleted" in session or "isPaused" in session:
                status = _legacy_status(session)
                session.pop("isCompleted", None)
                session.pop("isPaused", None)
                session.setdefault("status", status)
            session.pop("totalPauseTime", None)

    rewards = state.get("rewards")
    if isinstance(rewards, dict):
        _rename(rewards, "totalPoints", "totalEarned")
        _rename(rewards, "spentPoints", "totalSpent")
        _rename(rewards, "availablePoints", "balance")
    return state


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: migrate_v1,
    2: migrate_v2,
    3: migrate_v3,
}


def run_migrations(state: dict[str, Any], from_version: int, to_version: int = CURRENT_VERSION) -> dict[str, Any]:
    """Apply every step after ``from_version`` up to ``to_version``.

    Raises MigrationError if a step fails or the payload is newer than
    this code understands.
    """
    if from_version > to_version:
        raise MigrationError(
            from_version, None, f"Stored version {from_version} is newer than supported {to_version}"
        )
    migrated = state
    for version in range(max(from_version, 0) + 1, to_version + 1):
        step = MIGRATIONS.get(version)
        if step is None:
            continue
        try:
            migrated = step(migrated)
        except Exception as exc:
            raise MigrationError(from_version, version, f"Migration to v{version} failed: {exc}") from exc
        logger.info("Migrated persisted store to v%d", version)
    return migrated
