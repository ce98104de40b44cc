"""Tests for bittersweet/migrations.py — versioned payload upgrades."""

import copy

import pytest

from bittersweet import CURRENT_VERSION, MigrationError, run_migrations
from bittersweet import migrations
from bittersweet.migrations import migrate_v1, migrate_v2, migrate_v3


V0_PAYLOAD = {
    "homeSlice": {
        "user": {"name": "Ada"},
        "tasks": [
            {"title": "Write report", "categoryId": "work", "duration": 30},
            {"id": "keep-me", "title": "Read", "categoryId": "study", "duration": 20},
        ],
    },
    "focus": {
        "sessions": [
            {
                "id": "s1",
                "startTime": "2026-03-01T09:00:00Z",
                "endTime": "2026-03-01T09:25:00Z",
                "targetDuration": 25,
                "category": "work",
                "tags": ["deep"],
                "fruitsEarned": 2,
                "isCompleted": True,
                "isPaused": False,
                "totalPauseTime": 0,
            },
            {"id": "s2", "startTime": "2026-03-01T10:00:00Z", "category": "work", "isPaused": True},
        ],
    },
    "rewards": {"totalPoints": 10, "spentPoints": 4, "availablePoints": 6},
}


def test_v1_moves_home_slice_tasks():
    result = migrate_v1(V0_PAYLOAD)
    assert "homeSlice" not in result
    tasks = result["tasks"]["tasks"]
    assert tasks["allIds"] == ["task-legacy-0", "keep-me"]
    assert tasks["byId"]["task-legacy-0"]["title"] == "Write report"
    assert tasks["byId"]["task-legacy-0"]["id"] == "task-legacy-0"


def test_v2_normalizes_lists_and_adds_stats():
    result = migrate_v2(migrate_v1(V0_PAYLOAD))
    sessions = result["focus"]["sessions"]
    assert sessions["allIds"] == ["s1", "s2"]
    assert result["focus"]["stats"]["totalSessions"] == 0


def test_v3_renames_legacy_fields():
    result = migrate_v3(migrate_v2(migrate_v1(V0_PAYLOAD)))
    s1 = result["focus"]["sessions"]["byId"]["s1"]
    assert s1["seedsEarned"] == 2
    assert s1["categoryId"] == "work"
    assert s1["tagIds"] == ["deep"]
    assert s1["status"] == "completed"
    for legacy in ("fruitsEarned", "category", "tags", "isCompleted", "isPaused", "totalPauseTime"):
        assert legacy not in s1
    assert result["focus"]["sessions"]["byId"]["s2"]["status"] == "paused"
    assert result["rewards"] == {"totalEarned": 10, "totalSpent": 4, "balance": 6}


def test_legacy_session_with_end_time_is_cancelled():
    state = {"focus": {"sessions": {"byId": {"x": {"id": "x", "isCompleted": False, "endTime": "2026-03-01T09:00:00Z"}}, "allIds": ["x"]}}}
    assert migrate_v3(state)["focus"]["sessions"]["byId"]["x"]["status"] == "cancelled"


@pytest.mark.parametrize("step", [migrate_v1, migrate_v2, migrate_v3])
def test_steps_are_idempotent(step):
    once = step(run_migrations(V0_PAYLOAD, 0, step_version(step) - 1))
    assert step(once) == once


def step_version(step):
    return {migrate_v1: 1, migrate_v2: 2, migrate_v3: 3}[step]


def test_run_migrations_does_not_mutate_input():
    original = copy.deepcopy(V0_PAYLOAD)
    run_migrations(V0_PAYLOAD, 0)
    assert V0_PAYLOAD == original


def test_current_payload_passes_through():
    payload = {"focus": {"sessions": {"byId": {}, "allIds": []}}, "rewards": {"balance": 1}}
    assert run_migrations(payload, CURRENT_VERSION) == payload


def test_newer_version_is_rejected():
    with pytest.raises(MigrationError, match="newer") as exc:
        run_migrations({}, CURRENT_VERSION + 1)
    assert exc.value.from_version == CURRENT_VERSION + 1
    assert exc.value.step is None


def test_failing_step_raises_migration_error(monkeypatch):
    def boom(state):
        raise KeyError("missing")

    monkeypatch.setitem(migrations.MIGRATIONS, 2, boom)
    with pytest.raises(MigrationError) as exc:
        run_migrations({}, 0)
    assert exc.value.step == 2
    assert exc.value.from_version == 0
