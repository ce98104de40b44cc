"""Tests for ui/app.py — the HTTP adapter over a store."""

import pytest
from fastapi.testclient import TestClient

from ui.app import create_app


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.delenv("BITTERSWEET_USERNAME", raising=False)
    monkeypatch.delenv("BITTERSWEET_PASSWORD", raising=False)
    with TestClient(create_app(store)) as client:
        yield client


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_focus_session_flow(client, store, clock):
    response = client.post("/api/focus/start", json={"targetDuration": 25, "categoryId": "work"})
    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "active"
    assert body["remainingTime"] == 1500
    assert body["session"]["categoryId"] == "work"

    clock.advance(25 * 60)
    done = client.post("/api/focus/complete").json()
    assert done["session"]["status"] == "completed"
    assert done["balance"] == 0
    assert client.get("/api/focus/current").json()["state"] == "idle"
    assert len(client.get("/api/focus/sessions", params={"date": "2026-03-02"}).json()["sessions"]) == 1


def test_second_start_conflicts(client):
    client.post("/api/focus/start", json={"targetDuration": 25, "categoryId": "work"})
    response = client.post("/api/focus/start", json={"targetDuration": 25, "categoryId": "work"})
    assert response.status_code == 409
    assert response.json()["code"] == "session_conflict"
    assert response.json()["rule"] == "no_current_session"


def test_validation_error_carries_rule(client):
    response = client.post("/api/focus/start", json={"targetDuration": 0, "categoryId": "work"})
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
    assert response.json()["rule"]


def test_missing_fields(client):
    response = client.post("/api/tasks", json={"title": "Write"})
    assert response.status_code == 400
    assert "categoryId" in response.json()["detail"]


def test_not_found(client):
    response = client.post("/api/tasks/task-missing/start")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_invalid_transition(client):
    response = client.post("/api/focus/pause")
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state"


def test_category_in_use(client, clock):
    client.post("/api/focus/start", json={"targetDuration": 5, "categoryId": "study"})
    clock.advance(60)
    client.post("/api/focus/cancel")
    response = client.delete("/api/categories/study")
    assert response.status_code == 422
    assert response.json()["rule"] == "category_in_use"
    assert client.delete("/api/categories/exercise").json() == {"deleted": "exercise"}


def test_task_crud(client):
    created = client.post("/api/tasks", json={"title": "Write", "categoryId": "work", "duration": 30}).json()
    task_id = created["id"]
    updated = client.put(f"/api/tasks/{task_id}", json={"title": "Write more"}).json()
    assert updated["title"] == "Write more"
    assert client.put(f"/api/tasks/{task_id}", json={"status": "completed"}).status_code == 400
    assert client.post(f"/api/tasks/{task_id}/start").json()["status"] == "active"
    assert client.post(f"/api/tasks/{task_id}/launch").status_code == 404
    assert [t["id"] for t in client.get("/api/tasks").json()["tasks"]] == [task_id]


def test_rewards(client):
    earned = client.post("/api/rewards/earn", json={"amount": 5, "source": "bonus"}).json()
    assert earned["balance"] == 5

    response = client.post("/api/rewards/spend", json={"amount": 6, "source": "shop"})
    assert response.status_code == 422
    assert response.json()["rule"] == "insufficient_balance"

    ledger = client.get("/api/rewards").json()
    assert ledger["balance"] == 5
    assert len(ledger["transactions"]) == 1


def test_unlock_app(client):
    client.post("/api/rewards/earn", json={"amount": 5, "source": "bonus"})
    app_ = client.post("/api/apps", json={"name": "Games", "bundleId": "com.example.games", "cost": 5}).json()
    unlocked = client.post(f"/api/apps/{app_['id']}/unlock").json()
    assert unlocked["balance"] == 0

    notice = client.post("/api/blocking/blocked", json={"bundleIdentifier": "com.example.games"}).json()
    assert notice["rewardsAffected"] is False
    expired = client.post("/api/blocking/expired", json={"bundleIdentifier": "com.example.games"}).json()
    assert expired["appId"] == app_["id"]


def test_settings(client):
    assert client.put("/api/settings", json={"theme": "dark"}).json()["theme"] == "dark"
    response = client.put("/api/settings", json={"theme": "neon"})
    assert response.status_code == 422
    assert client.post("/api/settings/reset").json()["theme"] == "system"


def test_chart_rejects_bad_period(client):
    assert client.get("/api/chart", params={"period": "hourly"}).status_code == 400
    assert client.get("/api/chart").json() == {"period": "daily", "points": []}


def test_state_and_dashboard(client):
    state = client.get("/api/state").json()
    assert state["version"] == 3
    assert state["isHydrated"] is True
    assert "ui" not in state
    assert client.get("/api/dashboard").json()["date"] == "2026-03-02"


def test_basic_auth(store, monkeypatch):
    monkeypatch.setenv("BITTERSWEET_USERNAME", "alice")
    monkeypatch.setenv("BITTERSWEET_PASSWORD", "secret")
    with TestClient(create_app(store)) as client:
        assert client.get("/api/settings").status_code == 401
        assert client.get("/api/settings", auth=("alice", "wrong")).status_code == 401
        assert client.get("/api/settings", auth=("alice", "secret")).status_code == 200
        assert client.get("/healthz").status_code == 200


def test_caller_owned_store_survives_shutdown(store):
    with TestClient(create_app(store)):
        pass
    assert not store._disposed
    assert store.tasks.create_task("After", "work", 15).title == "After"


def test_app_disposes_the_store_it_loaded(tmp_path, monkeypatch):
    monkeypatch.setenv("BITTERSWEET_ROOT", str(tmp_path))
    monkeypatch.delenv("BITTERSWEET_USERNAME", raising=False)
    monkeypatch.delenv("BITTERSWEET_PASSWORD", raising=False)
    app = create_app()
    with TestClient(app) as client:
        assert client.get("/healthz").status_code == 200
    assert app.state.store._disposed
