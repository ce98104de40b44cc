from __future__ import annotations

import logging
import os
import secrets
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from bittersweet import (
    AppStore,
    BlockingBridge,
    FileStorage,
    InvalidStateError,
    NotFoundError,
    StoreError,
    ValidationError,
    configure_logging,
    create_store,
    load_config,
    partialize,
    storage_dir,
)
from bittersweet import selectors

logger = logging.getLogger(__name__)


# ── Auth ──────────────────────────────────────────────────────

security = HTTPBasic(auto_error=False)


def get_current_user(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    expected_username = os.environ.get("BITTERSWEET_USERNAME", "")
    expected_password = os.environ.get("BITTERSWEET_PASSWORD", "")

    if not expected_username or not expected_password:
        return "guest"

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Basic"},
        )

    correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), expected_username.encode("utf-8"))
    correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), expected_password.encode("utf-8"))

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


# ── Helpers ───────────────────────────────────────────────────


def get_store(request: Request) -> AppStore:
    return request.app.state.store


def get_bridge(request: Request) -> BlockingBridge:
    return request.app.state.bridge


def _status_for(exc: StoreError) -> int:
    # Conflicts are both validation and state errors; state wins.
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidStateError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    body = exc.to_dict()
    body.setdefault("rule", getattr(exc, "rule", None))
    return JSONResponse(status_code=_status_for(exc), content=body)


def _require(payload: dict[str, Any], *keys: str) -> list[Any]:
    missing = [k for k in keys if payload.get(k) in (None, "")]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing {', '.join(missing)}")
    return [payload[k] for k in keys]


def _current(store: AppStore) -> dict[str, Any]:
    session = store.focus.current_session
    return {
        "state": store.focus.session_state,
        "session": session.to_dict() if session else None,
        "remainingTime": store.focus.remaining_time,
    }


# ── Endpoints ─────────────────────────────────────────────────

api = APIRouter(prefix="/api", dependencies=[Depends(get_current_user)])


@api.get("/state")
async def api_state(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    payload = partialize(store)
    payload["revision"] = store.revision
    payload["isHydrated"] = store.is_hydrated
    return payload


@api.get("/dashboard")
async def api_dashboard(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return selectors.get_dashboard(store)


# Focus sessions

@api.get("/focus/current")
async def api_focus_current(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return _current(store)


@api.post("/focus/start")
async def api_focus_start(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    target, category_id = _require(payload, "targetDuration", "categoryId")
    store.focus.start_session(
        target,
        category_id,
        tag_ids=payload.get("tagIds") or [],
        description=payload.get("description"),
        task_id=payload.get("taskId"),
    )
    return _current(store)


@api.post("/focus/pause")
async def api_focus_pause(payload: dict[str, Any] = Body(default={}), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    store.focus.pause_session(payload.get("reason", ""))
    return _current(store)


@api.post("/focus/resume")
async def api_focus_resume(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    store.focus.resume_session()
    return _current(store)


@api.post("/focus/complete")
async def api_focus_complete(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    session = store.focus.complete_session()
    return {"session": session.to_dict(), "balance": store.rewards.balance}


@api.post("/focus/cancel")
async def api_focus_cancel(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    session = store.focus.cancel_session()
    return {"session": session.to_dict()}


@api.get("/focus/sessions")
async def api_focus_sessions(date: str | None = None, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    if date is None:
        sessions = [store.focus.sessions.by_id[i] for i in store.focus.sessions.all_ids]
    else:
        sessions = selectors.get_sessions_for_date(store, date)
    return {"sessions": [s.to_dict() for s in sessions]}


@api.delete("/focus/sessions/{session_id}")
async def api_focus_delete_session(session_id: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    store.focus.delete_session(session_id)
    return {"deleted": session_id}


@api.get("/focus/stats")
async def api_focus_stats(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return selectors.get_focus_stats(store).to_dict()


@api.put("/focus/settings")
async def api_focus_settings(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.focus.update_focus_settings(payload).to_dict()


@api.get("/insights")
async def api_insights(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return selectors.get_productivity_insights(store).to_dict()


@api.get("/chart")
async def api_chart(period: str = "daily", store: AppStore = Depends(get_store)) -> dict[str, Any]:
    try:
        points = selectors.get_chart_data(store, period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"period": period, "points": [p.to_dict() for p in points]}


# Categories and tags

@api.get("/categories")
async def api_categories(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    state = store.focus.categories
    return {"categories": [state.by_id[i].to_dict() for i in state.all_ids]}


@api.post("/categories")
async def api_create_category(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    category = store.focus.create_category(
        payload.get("name", ""), payload.get("color", ""), payload.get("icon", "")
    )
    return category.to_dict()


@api.put("/categories/{category_id}")
async def api_update_category(category_id: str, payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.focus.update_category(category_id, **payload).to_dict()


@api.delete("/categories/{category_id}")
async def api_delete_category(category_id: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    store.focus.delete_category(category_id)
    return {"deleted": category_id}


@api.post("/tags")
async def api_create_tag(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    tag = store.focus.create_tag(payload.get("name", ""), payload.get("color", ""), payload.get("icon", ""))
    return tag.to_dict()


@api.delete("/tags/{tag_id}")
async def api_delete_tag(tag_id: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    store.focus.delete_tag(tag_id)
    return {"deleted": tag_id}


# Tasks

TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "categoryId": "category_id",
    "date": "date",
    "startTime": "start_time",
    "duration": "duration",
    "priority": "priority",
}


@api.get("/tasks")
async def api_list_tasks(date: str | None = None, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    if date is None:
        tasks = [store.tasks.tasks.by_id[i] for i in store.tasks.tasks.all_ids]
    else:
        tasks = selectors.get_tasks_for_date(store, date)
    return {"tasks": [t.to_dict() for t in tasks]}


@api.post("/tasks")
async def api_create_task(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    title, category_id, duration = _require(payload, "title", "categoryId", "duration")
    task = store.tasks.create_task(
        title,
        category_id,
        duration,
        date=payload.get("date"),
        start_time=payload.get("startTime"),
        description=payload.get("description", ""),
        priority=payload.get("priority", "medium"),
    )
    return task.to_dict()


@api.put("/tasks/{task_id}")
async def api_update_task(task_id: str, payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    unknown = set(payload) - set(TASK_FIELDS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown fields: {', '.join(sorted(unknown))}")
    changes = {TASK_FIELDS[k]: v for k, v in payload.items()}
    return store.tasks.update_task(task_id, changes).to_dict()


@api.delete("/tasks/{task_id}")
async def api_delete_task(task_id: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    store.tasks.delete_task(task_id)
    return {"deleted": task_id}


@api.post("/tasks/{task_id}/{action}")
async def api_task_action(task_id: str, action: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    verbs = {
        "start": store.tasks.start_task,
        "complete": store.tasks.complete_task,
        "cancel": store.tasks.cancel_task,
    }
    if action not in verbs:
        raise HTTPException(status_code=404, detail=f"Unknown task action: {action}")
    return verbs[action](task_id).to_dict()


# Rewards

@api.get("/rewards")
async def api_rewards(limit: int = 20, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return {
        "balance": store.rewards.balance,
        "totalEarned": store.rewards.total_earned,
        "totalSpent": store.rewards.total_spent,
        "transactions": [t.to_dict() for t in selectors.get_transaction_history(store, limit)],
    }


@api.post("/rewards/{kind}")
async def api_rewards_ledger(kind: str, payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    if kind not in ("earn", "spend"):
        raise HTTPException(status_code=404, detail=f"Unknown rewards action: {kind}")
    amount, source = _require(payload, "amount", "source")
    action = store.rewards.earn_seeds if kind == "earn" else store.rewards.spend_seeds
    tx = action(amount, source, payload.get("description", ""), payload.get("metadata"))
    return {"transaction": tx.to_dict(), "balance": store.rewards.balance}


@api.get("/apps")
async def api_list_apps(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    state = store.rewards.unlockable_apps
    return {"apps": [state.by_id[i].to_dict() for i in state.all_ids]}


@api.post("/apps")
async def api_add_app(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    name, bundle_id = _require(payload, "name", "bundleId")
    app_ = store.rewards.add_unlockable_app(
        name,
        bundle_id,
        payload.get("cost", 0),
        unlock_minutes=payload.get("unlockMinutes", 15),
        icon=payload.get("icon", ""),
        description=payload.get("description", ""),
    )
    return app_.to_dict()


@api.post("/apps/{app_id}/unlock")
async def api_unlock_app(app_id: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return {"app": store.rewards.unlock_app(app_id).to_dict(), "balance": store.rewards.balance}


@api.post("/apps/{app_id}/relock")
async def api_relock_app(app_id: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return {"app": store.rewards.relock_app(app_id).to_dict()}


# Social

@api.post("/squads")
async def api_create_squad(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    (name,) = _require(payload, "name")
    squad = store.social.create_squad(name, payload.get("description", ""), payload.get("maxMembers", 10))
    return squad.to_dict()


@api.post("/squads/{squad_id}/join")
async def api_join_squad(squad_id: str, payload: dict[str, Any] = Body(default={}), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.social.join_squad(squad_id, payload.get("userId")).to_dict()


@api.post("/squads/{squad_id}/leave")
async def api_leave_squad(squad_id: str, payload: dict[str, Any] = Body(default={}), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.social.leave_squad(squad_id, payload.get("userId")).to_dict()


@api.get("/squads/{squad_id}/leaderboard")
async def api_squad_leaderboard(squad_id: str, store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return {"squadId": squad_id, "leaderboard": selectors.get_squad_leaderboard(store, squad_id)}


@api.post("/challenges")
async def api_create_challenge(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    title, goal_type, target = _require(payload, "title", "goalType", "targetValue")
    challenge = store.social.create_challenge(
        title,
        goal_type,
        target,
        start_date=payload.get("startDate"),
        end_date=payload.get("endDate"),
        squad_id=payload.get("squadId"),
        reward_seeds=payload.get("rewardSeeds", 0),
        description=payload.get("description", ""),
    )
    return challenge.to_dict()


@api.post("/challenges/{challenge_id}/join")
async def api_join_challenge(challenge_id: str, payload: dict[str, Any] = Body(default={}), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.social.join_challenge(challenge_id, payload.get("userId")).to_dict()


@api.post("/challenges/{challenge_id}/leave")
async def api_leave_challenge(challenge_id: str, payload: dict[str, Any] = Body(default={}), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.social.leave_challenge(challenge_id, payload.get("userId")).to_dict()


# Settings

@api.get("/settings")
async def api_get_settings(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.settings.as_dict()


@api.put("/settings")
async def api_update_settings(payload: dict[str, Any] = Body(...), store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.settings.update_settings(payload)


@api.post("/settings/reset")
async def api_reset_settings(store: AppStore = Depends(get_store)) -> dict[str, Any]:
    return store.settings.reset_settings()


# App blocking (called by the native adapter)

@api.post("/blocking/blocked")
async def api_app_blocked(payload: dict[str, Any] = Body(...), bridge: BlockingBridge = Depends(get_bridge)) -> dict[str, Any]:
    return bridge.app_launch_blocked(payload)


@api.post("/blocking/expired")
async def api_unlock_expired(payload: dict[str, Any] = Body(...), bridge: BlockingBridge = Depends(get_bridge)) -> dict[str, Any]:
    return bridge.unlock_session_expired(payload)


# ── App factory ───────────────────────────────────────────────


def create_app(store: AppStore | None = None) -> FastAPI:
    """Build the HTTP app. Without a store, one is loaded from the data
    directory when the app starts and disposed when it stops; a store
    passed in is left open for its owner."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = store
        if owned is None:
            config = load_config()
            configure_logging(config)
            owned = create_store(config, storage=FileStorage(storage_dir()))
            logger.info("Store loaded (revision %d)", owned.revision)
        app.state.store = owned
        app.state.bridge = BlockingBridge(owned)
        try:
            yield
        finally:
            app.state.bridge.dispose()
            if store is None:
                owned.dispose()

    app = FastAPI(title="Bittersweet", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(StoreError, store_error_handler)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(api)
    return app


app = create_app()
