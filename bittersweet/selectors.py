"""Read-only views derived from the store.

Every selector is a pure function of the store, memoized until the next
committed change. Returned objects are shared between callers and must
not be mutated.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from bittersweet import analytics
from bittersweet.models import (
    ChartDataPoint,
    FocusSession,
    FocusStats,
    ProductivityInsights,
    RewardTransaction,
    Task,
    TaskProgress,
    parse_date,
)

if TYPE_CHECKING:
    from bittersweet.store import AppStore


def _sessions(store: AppStore) -> list[FocusSession]:
    state = store.focus.sessions
    return [state.by_id[i] for i in state.all_ids if i in state.by_id]


def _tasks(store: AppStore) -> list[Task]:
    state = store.tasks.tasks
    return [state.by_id[i] for i in state.all_ids if i in state.by_id]


def _local_today(store: AppStore) -> date:
    return store.clock.now().astimezone(store.config.tzinfo).date()


# ── Focus ─────────────────────────────────────────────────────


def get_session_by_id(store: AppStore, session_id: str) -> FocusSession | None:
    return store.focus.sessions.by_id.get(session_id)


def get_sessions_for_date(store: AppStore, day: date | str) -> list[FocusSession]:
    """Sessions started on ``day`` in the user's timezone, oldest first."""
    target = parse_date(day)
    tz = store.config.tzinfo

    def compute() -> list[FocusSession]:
        found = [
            s for s in _sessions(store)
            if s.start_time is not None and s.start_time.astimezone(tz).date() == target
        ]
        return sorted(found, key=lambda s: s.start_time)

    return store.memo(("sessions_for_date", target), compute)


def get_sessions_for_range(store: AppStore, start: datetime, end: datetime) -> list[FocusSession]:
    """Sessions whose start time falls within ``[start, end]``."""

    def compute() -> list[FocusSession]:
        found = [s for s in _sessions(store) if s.start_time is not None and start <= s.start_time <= end]
        return sorted(found, key=lambda s: s.start_time)

    return store.memo(("sessions_for_range", start, end), compute)


def get_active_session(store: AppStore) -> FocusSession | None:
    return store.focus.current_session


def get_remaining_time(store: AppStore) -> float:
    """Seconds left in the current session; 0 when idle."""
    return store.focus.remaining_time


def get_focus_stats(store: AppStore) -> FocusStats:
    return store.focus.stats


def get_chart_data(store: AppStore, period: str) -> list[ChartDataPoint]:
    return store.memo(
        ("chart", period),
        lambda: analytics.chart_data(_sessions(store), period, store.config.tzinfo),
    )


def get_productivity_insights(store: AppStore) -> ProductivityInsights:
    return store.memo(
        ("insights", _local_today(store)),
        lambda: analytics.productivity_insights(_sessions(store), store.clock.now(), store.config.tzinfo),
    )


# ── Tasks ─────────────────────────────────────────────────────


def get_tasks_for_date(store: AppStore, day: date | str) -> list[Task]:
    """Tasks scheduled on ``day``, by start time; untimed tasks last."""
    target = parse_date(day)

    def compute() -> list[Task]:
        found = [t for t in _tasks(store) if t.date == target]
        return sorted(found, key=lambda t: (t.start_time is None, t.start_time or datetime.min))

    return store.memo(("tasks_for_date", target), compute)


def get_active_task(store: AppStore) -> Task | None:
    return store.tasks.get_active_task()


def get_task_progress(store: AppStore, task_id: str) -> TaskProgress:
    task = store.tasks.tasks.by_id.get(task_id)
    return task.progress if task is not None else TaskProgress()


# ── Rewards and social ────────────────────────────────────────


def get_balance(store: AppStore) -> int:
    return store.rewards.balance


def get_transaction_history(store: AppStore, limit: int | None = None) -> list[RewardTransaction]:
    return store.memo(("transactions", limit), lambda: store.rewards.get_transaction_history(limit))


def get_squad_leaderboard(store: AppStore, squad_id: str) -> list[dict[str, Any]]:
    return store.memo(("leaderboard", squad_id), lambda: store.social.get_squad_leaderboard(squad_id))


# ── Dashboard ─────────────────────────────────────────────────


def get_dashboard(store: AppStore) -> dict[str, Any]:
    """Everything the home screen shows, in one serializable mapping."""

    def compute() -> dict[str, Any]:
        today = _local_today(store)
        todays = get_sessions_for_date(store, today)
        completed = [s for s in todays if s.status == "completed"]
        tasks_today = get_tasks_for_date(store, today)
        current = store.focus.current_session
        return {
            "date": today.isoformat(),
            "currentSession": None if current is None else {
                "id": current.id,
                "status": current.status,
                "targetDuration": current.target_duration,
                "remainingTime": store.focus.remaining_time,
            },
            "today": {
                "sessions": len(completed),
                "focusMinutes": sum(s.duration for s in completed),
                "seedsEarned": sum(s.seeds_earned for s in completed),
                "tasksTotal": len(tasks_today),
                "tasksCompleted": sum(1 for t in tasks_today if t.status == "completed"),
            },
            "stats": store.focus.stats.to_dict(),
            "balance": store.rewards.balance,
            "activeChallenges": [c.id for c in store.social.get_active_challenges()],
        }

    return store.memo(("dashboard",), compute)
