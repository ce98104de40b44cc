"""Tests for bittersweet/selectors.py — memoized read-only views."""

from datetime import date

from bittersweet import selectors
from bittersweet.models import TaskProgress


def test_sessions_for_date(store, clock, focus_for):
    first = focus_for(30)
    second = focus_for(15)
    clock.advance(24 * 3600)
    focus_for(10)

    assert [s.id for s in selectors.get_sessions_for_date(store, "2026-03-02")] == [first.id, second.id]
    assert len(selectors.get_sessions_for_date(store, date(2026, 3, 3))) == 1
    assert selectors.get_sessions_for_date(store, "2026-03-04") == []


def test_memo_is_reset_by_commits(store, focus_for):
    focus_for(30)
    before = selectors.get_sessions_for_date(store, "2026-03-02")
    assert selectors.get_sessions_for_date(store, "2026-03-02") is before

    store.focus.create_tag("deep")
    after = selectors.get_sessions_for_date(store, "2026-03-02")
    assert after is not before
    assert after == before


def test_chart_data(store, focus_for):
    focus_for(30)
    focus_for(20)
    points = selectors.get_chart_data(store, "daily")
    assert [(p.label, p.value) for p in points] == [("2026-03-02", 50)]


def test_productivity_insights(store, focus_for):
    assert selectors.get_productivity_insights(store).suggestions == [
        "Start your first focus session to see insights!"
    ]
    focus_for(30)
    insights = selectors.get_productivity_insights(store)
    assert insights.total_sessions == 1
    assert insights.best_time_of_day == "9:00 - 10:00"
    assert insights.most_productive_day == "Monday"


def test_insights_follow_the_local_date(store, clock, focus_for):
    focus_for(30)
    today = selectors.get_productivity_insights(store)
    assert today.weekly_trend == "up"
    assert selectors.get_productivity_insights(store) is today

    clock.advance(15 * 24 * 3600)
    later = selectors.get_productivity_insights(store)
    assert later is not today
    assert later.weekly_trend == "stable"


def test_dashboard(store, focus_for):
    store.tasks.create_task("Write report", "work", 45)
    focus_for(130)
    store.focus.start_session(25, "study")

    dashboard = selectors.get_dashboard(store)
    assert dashboard["date"] == "2026-03-02"
    assert dashboard["currentSession"]["targetDuration"] == 25
    assert dashboard["currentSession"]["remainingTime"] == 1500
    assert dashboard["today"] == {
        "sessions": 1,
        "focusMinutes": 130,
        "seedsEarned": 3,
        "tasksTotal": 1,
        "tasksCompleted": 0,
    }
    assert dashboard["balance"] == 3
    assert dashboard["stats"]["totalSessions"] == 1


def test_dashboard_when_idle(store):
    dashboard = selectors.get_dashboard(store)
    assert dashboard["currentSession"] is None
    assert dashboard["today"]["sessions"] == 0


def test_remaining_time_is_zero_when_idle(store):
    assert selectors.get_remaining_time(store) == 0
    assert selectors.get_active_session(store) is None


def test_task_selectors(store):
    late = store.tasks.create_task("Late", "work", 30, start_time="2026-03-02T15:00:00Z")
    untimed = store.tasks.create_task("Whenever", "work", 30)
    early = store.tasks.create_task("Early", "work", 30, start_time="2026-03-02T08:00:00Z")

    assert [t.id for t in selectors.get_tasks_for_date(store, "2026-03-02")] == [early.id, late.id, untimed.id]
    assert selectors.get_task_progress(store, late.id).estimated_time == 30
    assert selectors.get_task_progress(store, "task-missing") == TaskProgress()

    store.tasks.start_task(early.id)
    assert selectors.get_active_task(store).id == early.id


def test_reward_selectors(store):
    store.rewards.earn_seeds(3, "bonus")
    store.rewards.earn_seeds(4, "bonus")
    assert selectors.get_balance(store) == 7
    assert [t.amount for t in selectors.get_transaction_history(store, 1)] == [4]
