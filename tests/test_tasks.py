"""Tests for bittersweet/tasks.py — CRUD, validation, lifecycle and linked focus time."""

from datetime import date

import pytest

from bittersweet import InvalidStateError, NotFoundError, StoreEvents, ValidationError


def test_create_task_defaults(store):
    task = store.tasks.create_task("Write report", "work", 45)
    assert task.status == "scheduled"
    assert task.priority == "medium"
    assert task.date == date(2026, 3, 2)
    assert task.user_id == "local-user"
    assert task.progress.estimated_time == 45
    assert store.bus.get_event_history()[-1].type == StoreEvents.TASK_CREATED


def test_create_task_parses_dates(store):
    task = store.tasks.create_task(
        "  Standup  ", "work", 15, date="2026-03-04", start_time="2026-03-04T09:30:00Z", priority="high"
    )
    assert task.title == "Standup"
    assert task.date == date(2026, 3, 4)
    assert task.start_time.hour == 9
    assert task.start_time.minute == 30


@pytest.mark.parametrize(
    "kwargs, rule",
    [
        ({"title": ""}, "title_required"),
        ({"title": "x" * 201}, "title_length"),
        ({"category_id": ""}, "category_required"),
        ({"category_id": "nope"}, "category_exists"),
        ({"duration": 0}, "duration_range"),
        ({"duration": 481}, "duration_range"),
        ({"duration": "30"}, "duration_range"),
        ({"priority": "urgent"}, "priority_value"),
        ({"date": "tomorrow"}, "date_format"),
        ({"start_time": "half past nine"}, "start_time_format"),
    ],
)
def test_create_task_validation(store, kwargs, rule):
    args = {"title": "Task", "category_id": "work", "duration": 30}
    args.update(kwargs)
    with pytest.raises(ValidationError) as exc:
        store.tasks.create_task(**args)
    assert exc.value.rule == rule
    assert store.tasks.tasks.all_ids == []


def test_update_task(store):
    task = store.tasks.create_task("Write report", "work", 45)
    updated = store.tasks.update_task(task.id, {"title": "Write summary", "duration": 60})
    assert updated.title == "Write summary"
    assert updated.progress.estimated_time == 60
    assert updated.created_at == task.created_at

    with pytest.raises(ValidationError) as exc:
        store.tasks.update_task(task.id, {"status": "completed"})
    assert exc.value.rule == "editable_fields"


def test_delete_task(store):
    task = store.tasks.create_task("Write report", "work", 45)
    store.tasks.delete_task(task.id)
    with pytest.raises(NotFoundError):
        store.tasks.get_task(task.id)
    with pytest.raises(NotFoundError):
        store.tasks.delete_task(task.id)


def test_only_one_active_task(store):
    first = store.tasks.create_task("One", "work", 30)
    second = store.tasks.create_task("Two", "work", 30)
    store.tasks.start_task(first.id)
    assert store.tasks.get_active_task().id == first.id

    with pytest.raises(InvalidStateError, match="Another task"):
        store.tasks.start_task(second.id)
    with pytest.raises(InvalidStateError):
        store.tasks.start_task(first.id)

    store.tasks.complete_task(first.id)
    assert store.tasks.get_active_task() is None
    store.tasks.start_task(second.id)


def test_complete_and_cancel(store):
    task = store.tasks.create_task("One", "work", 30)
    done = store.tasks.complete_task(task.id)
    assert done.status == "completed"
    assert done.progress.completed
    assert done.progress.completed_at is not None
    with pytest.raises(InvalidStateError):
        store.tasks.cancel_task(task.id)

    other = store.tasks.create_task("Two", "work", 30)
    assert store.tasks.cancel_task(other.id).status == "cancelled"
    with pytest.raises(InvalidStateError):
        store.tasks.start_task(other.id)


def test_linked_session_adds_focus_time(store, clock):
    task = store.tasks.create_task("Write report", "work", 45)
    session = store.focus.start_session(25, "work", task_id=task.id)
    assert store.tasks.tasks.by_id[task.id].focus_session_ids == [session.id]

    clock.advance(10 * 60)
    store.focus.complete_session()
    progress = store.tasks.tasks.by_id[task.id].progress
    assert progress.focus_time_spent == pytest.approx(10)
    assert progress.actual_time == pytest.approx(10)


def test_deleted_session_is_unlinked_from_tasks(store, clock):
    task = store.tasks.create_task("Write report", "work", 45)
    session = store.focus.start_session(25, "work", task_id=task.id)
    clock.advance(60)
    store.focus.complete_session()

    store.focus.delete_session(session.id)
    assert session.id not in store.tasks.tasks.by_id[task.id].focus_session_ids
    assert store.bus.get_event_history()[-1].type == StoreEvents.FOCUS_SESSION_DELETED


def test_unlinked_session_leaves_tasks_alone(store, focus_for):
    task = store.tasks.create_task("Write report", "work", 45)
    focus_for(10)
    assert store.tasks.tasks.by_id[task.id].progress.focus_time_spent == 0


def test_link_task_to_session(store, focus_for):
    task = store.tasks.create_task("Write report", "work", 45)
    session = focus_for(5)
    store.tasks.link_task_to_session(task.id, session.id)
    store.tasks.link_task_to_session(task.id, session.id)
    assert store.tasks.tasks.by_id[task.id].focus_session_ids == [session.id]
    with pytest.raises(NotFoundError):
        store.tasks.link_task_to_session(task.id, "session-missing")


def test_category_in_use_by_task(store):
    category = store.focus.create_category("Reading")
    store.tasks.create_task("Novel", category.id, 30)
    with pytest.raises(ValidationError) as exc:
        store.focus.delete_category(category.id)
    assert exc.value.rule == "category_in_use"


def test_view_state(store):
    assert store.tasks.view_mode == "day"
    store.tasks.set_view_mode("week")
    assert store.tasks.view_mode == "week"
    with pytest.raises(ValidationError):
        store.tasks.set_view_mode("year")

    assert store.tasks.set_selected_date("2026-03-10") == date(2026, 3, 10)
    with pytest.raises(ValidationError):
        store.tasks.set_selected_date("someday")


def test_week_navigation(store):
    assert store.tasks.current_week_start == date(2026, 3, 2)
    assert store.tasks.go_to_next_week() == date(2026, 3, 9)
    store.tasks.go_to_previous_week()
    assert store.tasks.go_to_previous_week() == date(2026, 2, 23)
    assert store.tasks.go_to_current_week() == date(2026, 3, 2)
