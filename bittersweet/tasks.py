"""Tasks slice: scheduled work items that accumulate linked focus time."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any

from bittersweet.base import Slice, StoreContext
from bittersweet.errors import InvalidStateError, NotFoundError, ValidationError
from bittersweet.events import StoreEvent, StoreEvents
from bittersweet.models import (
    TASK_PRIORITIES,
    Task,
    TaskProgress,
    format_date,
    new_id,
    parse_date,
    parse_datetime,
)
from bittersweet.normalized import NormalizedState

logger = logging.getLogger(__name__)

VIEW_MODES = ("day", "week", "month")
MAX_TITLE_LENGTH = 200
EDITABLE_FIELDS = ("title", "description", "category_id", "date", "start_time", "duration", "priority")


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


class TasksSlice(Slice):
    name = "tasks"

    def __init__(self, ctx: StoreContext) -> None:
        super().__init__(ctx)
        self.tasks: NormalizedState[Task] = NormalizedState()
        self.selected_date: date = self._today()
        self.view_mode = "day"
        self.current_week_start: date = week_start(self.selected_date)

    def wire(self) -> None:
        self.ctx.register_reference(
            "category", lambda cid: any(t.category_id == cid for t in self.tasks.by_id.values())
        )
        self.ctx.register_lookup("task", lambda tid: tid in self.tasks.by_id)
        self.listeners.on(StoreEvents.FOCUS_SESSION_STARTED, self._on_session_started)
        self.listeners.on(StoreEvents.FOCUS_SESSION_COMPLETED, self._on_session_completed)
        self.listeners.on(StoreEvents.FOCUS_SESSION_DELETED, self._on_session_deleted)

    def _today(self) -> date:
        return self.ctx.now().astimezone(self.ctx.config.tzinfo).date()

    # ── Validation ────────────────────────────────────────────

    def _validate(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Check and coerce task fields; returns the cleaned values."""
        clean = dict(fields)
        if "title" in clean:
            title = (clean["title"] or "").strip()
            if not title:
                raise ValidationError("Task title is required", rule="title_required")
            if len(title) > MAX_TITLE_LENGTH:
                raise ValidationError(
                    f"Task title cannot exceed {MAX_TITLE_LENGTH} characters", rule="title_length"
                )
            clean["title"] = title
        if "category_id" in clean:
            if not clean["category_id"]:
                raise ValidationError("Task category is required", rule="category_required")
            if not self.ctx.exists("category", clean["category_id"]):
                raise ValidationError("Selected category does not exist", rule="category_exists")
        if "duration" in clean:
            duration = clean["duration"]
            limit = self.ctx.config.max_task_duration
            if isinstance(duration, bool) or not isinstance(duration, int) or not 0 < duration <= limit:
                raise ValidationError(
                    f"Task duration must be between 1 and {limit} minutes", rule="duration_range"
                )
        if "priority" in clean and clean["priority"] not in TASK_PRIORITIES:
            raise ValidationError(f"Unknown priority: {clean['priority']}", rule="priority_value")
        if "date" in clean:
            parsed = parse_date(clean["date"])
            if parsed is None:
                raise ValidationError(f"Invalid date: {clean['date']!r}", rule="date_format")
            clean["date"] = parsed
        if clean.get("start_time") is not None:
            parsed_time = parse_datetime(clean["start_time"])
            if parsed_time is None:
                raise ValidationError(f"Invalid start time: {clean['start_time']!r}", rule="start_time_format")
            clean["start_time"] = parsed_time
        return clean

    def get_task(self, task_id: str) -> Task:
        task = self.tasks.by_id.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    # ── CRUD ──────────────────────────────────────────────────

    def create_task(
        self,
        title: str,
        category_id: str,
        duration: int,
        date: date | str | None = None,
        start_time: datetime | str | None = None,
        description: str = "",
        priority: str = "medium",
    ) -> Task:
        fields = self._validate({
            "title": title,
            "category_id": category_id,
            "duration": duration,
            "date": date or self.selected_date,
            "start_time": start_time,
            "priority": priority,
        })
        now = self.ctx.now()
        task = Task(
            id=new_id("task"),
            created_at=now,
            updated_at=now,
            description=description or "",
            user_id=self.ctx.config.user_id,
            progress=TaskProgress(estimated_time=fields["duration"]),
            **fields,
        )
        self.tasks = self._mutate(self.tasks, lambda m: m.add(task))
        logger.debug("Created task %s", task.id)
        self._commit()
        self.events.emit(StoreEvents.TASK_CREATED, {
            "taskId": task.id,
            "title": task.title,
            "categoryId": task.category_id,
        })
        return task

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Task:
        self.get_task(task_id)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(sorted(unknown))}", rule="editable_fields")
        clean = self._validate(changes)
        if "duration" in clean:
            progress = self.tasks.by_id[task_id].progress
            clean["progress"] = replace(progress, estimated_time=clean["duration"])
        self.tasks = self._mutate(self.tasks, lambda m: m.update(task_id, clean))
        self._commit()
        self.events.emit(StoreEvents.TASK_UPDATED, {"taskId": task_id, "fields": sorted(changes)})
        return self.tasks.by_id[task_id]

    def delete_task(self, task_id: str) -> None:
        task = self.get_task(task_id)
        self.tasks = self._mutate(self.tasks, lambda m: m.remove(task_id))
        self._commit()
        self.events.emit(StoreEvents.TASK_DELETED, {"taskId": task_id, "title": task.title})

    # ── Status verbs ──────────────────────────────────────────

    def start_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task.status == "active":
            raise InvalidStateError("Task is already active", state=task.status)
        if task.status in ("completed", "cancelled"):
            raise InvalidStateError(f"Task is {task.status}", state=task.status)
        if self.get_active_task() is not None:
            raise InvalidStateError(
                "Another task is already active. Complete or cancel it first.", state="active"
            )
        self.tasks = self._mutate(self.tasks, lambda m: m.update(task_id, {"status": "active"}))
        self._commit()
        self.events.emit(StoreEvents.TASK_STARTED, {"taskId": task_id})
        return self.tasks.by_id[task_id]

    def complete_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task.status in ("completed", "cancelled"):
            raise InvalidStateError(f"Task is already {task.status}", state=task.status)
        progress = replace(task.progress, completed=True, completed_at=self.ctx.now())
        self.tasks = self._mutate(
            self.tasks, lambda m: m.update(task_id, {"status": "completed", "progress": progress})
        )
        self._commit()
        self.events.emit(StoreEvents.TASK_COMPLETED, {
            "taskId": task_id,
            "focusTime": task.progress.focus_time_spent,
        })
        return self.tasks.by_id[task_id]

    def cancel_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task.status in ("completed", "cancelled"):
            raise InvalidStateError(f"Task is already {task.status}", state=task.status)
        self.tasks = self._mutate(self.tasks, lambda m: m.update(task_id, {"status": "cancelled"}))
        self._commit()
        self.events.emit(StoreEvents.TASK_CANCELLED, {"taskId": task_id})
        return self.tasks.by_id[task_id]

    def link_task_to_session(self, task_id: str, session_id: str) -> Task:
        task = self.get_task(task_id)
        if not self.ctx.exists("session", session_id):
            raise NotFoundError("Session", session_id)
        if session_id not in task.focus_session_ids:
            ids = [*task.focus_session_ids, session_id]
            self.tasks = self._mutate(self.tasks, lambda m: m.update(task_id, {"focus_session_ids": ids}))
            self._commit()
        return self.tasks.by_id[task_id]

    def get_active_task(self) -> Task | None:
        for task_id in self.tasks.all_ids:
            task = self.tasks.by_id.get(task_id)
            if task is not None and task.status == "active":
                return task
        return None

    # ── View state ────────────────────────────────────────────

    def set_selected_date(self, value: date | str) -> date:
        parsed = parse_date(value)
        if parsed is None:
            raise ValidationError(f"Invalid date: {value!r}", rule="date_format")
        self.selected_date = parsed
        self._commit()
        return parsed

    def set_view_mode(self, mode: str) -> None:
        if mode not in VIEW_MODES:
            raise ValidationError(f"View mode must be one of {', '.join(VIEW_MODES)}", rule="view_mode")
        self.view_mode = mode
        self._commit()

    def go_to_previous_week(self) -> date:
        self.current_week_start -= timedelta(days=7)
        self._commit(persist=False)
        return self.current_week_start

    def go_to_next_week(self) -> date:
        self.current_week_start += timedelta(days=7)
        self._commit(persist=False)
        return self.current_week_start

    def go_to_current_week(self) -> date:
        self.current_week_start = week_start(self._today())
        self._commit(persist=False)
        return self.current_week_start

    # ── Bus reactions ─────────────────────────────────────────

    def _on_session_started(self, event: StoreEvent) -> None:
        task_id = event.payload.get("taskId")
        if task_id:
            self.link_task_to_session(task_id, event.payload["sessionId"])

    def _on_session_completed(self, event: StoreEvent) -> None:
        session_id = event.payload["sessionId"]
        minutes = float(event.payload.get("duration", 0.0))
        linked = [t for t in self.tasks.by_id.values() if session_id in t.focus_session_ids]
        if not linked:
            return

        def apply(manager) -> None:
            for task in linked:
                progress = replace(
                    task.progress,
                    focus_time_spent=task.progress.focus_time_spent + minutes,
                    actual_time=task.progress.actual_time + minutes,
                )
                manager.update(task.id, {"progress": progress})

        self.tasks = self._mutate(self.tasks, apply)
        logger.debug("Added %.2f focus minutes to %d task(s)", minutes, len(linked))
        self._commit()

    def _on_session_deleted(self, event: StoreEvent) -> None:
        session_id = event.payload["sessionId"]
        linked = [t for t in self.tasks.by_id.values() if session_id in t.focus_session_ids]
        if not linked:
            return

        def apply(manager) -> None:
            for task in linked:
                remaining = [s for s in task.focus_session_ids if s != session_id]
                manager.update(task.id, {"focus_session_ids": remaining})

        self.tasks = self._mutate(self.tasks, apply)
        self._commit()

    # ── Persistence ───────────────────────────────────────────

    def to_persisted(self) -> dict[str, Any]:
        return {
            "tasks": self.tasks.to_dict(),
            "selectedDate": format_date(self.selected_date),
            "viewMode": self.view_mode,
        }

    def parse_persisted(self, data: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if "tasks" in data:
            values["tasks"] = NormalizedState.from_dict(data["tasks"], Task.from_dict)
        selected = parse_date(data.get("selectedDate"))
        if selected is not None:
            values["selected_date"] = selected
        if data.get("viewMode") in VIEW_MODES:
            values["view_mode"] = data["viewMode"]
        return values

    def after_hydrate(self) -> None:
        self.current_week_start = week_start(self.selected_date)
