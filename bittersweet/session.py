"""Focus session state machine.

Idle -> Active <-> Paused -> Completed | Cancelled -> Idle

At most one session is current (active or paused). While it is active a
single periodic tick recomputes the remaining time and auto-completes the
session when it reaches zero; every transition out of Active cancels it.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from numbers import Integral
from typing import TYPE_CHECKING

from bittersweet.clock import TimerHandle
from bittersweet.errors import InvalidStateError, SessionConflictError, ValidationError
from bittersweet.events import StoreEvents
from bittersweet.models import FocusSession, PauseRecord, format_datetime, new_id

if TYPE_CHECKING:
    from bittersweet.focus import FocusSlice

logger = logging.getLogger(__name__)

IDLE = "idle"
ACTIVE = "active"
PAUSED = "paused"


def calculate_seeds(duration: float, target_duration: float) -> int:
    """Seeds for a completed session.

    One base seed per full hour focused, scaled by how much of the target
    was reached: x1.5 at >= 90%, x1.2 at >= 70%, otherwise x1.
    """
    base = math.floor(duration / 60)
    rate = duration / target_duration if target_duration > 0 else 0.0
    if rate >= 0.9:
        multiplier = 1.5
    elif rate >= 0.7:
        multiplier = 1.2
    else:
        multiplier = 1.0
    return math.floor(base * multiplier)


def paused_seconds(session: FocusSession, now: datetime) -> float:
    """Total paused time. An open pause runs until ``now``."""
    total = 0.0
    last = len(session.pause_history) - 1
    for i, record in enumerate(session.pause_history):
        if i == last and session.status == PAUSED:
            total += max(0.0, (now - record.start_time).total_seconds())
        else:
            total += record.seconds()
    return total


def active_seconds(session: FocusSession, now: datetime) -> float:
    """Wall-clock time since start minus paused time."""
    if session.start_time is None:
        return 0.0
    end = session.end_time or now
    elapsed = (end - session.start_time).total_seconds()
    return max(0.0, elapsed - paused_seconds(session, now))


class SessionController:
    """Owns the current-session singleton and its tick timer."""

    def __init__(self, focus: FocusSlice) -> None:
        self.focus = focus
        self.ctx = focus.ctx
        self.current_session_id: str | None = None
        self.remaining_time = 0.0  # seconds
        self.live_duration = 0.0  # minutes
        self._timer: TimerHandle | None = None

    # ── State ─────────────────────────────────────────────────

    @property
    def current_session(self) -> FocusSession | None:
        if self.current_session_id is None:
            return None
        return self.focus.sessions.by_id.get(self.current_session_id)

    @property
    def state(self) -> str:
        session = self.current_session
        if session is None:
            return IDLE
        return PAUSED if session.status == PAUSED else ACTIVE

    @property
    def tick_running(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def _require(self, *allowed: str) -> FocusSession:
        state = self.state
        if state not in allowed:
            raise InvalidStateError(
                f"Cannot do that while session is {state} (needs {' or '.join(allowed)})",
                state=state,
            )
        session = self.current_session
        if session is None:
            raise InvalidStateError("No session is in progress", state=IDLE)
        return session

    # ── Transitions ───────────────────────────────────────────

    def start(
        self,
        target_duration: int,
        category_id: str,
        tag_ids: list[str] | tuple[str, ...] = (),
        description: str | None = None,
        task_id: str | None = None,
    ) -> FocusSession:
        if self.state != IDLE:
            raise SessionConflictError("A focus session is already in progress", state=self.state)
        self._validate_start(target_duration, category_id, tag_ids, task_id)

        now = self.ctx.now()
        session = FocusSession(
            id=new_id("session"),
            created_at=now,
            updated_at=now,
            user_id=self.ctx.config.user_id,
            start_time=now,
            target_duration=int(target_duration),
            category_id=category_id,
            tag_ids=list(tag_ids),
            status=ACTIVE,
            notes=description or "",
        )
        self.focus.sessions = self.focus._mutate(self.focus.sessions, lambda m: m.add(session))
        self.current_session_id = session.id
        self._refresh(now)
        self._start_tick()
        logger.info("Started session %s (%d min)", session.id, session.target_duration)

        self.focus._commit()
        self.focus.events.emit(StoreEvents.FOCUS_SESSION_STARTED, {
            "sessionId": session.id,
            "targetDuration": session.target_duration,
            "categoryId": category_id,
            "tagIds": list(tag_ids),
            "taskId": task_id,
        })
        return session

    def _validate_start(
        self,
        target_duration: int,
        category_id: str,
        tag_ids: list[str] | tuple[str, ...],
        task_id: str | None,
    ) -> None:
        limit = self.ctx.config.max_target_duration
        if isinstance(target_duration, bool) or not isinstance(target_duration, Integral):
            raise ValidationError("targetDuration must be a whole number of minutes", rule="target_duration_type")
        if not 0 < target_duration <= limit:
            raise ValidationError(
                f"targetDuration must be between 1 and {limit} minutes", rule="target_duration_range"
            )
        if not category_id or not self.focus.categories.by_id.get(category_id):
            raise ValidationError(f"Unknown category: {category_id}", rule="category_exists")
        missing = [t for t in tag_ids if t not in self.focus.tags.by_id]
        if missing:
            raise ValidationError(f"Unknown tag(s): {', '.join(missing)}", rule="tag_exists")
        if task_id is not None and not self.ctx.exists("task", task_id):
            raise ValidationError(f"Unknown task: {task_id}", rule="task_exists")

    def pause(self, reason: str = "") -> FocusSession:
        session = self._require(ACTIVE)
        now = self.ctx.now()
        # End time is a placeholder until resume closes the record.
        history = [*session.pause_history, PauseRecord(start_time=now, end_time=now, reason=reason)]
        session = self._update(session.id, {"status": PAUSED, "pause_history": history})
        self._stop_tick()
        self._refresh(now)
        logger.info("Paused session %s", session.id)

        self.focus._commit()
        self.focus.events.emit(StoreEvents.FOCUS_SESSION_PAUSED, {
            "sessionId": session.id,
            "remainingTime": self.remaining_time,
        })
        return session

    def resume(self) -> FocusSession:
        session = self._require(PAUSED)
        now = self.ctx.now()
        session = self._update(session.id, {
            "status": ACTIVE,
            "pause_history": self._closed_history(session, now),
        })
        self._refresh(now)
        self._start_tick()
        logger.info("Resumed session %s", session.id)

        self.focus._commit()
        self.focus.events.emit(StoreEvents.FOCUS_SESSION_RESUMED, {
            "sessionId": session.id,
            "remainingTime": self.remaining_time,
        })
        return session

    def complete(self) -> FocusSession:
        session = self._require(ACTIVE, PAUSED)
        now = self.ctx.now()
        duration = active_seconds(session, now) / 60
        seeds = calculate_seeds(duration, session.target_duration)
        session = self._update(session.id, {
            "status": "completed",
            "end_time": now,
            "duration": duration,
            "seeds_earned": seeds,
            "pause_history": self._closed_history(session, now),
        })
        self._finish()
        self.focus.refresh_stats()
        logger.info("Completed session %s: %.2f min, %d seed(s)", session.id, duration, seeds)

        self.focus._commit()
        self.focus.events.emit(StoreEvents.FOCUS_SESSION_COMPLETED, {
            "sessionId": session.id,
            "seedsEarned": seeds,
            "duration": duration,
            "targetDuration": session.target_duration,
            "categoryId": session.category_id,
            "userId": session.user_id,
            "completedAt": format_datetime(now),
        })
        return session

    def cancel(self) -> FocusSession:
        session = self._require(ACTIVE, PAUSED)
        now = self.ctx.now()
        session = self._update(session.id, {
            "status": "cancelled",
            "end_time": now,
            "duration": active_seconds(session, now) / 60,
            "pause_history": self._closed_history(session, now),
        })
        self._finish()
        self.focus.refresh_stats()
        logger.info("Cancelled session %s", session.id)

        self.focus._commit()
        self.focus.events.emit(StoreEvents.FOCUS_SESSION_CANCELLED, {
            "sessionId": session.id,
            "duration": session.duration,
        })
        return session

    # ── Rehydration ───────────────────────────────────────────

    def recover(self) -> None:
        """Re-adopt a persisted current session after hydration.

        Only the most recently started one survives; any others are
        cancelled so the singleton holds again.
        """
        self._stop_tick()
        current = [s for s in self.focus.sessions.by_id.values() if s.is_current]
        if not current:
            self.current_session_id = None
            return
        current.sort(key=lambda s: s.start_time or datetime.min.replace(tzinfo=timezone.utc))
        keep, extras = current[-1], current[:-1]
        now = self.ctx.now()
        for extra in extras:
            logger.warning("Cancelling orphaned current session %s", extra.id)
            self._update(extra.id, {
                "status": "cancelled",
                "end_time": now,
                "duration": active_seconds(extra, now) / 60,
                "pause_history": self._closed_history(extra, now),
            })
        self.current_session_id = keep.id
        self._refresh(now)
        if extras:
            self.focus._commit()
        if keep.status == ACTIVE:
            if self.remaining_time <= 0:
                self.complete()
            else:
                self._start_tick()
        logger.info("Recovered %s session %s", keep.status, keep.id)

    def dispose(self) -> None:
        self._stop_tick()

    # ── Timer ─────────────────────────────────────────────────

    def _start_tick(self) -> None:
        # Never more than one outstanding tick.
        self._stop_tick()
        self._timer = self.ctx.scheduler.call_every(self.ctx.config.tick_interval_seconds, self._tick)

    def _stop_tick(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self) -> None:
        if self.state != ACTIVE:
            self._stop_tick()
            return
        self._refresh(self.ctx.now())
        if self.remaining_time <= 0:
            self.complete()
        else:
            self.focus._commit(persist=False)

    # ── Helpers ───────────────────────────────────────────────

    def _refresh(self, now: datetime) -> None:
        session = self.current_session
        if session is None:
            self.remaining_time = 0.0
            self.live_duration = 0.0
            return
        elapsed = active_seconds(session, now)
        self.remaining_time = max(0.0, session.target_duration * 60 - elapsed)
        self.live_duration = elapsed / 60

    def _finish(self) -> None:
        self.current_session_id = None
        self.remaining_time = 0.0
        self.live_duration = 0.0
        self._stop_tick()

    def _update(self, session_id: str, changes: dict) -> FocusSession:
        updated: list[FocusSession] = []

        def apply(manager) -> None:
            result = manager.update(session_id, changes)
            if result is not None:
                updated.append(result)

        self.focus.sessions = self.focus._mutate(self.focus.sessions, apply)
        return updated[0]

    @staticmethod
    def _closed_history(session: FocusSession, now: datetime) -> list[PauseRecord]:
        """Pause history with an open trailing pause ended at ``now``."""
        history = list(session.pause_history)
        if session.status == PAUSED and history:
            last = history[-1]
            history[-1] = PauseRecord(start_time=last.start_time, end_time=now, reason=last.reason)
        return history
