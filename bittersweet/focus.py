"""Focus slice: sessions, categories, tags, focus settings and stats."""

from __future__ import annotations

import logging
from typing import Any

from bittersweet.analytics import compute_focus_stats
from bittersweet.base import Slice, StoreContext
from bittersweet.errors import InvalidStateError, NotFoundError, ValidationError
from bittersweet.events import StoreEvents
from bittersweet.models import Category, FocusSession, FocusSettings, FocusStats, Tag, new_id
from bittersweet.normalized import NormalizedState, create_normalized_state
from bittersweet.session import SessionController

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("work", "Work", "#6592E9", "💼"),
    ("study", "Study", "#51BC6F", "📚"),
    ("personal", "Personal", "#EF786C", "🏠"),
    ("exercise", "Exercise", "#FF9800", "💪"),
]

EDITABLE_LABEL_FIELDS = ("name", "color", "icon")


def default_categories(now, user_id: str) -> list[Category]:
    return [
        Category(
            id=cid, created_at=now, updated_at=now,
            name=name, color=color, icon=icon, is_default=True, user_id=user_id,
        )
        for cid, name, color, icon in DEFAULT_CATEGORIES
    ]


class FocusSlice(Slice):
    name = "focus"

    def __init__(self, ctx: StoreContext) -> None:
        super().__init__(ctx)
        self.sessions: NormalizedState[FocusSession] = NormalizedState()
        self.categories: NormalizedState[Category] = create_normalized_state(
            default_categories(ctx.now(), ctx.config.user_id)
        )
        self.tags: NormalizedState[Tag] = NormalizedState()
        self.settings = FocusSettings()
        self.stats = FocusStats()
        self.controller = SessionController(self)

    def wire(self) -> None:
        self.ctx.register_reference(
            "category", lambda cid: any(s.category_id == cid for s in self.sessions.by_id.values())
        )
        self.ctx.register_reference(
            "tag", lambda tid: any(tid in s.tag_ids for s in self.sessions.by_id.values())
        )
        self.ctx.register_lookup("category", lambda cid: cid in self.categories.by_id)
        self.ctx.register_lookup("session", lambda sid: sid in self.sessions.by_id)

    def dispose(self) -> None:
        self.controller.dispose()
        super().dispose()

    # ── Session lifecycle ─────────────────────────────────────

    def start_session(
        self,
        target_duration: int,
        category_id: str,
        tag_ids: list[str] | tuple[str, ...] = (),
        description: str | None = None,
        task_id: str | None = None,
    ) -> FocusSession:
        return self.controller.start(target_duration, category_id, tag_ids, description, task_id)

    def pause_session(self, reason: str = "") -> FocusSession:
        return self.controller.pause(reason)

    def resume_session(self) -> FocusSession:
        return self.controller.resume()

    def complete_session(self) -> FocusSession:
        return self.controller.complete()

    def cancel_session(self) -> FocusSession:
        return self.controller.cancel()

    @property
    def current_session(self) -> FocusSession | None:
        return self.controller.current_session

    @property
    def session_state(self) -> str:
        return self.controller.state

    @property
    def remaining_time(self) -> float:
        return self.controller.remaining_time

    def get_session(self, session_id: str) -> FocusSession:
        session = self.sessions.by_id.get(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def update_session_notes(self, session_id: str, notes: str) -> FocusSession:
        self.get_session(session_id)
        self.sessions = self._mutate(self.sessions, lambda m: m.update(session_id, {"notes": notes}))
        self._commit()
        return self.sessions.by_id[session_id]

    def delete_session(self, session_id: str) -> None:
        self.get_session(session_id)
        if session_id == self.controller.current_session_id:
            raise InvalidStateError("Cannot delete the current session", state=self.controller.state)
        self.sessions = self._mutate(self.sessions, lambda m: m.remove(session_id))
        self.refresh_stats()
        self._commit()
        self.events.emit(StoreEvents.FOCUS_SESSION_DELETED, {"sessionId": session_id})

    # ── Categories and tags ───────────────────────────────────

    def create_category(self, name: str, color: str = "", icon: str = "") -> Category:
        category = self._new_label(Category, self.categories, name, color, icon)
        self.categories = self._mutate(self.categories, lambda m: m.add(category))
        self._commit()
        return category

    def update_category(self, category_id: str, **changes: Any) -> Category:
        self.categories = self._update_label(self.categories, "Category", category_id, changes)
        self._commit()
        return self.categories.by_id[category_id]

    def delete_category(self, category_id: str) -> None:
        if category_id not in self.categories.by_id:
            raise NotFoundError("Category", category_id)
        self._require_reference_free("category", category_id)
        self.categories = self._mutate(self.categories, lambda m: m.remove(category_id))
        self._commit()

    def create_tag(self, name: str, color: str = "", icon: str = "") -> Tag:
        tag = self._new_label(Tag, self.tags, name, color, icon)
        self.tags = self._mutate(self.tags, lambda m: m.add(tag))
        self._commit()
        return tag

    def update_tag(self, tag_id: str, **changes: Any) -> Tag:
        self.tags = self._update_label(self.tags, "Tag", tag_id, changes)
        self._commit()
        return self.tags.by_id[tag_id]

    def delete_tag(self, tag_id: str) -> None:
        if tag_id not in self.tags.by_id:
            raise NotFoundError("Tag", tag_id)
        self._require_reference_free("tag", tag_id)
        self.tags = self._mutate(self.tags, lambda m: m.remove(tag_id))
        self._commit()

    def _new_label(self, cls, state: NormalizedState, name: str, color: str, icon: str):
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required", rule="name_required")
        if any(e.name.lower() == name.lower() for e in state.by_id.values()):
            raise ValidationError(f"{name!r} already exists", rule="name_unique")
        now = self.ctx.now()
        prefix = "category" if cls is Category else "tag"
        return cls(
            id=new_id(prefix), created_at=now, updated_at=now,
            name=name, color=color, icon=icon, user_id=self.ctx.config.user_id,
        )

    def _update_label(self, state: NormalizedState, entity: str, entity_id: str, changes: dict) -> NormalizedState:
        if entity_id not in state.by_id:
            raise NotFoundError(entity, entity_id)
        unknown = set(changes) - set(EDITABLE_LABEL_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(sorted(unknown))}", rule="editable_fields")
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Name is required", rule="name_required")
            clash = any(
                e.name.lower() == name.lower() and e.id != entity_id for e in state.by_id.values()
            )
            if clash:
                raise ValidationError(f"{name!r} already exists", rule="name_unique")
            changes = {**changes, "name": name}
        return self._mutate(state, lambda m: m.update(entity_id, changes))

    # ── Settings and stats ────────────────────────────────────

    def update_focus_settings(self, changes: dict[str, Any]) -> FocusSettings:
        """Shallow-merge camelCase ``changes`` into the focus settings."""
        merged = FocusSettings.from_dict({**self.settings.to_dict(), **changes})
        for key in ("default_duration", "break_duration", "long_break_duration", "sessions_until_long_break"):
            if getattr(merged, key) <= 0:
                raise ValidationError(f"{key} must be positive", rule="settings_positive")
        if merged.default_duration > self.ctx.config.max_target_duration:
            raise ValidationError("defaultDuration exceeds the session limit", rule="target_duration_range")
        self.settings = merged
        self._commit()
        return merged

    def refresh_stats(self) -> FocusStats:
        tz = self.ctx.config.tzinfo
        today = self.ctx.now().astimezone(tz).date()
        self.stats = compute_focus_stats(list(self.sessions.by_id.values()), today, tz)
        return self.stats

    # ── Persistence ───────────────────────────────────────────

    def to_persisted(self) -> dict[str, Any]:
        return {
            "sessions": self.sessions.to_dict(),
            "categories": self.categories.to_dict(),
            "tags": self.tags.to_dict(),
            "settings": self.settings.to_dict(),
            "stats": self.stats.to_dict(),
        }

    def parse_persisted(self, data: dict[str, Any]) -> dict[str, Any]:
        parsers = {
            "sessions": lambda v: NormalizedState.from_dict(v, FocusSession.from_dict),
            "categories": lambda v: NormalizedState.from_dict(v, Category.from_dict),
            "tags": lambda v: NormalizedState.from_dict(v, Tag.from_dict),
            "settings": FocusSettings.from_dict,
            "stats": FocusStats.from_dict,
        }
        return {key: parse(data[key]) for key, parse in parsers.items() if key in data}

    def after_hydrate(self) -> None:
        if not self.categories.all_ids:
            logger.info("No categories persisted; restoring defaults")
            self.categories = create_normalized_state(
                default_categories(self.ctx.now(), self.ctx.config.user_id)
            )
        self.refresh_stats()
