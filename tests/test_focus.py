"""Tests for bittersweet/focus.py — categories, tags, session records and stats."""

import pytest

from bittersweet import InvalidStateError, NotFoundError, ValidationError


def test_default_categories(store):
    assert store.focus.categories.all_ids == ["work", "study", "personal", "exercise"]
    work = store.focus.categories.by_id["work"]
    assert work.name == "Work"
    assert work.is_default


def test_create_category(store):
    category = store.focus.create_category("  Reading ", "#123456", "R")
    assert category.name == "Reading"
    assert category.id in store.focus.categories.by_id
    assert category.id.startswith("category-")


def test_category_names_are_unique(store):
    with pytest.raises(ValidationError) as exc:
        store.focus.create_category("work")
    assert exc.value.rule == "name_unique"
    with pytest.raises(ValidationError) as exc:
        store.focus.create_category("   ")
    assert exc.value.rule == "name_required"


def test_update_category(store):
    category = store.focus.create_category("Reading")
    updated = store.focus.update_category(category.id, name="Books", color="#fff")
    assert updated.name == "Books"
    assert updated.color == "#fff"

    with pytest.raises(ValidationError) as exc:
        store.focus.update_category(category.id, name="Study")
    assert exc.value.rule == "name_unique"
    with pytest.raises(ValidationError) as exc:
        store.focus.update_category(category.id, is_default=True)
    assert exc.value.rule == "editable_fields"
    with pytest.raises(NotFoundError):
        store.focus.update_category("category-missing", name="x")


def test_delete_category_guard(store, focus_for):
    focus_for(5, category_id="study")
    with pytest.raises(ValidationError) as exc:
        store.focus.delete_category("study")
    assert exc.value.rule == "category_in_use"
    assert "study" in store.focus.categories.by_id

    store.focus.delete_category("exercise")
    assert "exercise" not in store.focus.categories.by_id
    with pytest.raises(NotFoundError):
        store.focus.delete_category("exercise")


def test_tags(store, focus_for):
    deep = store.focus.create_tag("deep")
    spare = store.focus.create_tag("spare")
    focus_for(5, tag_ids=[deep.id])

    with pytest.raises(ValidationError) as exc:
        store.focus.delete_tag(deep.id)
    assert exc.value.rule == "tag_in_use"

    assert store.focus.update_tag(spare.id, icon="*").icon == "*"
    store.focus.delete_tag(spare.id)
    assert store.focus.tags.all_ids == [deep.id]


def test_session_notes_and_lookup(store, focus_for):
    session = focus_for(5)
    assert store.focus.get_session(session.id) == session
    assert store.focus.update_session_notes(session.id, "good flow").notes == "good flow"
    with pytest.raises(NotFoundError):
        store.focus.get_session("session-missing")


def test_delete_session(store, focus_for):
    session = focus_for(5)
    store.focus.delete_session(session.id)
    assert session.id not in store.focus.sessions.by_id
    assert store.focus.stats.total_sessions == 0


def test_current_session_cannot_be_deleted(store):
    session = store.focus.start_session(25, "work")
    with pytest.raises(InvalidStateError):
        store.focus.delete_session(session.id)


def test_stats_follow_sessions(store, clock, focus_for):
    focus_for(30)
    focus_for(20)
    store.focus.start_session(25, "work")
    clock.advance(60)
    store.focus.cancel_session()

    stats = store.focus.stats
    assert stats.total_sessions == 2
    assert stats.total_focus_time == pytest.approx(50)
    assert stats.average_session_length == pytest.approx(25)
    assert stats.completion_rate == pytest.approx(200 / 3)
    assert stats.current_streak == 1
    assert stats.longest_streak == 1


def test_update_focus_settings(store):
    settings = store.focus.update_focus_settings({"defaultDuration": 50, "soundEnabled": False})
    assert settings.default_duration == 50
    assert not settings.sound_enabled
    assert settings.break_duration == 5

    with pytest.raises(ValidationError) as exc:
        store.focus.update_focus_settings({"breakDuration": 0})
    assert exc.value.rule == "settings_positive"
    with pytest.raises(ValidationError) as exc:
        store.focus.update_focus_settings({"defaultDuration": 500})
    assert exc.value.rule == "target_duration_range"
    assert store.focus.settings.default_duration == 50
