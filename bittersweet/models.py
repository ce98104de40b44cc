"""Typed dataclasses for the Bittersweet data model.

All models use from_dict/to_dict for JSON serialization.
camelCase in JSON is mapped to snake_case in Python.
Unknown keys are ignored; missing keys use defaults.
Timestamps are timezone-aware UTC datetimes, serialized as ISO-8601.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any


SESSION_STATUSES = ("active", "paused", "completed", "cancelled")
TASK_STATUSES = ("scheduled", "active", "completed", "cancelled")
TASK_PRIORITIES = ("low", "medium", "high")
TRANSACTION_TYPES = ("earned", "spent")
CHALLENGE_GOALS = ("focus_minutes", "sessions", "seeds")
CHALLENGE_STATUSES = ("active", "completed", "expired")


# ── Primitives ────────────────────────────────────────────────


def parse_datetime(value: Any) -> datetime | None:
    """Coerce an ISO string, epoch milliseconds or datetime to aware UTC.

    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _as_int(value: Any, default: int = 0) -> int:
    """``int(value)``, or ``default`` for missing or unusable input."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def format_date(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _base36(n: int) -> str:
    chars = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = chars[r] + out
    return out or "0"


def new_id(prefix: str = "") -> str:
    """Timestamp + random suffix, e.g. ``session-lx3k9a2b-4f1e0c``."""
    body = f"{_base36(int(time.time() * 1000))}-{secrets.token_hex(3)}"
    return f"{prefix}-{body}" if prefix else body


# ── Base entity ───────────────────────────────────────────────


@dataclass
class BaseEntity:
    id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def _base_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
        }

    @staticmethod
    def _base_kwargs(d: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": str(d.get("id", "")),
            "created_at": parse_datetime(d.get("createdAt")),
            "updated_at": parse_datetime(d.get("updatedAt")),
        }


# ── Focus ─────────────────────────────────────────────────────


@dataclass
class PauseRecord:
    start_time: datetime
    end_time: datetime
    reason: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PauseRecord:
        start = parse_datetime(d.get("startTime")) or datetime.fromtimestamp(0, tz=timezone.utc)
        end = parse_datetime(d.get("endTime")) or start
        return cls(start_time=start, end_time=end, reason=str(d.get("reason", "")))

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "startTime": format_datetime(self.start_time),
            "endTime": format_datetime(self.end_time),
        }
        if self.reason:
            d["reason"] = self.reason
        return d

    def seconds(self) -> float:
        return max(0.0, (self.end_time - self.start_time).total_seconds())


@dataclass
class FocusSession(BaseEntity):
    user_id: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float = 0.0  # minutes actually focused
    target_duration: int = 0  # minutes planned
    category_id: str = ""
    tag_ids: list[str] = field(default_factory=list)
    status: str = "active"
    seeds_earned: int = 0
    pause_history: list[PauseRecord] = field(default_factory=list)
    notes: str = ""

    @property
    def is_current(self) -> bool:
        return self.status in ("active", "paused")

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> FocusSession:
        status = str(d.get("status", "active"))
        if status not in SESSION_STATUSES:
            status = "cancelled"
        return cls(
            **cls._base_kwargs(d),
            user_id=str(d.get("userId", "")),
            start_time=parse_datetime(d.get("startTime")),
            end_time=parse_datetime(d.get("endTime")),
            duration=_as_float(d.get("duration"), 0.0),
            target_duration=_as_int(d.get("targetDuration"), 0),
            category_id=str(d.get("categoryId", "")),
            tag_ids=[str(t) for t in _as_list(d.get("tagIds"))],
            status=status,
            seeds_earned=_as_int(d.get("seedsEarned"), 0),
            pause_history=[
                PauseRecord.from_dict(p) for p in _as_list(d.get("pauseHistory")) if isinstance(p, dict)
            ],
            notes=str(d.get("notes", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        d = self._base_dict()
        d.update({
            "userId": self.user_id,
            "startTime": format_datetime(self.start_time),
            "endTime": format_datetime(self.end_time),
            "duration": self.duration,
            "targetDuration": self.target_duration,
            "categoryId": self.category_id,
            "tagIds": list(self.tag_ids),
            "status": self.status,
            "seedsEarned": self.seeds_earned,
            "pauseHistory": [p.to_dict() for p in self.pause_history],
        })
        if self.notes:
            d["notes"] = self.notes
        return d


@dataclass
class Category(BaseEntity):
    name: str = ""
    color: str = ""
    icon: str = ""
    is_default: bool = False
    user_id: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Category:
        return cls(
            **cls._base_kwargs(d),
            name=str(d.get("name", "")),
            color=str(d.get("color", "")),
            icon=str(d.get("icon", "")),
            is_default=bool(d.get("isDefault", False)),
            user_id=str(d.get("userId", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        d = self._base_dict()
        d.update({
            "name": self.name,
            "color": self.color,
            "icon": self.icon,
            "isDefault": self.is_default,
            "userId": self.user_id,
        })
        return d


@dataclass
class Tag(Category):
    """Same shape as a category; referenced many-to-one from sessions."""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Tag:
        cat = Category.from_dict(d)
        return cls(**cat.__dict__)


@dataclass
class FocusSettings:
    default_duration: int = 25
    break_duration: int = 5
    long_break_duration: int = 15
    sessions_until_long_break: int = 4
    sound_enabled: bool = True
    vibration_enabled: bool = True
    auto_start_breaks: bool = False
    auto_start_sessions: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> FocusSettings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            default_duration=_as_int(d.get("defaultDuration"), 25),
            break_duration=_as_int(d.get("breakDuration"), 5),
            long_break_duration=_as_int(d.get("longBreakDuration"), 15),
            sessions_until_long_break=_as_int(d.get("sessionsUntilLongBreak"), 4),
            sound_enabled=bool(d.get("soundEnabled", True)),
            vibration_enabled=bool(d.get("vibrationEnabled", True)),
            auto_start_breaks=bool(d.get("autoStartBreaks", False)),
            auto_start_sessions=bool(d.get("autoStartSessions", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "defaultDuration": self.default_duration,
            "breakDuration": self.break_duration,
            "longBreakDuration": self.long_break_duration,
            "sessionsUntilLongBreak": self.sessions_until_long_break,
            "soundEnabled": self.sound_enabled,
            "vibrationEnabled": self.vibration_enabled,
            "autoStartBreaks": self.auto_start_breaks,
            "autoStartSessions": self.auto_start_sessions,
        }


@dataclass
class FocusStats:
    total_sessions: int = 0
    total_focus_time: float = 0.0  # minutes
    current_streak: int = 0
    longest_streak: int = 0
    average_session_length: float = 0.0
    completion_rate: float = 0.0  # percent

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> FocusStats:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            total_sessions=_as_int(d.get("totalSessions"), 0),
            total_focus_time=_as_float(d.get("totalFocusTime"), 0.0),
            current_streak=_as_int(d.get("currentStreak"), 0),
            longest_streak=_as_int(d.get("longestStreak"), 0),
            average_session_length=_as_float(d.get("averageSessionLength"), 0.0),
            completion_rate=_as_float(d.get("completionRate"), 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSessions": self.total_sessions,
            "totalFocusTime": self.total_focus_time,
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "averageSessionLength": self.average_session_length,
            "completionRate": self.completion_rate,
        }


# ── Tasks ─────────────────────────────────────────────────────


@dataclass
class TaskProgress:
    completed: bool = False
    focus_time_spent: float = 0.0  # minutes from linked sessions
    estimated_time: int = 0
    actual_time: float = 0.0
    completed_at: datetime | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> TaskProgress:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            completed=bool(d.get("completed", False)),
            focus_time_spent=_as_float(d.get("focusTimeSpent"), 0.0),
            estimated_time=_as_int(d.get("estimatedTime"), 0),
            actual_time=_as_float(d.get("actualTime"), 0.0),
            completed_at=parse_datetime(d.get("completedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "completed": self.completed,
            "focusTimeSpent": self.focus_time_spent,
            "estimatedTime": self.estimated_time,
            "actualTime": self.actual_time,
        }
        if self.completed_at is not None:
            d["completedAt"] = format_datetime(self.completed_at)
        return d


@dataclass
class Task(BaseEntity):
    title: str = ""
    description: str = ""
    category_id: str = ""
    date: date | None = None
    start_time: datetime | None = None
    duration: int = 0  # minutes
    status: str = "scheduled"
    priority: str = "medium"
    user_id: str = ""
    progress: TaskProgress = field(default_factory=TaskProgress)
    focus_session_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Task:
        status = str(d.get("status", "scheduled"))
        priority = str(d.get("priority", "medium"))
        return cls(
            **cls._base_kwargs(d),
            title=str(d.get("title", "")),
            description=str(d.get("description", "") or ""),
            category_id=str(d.get("categoryId", "")),
            date=parse_date(d.get("date")),
            start_time=parse_datetime(d.get("startTime")),
            duration=_as_int(d.get("duration"), 0),
            status=status if status in TASK_STATUSES else "scheduled",
            priority=priority if priority in TASK_PRIORITIES else "medium",
            user_id=str(d.get("userId", "")),
            progress=TaskProgress.from_dict(d.get("progress")),
            focus_session_ids=[str(s) for s in _as_list(d.get("focusSessionIds"))],
        )

    def to_dict(self) -> dict[str, Any]:
        d = self._base_dict()
        d.update({
            "title": self.title,
            "description": self.description,
            "categoryId": self.category_id,
            "date": format_date(self.date),
            "startTime": format_datetime(self.start_time),
            "duration": self.duration,
            "status": self.status,
            "priority": self.priority,
            "userId": self.user_id,
            "progress": self.progress.to_dict(),
            "focusSessionIds": list(self.focus_session_ids),
        })
        return d


# ── Rewards ───────────────────────────────────────────────────


@dataclass
class RewardTransaction(BaseEntity):
    user_id: str = ""
    amount: int = 0
    type: str = "earned"  # earned, spent
    source: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RewardTransaction:
        tx_type = str(d.get("type", "earned"))
        return cls(
            **cls._base_kwargs(d),
            user_id=str(d.get("userId", "")),
            amount=_as_int(d.get("amount"), 0),
            type=tx_type if tx_type in TRANSACTION_TYPES else "earned",
            source=str(d.get("source", "")),
            description=str(d.get("description", "") or ""),
            metadata=dict(d.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        d = self._base_dict()
        d.update({
            "userId": self.user_id,
            "amount": self.amount,
            "type": self.type,
            "source": self.source,
            "description": self.description,
            "metadata": dict(self.metadata),
        })
        return d


@dataclass
class UnlockableApp(BaseEntity):
    name: str = ""
    bundle_id: str = ""
    icon: str = ""
    cost: int = 0
    unlock_minutes: int = 15
    is_unlocked: bool = False
    last_unlocked: datetime | None = None
    description: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> UnlockableApp:
        return cls(
            **cls._base_kwargs(d),
            name=str(d.get("name", "")),
            bundle_id=str(d.get("bundleId", "")),
            icon=str(d.get("icon", "")),
            cost=_as_int(d.get("cost"), 0),
            unlock_minutes=_as_int(d.get("unlockMinutes"), 15) or 15,
            is_unlocked=bool(d.get("isUnlocked", False)),
            last_unlocked=parse_datetime(d.get("lastUnlocked")),
            description=str(d.get("description", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        d = self._base_dict()
        d.update({
            "name": self.name,
            "bundleId": self.bundle_id,
            "icon": self.icon,
            "cost": self.cost,
            "unlockMinutes": self.unlock_minutes,
            "isUnlocked": self.is_unlocked,
            "lastUnlocked": format_datetime(self.last_unlocked),
            "description": self.description,
        })
        return d


# ── Social ────────────────────────────────────────────────────


@dataclass
class MemberStats:
    week_start: date | None = None
    weekly_focus_minutes: float = 0.0
    weekly_sessions: int = 0
    total_focus_minutes: float = 0.0
    total_seeds: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> MemberStats:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            week_start=parse_date(d.get("weekStart")),
            weekly_focus_minutes=_as_float(d.get("weeklyFocusMinutes"), 0.0),
            weekly_sessions=_as_int(d.get("weeklySessions"), 0),
            total_focus_minutes=_as_float(d.get("totalFocusMinutes"), 0.0),
            total_seeds=_as_int(d.get("totalSeeds"), 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "weekStart": format_date(self.week_start),
            "weeklyFocusMinutes": self.weekly_focus_minutes,
            "weeklySessions": self.weekly_sessions,
            "totalFocusMinutes": self.total_focus_minutes,
            "totalSeeds": self.total_seeds,
        }


@dataclass
class Squad(BaseEntity):
    name: str = ""
    description: str = ""
    created_by: str = ""
    member_ids: list[str] = field(default_factory=list)
    max_members: int = 10
    member_stats: dict[str, MemberStats] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Squad:
        stats = d.get("memberStats") or {}
        return cls(
            **cls._base_kwargs(d),
            name=str(d.get("name", "")),
            description=str(d.get("description", "") or ""),
            created_by=str(d.get("createdBy", "")),
            member_ids=[str(m) for m in _as_list(d.get("memberIds"))],
            max_members=_as_int(d.get("maxMembers"), 10) or 10,
            member_stats={
                str(k): MemberStats.from_dict(v) for k, v in stats.items()
            } if isinstance(stats, dict) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        d = self._base_dict()
        d.update({
            "name": self.name,
            "description": self.description,
            "createdBy": self.created_by,
            "memberIds": list(self.member_ids),
            "maxMembers": self.max_members,
            "memberStats": {k: v.to_dict() for k, v in self.member_stats.items()},
        })
        return d


@dataclass
class Challenge(BaseEntity):
    title: str = ""
    description: str = ""
    goal_type: str = "focus_minutes"  # focus_minutes, sessions, seeds
    target_value: float = 0.0
    start_date: date | None = None
    end_date: date | None = None
    squad_id: str | None = None
    participant_ids: list[str] = field(default_factory=list)
    progress: dict[str, float] = field(default_factory=dict)
    status: str = "active"
    reward_seeds: int = 0
    completed_by: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Challenge:
        goal = str(d.get("goalType", "focus_minutes"))
        status = str(d.get("status", "active"))
        progress = d.get("progress") or {}
        return cls(
            **cls._base_kwargs(d),
            title=str(d.get("title", "")),
            description=str(d.get("description", "") or ""),
            goal_type=goal if goal in CHALLENGE_GOALS else "focus_minutes",
            target_value=_as_float(d.get("targetValue"), 0.0),
            start_date=parse_date(d.get("startDate")),
            end_date=parse_date(d.get("endDate")),
            squad_id=d.get("squadId") or None,
            participant_ids=[str(p) for p in _as_list(d.get("participantIds"))],
            progress={str(k): _as_float(v) for k, v in progress.items()} if isinstance(progress, dict) else {},
            status=status if status in CHALLENGE_STATUSES else "active",
            reward_seeds=_as_int(d.get("rewardSeeds"), 0),
            completed_by=[str(p) for p in _as_list(d.get("completedBy"))],
        )

    def to_dict(self) -> dict[str, Any]:
        d = self._base_dict()
        d.update({
            "title": self.title,
            "description": self.description,
            "goalType": self.goal_type,
            "targetValue": self.target_value,
            "startDate": format_date(self.start_date),
            "endDate": format_date(self.end_date),
            "squadId": self.squad_id,
            "participantIds": list(self.participant_ids),
            "progress": dict(self.progress),
            "status": self.status,
            "rewardSeeds": self.reward_seeds,
            "completedBy": list(self.completed_by),
        })
        return d


# ── Settings ──────────────────────────────────────────────────


@dataclass
class NotificationSettings:
    enabled: bool = True
    session_reminders: bool = True
    break_reminders: bool = True
    daily_goals: bool = True
    squad_updates: bool = True

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> NotificationSettings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            enabled=bool(d.get("enabled", True)),
            session_reminders=bool(d.get("sessionReminders", True)),
            break_reminders=bool(d.get("breakReminders", True)),
            daily_goals=bool(d.get("dailyGoals", True)),
            squad_updates=bool(d.get("squadUpdates", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "sessionReminders": self.session_reminders,
            "breakReminders": self.break_reminders,
            "dailyGoals": self.daily_goals,
            "squadUpdates": self.squad_updates,
        }


@dataclass
class PrivacySettings:
    share_stats: bool = True
    allow_friend_requests: bool = True
    show_online_status: bool = True

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> PrivacySettings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            share_stats=bool(d.get("shareStats", True)),
            allow_friend_requests=bool(d.get("allowFriendRequests", True)),
            show_online_status=bool(d.get("showOnlineStatus", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "shareStats": self.share_stats,
            "allowFriendRequests": self.allow_friend_requests,
            "showOnlineStatus": self.show_online_status,
        }


# ── Derived views ─────────────────────────────────────────────


@dataclass
class ChartDataPoint:
    date: date
    value: float
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date.isoformat(), "value": self.value, "label": self.label}


@dataclass
class ProductivityInsights:
    best_time_of_day: str = "No data"
    most_productive_day: str = "No data"
    average_session_length: int = 0
    completion_rate: int = 0
    total_sessions: int = 0
    weekly_trend: str = "stable"  # up, down, stable
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bestTimeOfDay": self.best_time_of_day,
            "mostProductiveDay": self.most_productive_day,
            "averageSessionLength": self.average_session_length,
            "completionRate": self.completion_rate,
            "totalSessions": self.total_sessions,
            "weeklyTrend": self.weekly_trend,
            "suggestions": list(self.suggestions),
        }
