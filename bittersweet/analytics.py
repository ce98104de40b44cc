"""Focus statistics, streaks, chart series and productivity insights.

Everything here is a pure function of a list of sessions plus the user's
timezone; the focus slice and the selectors call into it.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timedelta, tzinfo

from bittersweet.models import ChartDataPoint, FocusSession, FocusStats, ProductivityInsights

CHART_PERIODS = ("daily", "weekly", "monthly", "yearly")
DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# Relative change between the last two weeks that counts as a trend.
TREND_THRESHOLD = 0.10


def local_date(value: datetime, tz: tzinfo) -> date:
    return value.astimezone(tz).date()


def completed_sessions(sessions: Iterable[FocusSession]) -> list[FocusSession]:
    return [s for s in sessions if s.status == "completed" and s.start_time is not None]


def _session_dates(sessions: Iterable[FocusSession], tz: tzinfo) -> set[date]:
    return {local_date(s.start_time, tz) for s in completed_sessions(sessions)}


# ── Streaks ───────────────────────────────────────────────────


def calculate_current_streak(sessions: Iterable[FocusSession], today: date, tz: tzinfo) -> int:
    """Consecutive days, ending today, with at least one completed session."""
    dates = _session_dates(sessions, tz)
    streak = 0
    day = today
    while day in dates:
        streak += 1
        day -= timedelta(days=1)
    return streak


def calculate_longest_streak(sessions: Iterable[FocusSession], tz: tzinfo) -> int:
    dates = sorted(_session_dates(sessions, tz))
    if not dates:
        return 0
    longest = current = 1
    for prev, cur in zip(dates, dates[1:]):
        if (cur - prev).days == 1:
            current += 1
            longest = max(longest, current)
        else:
            current = 1
    return longest


# ── Stats ─────────────────────────────────────────────────────


def compute_focus_stats(sessions: list[FocusSession], today: date, tz: tzinfo) -> FocusStats:
    """Aggregate stats over completed sessions.

    Completion rate is completed / finished (completed + cancelled), as a
    percentage; sessions still running are not counted either way.
    """
    completed = completed_sessions(sessions)
    finished = [s for s in sessions if s.status in ("completed", "cancelled")]
    total_time = sum(s.duration for s in completed)
    return FocusStats(
        total_sessions=len(completed),
        total_focus_time=total_time,
        current_streak=calculate_current_streak(completed, today, tz),
        longest_streak=calculate_longest_streak(completed, tz),
        average_session_length=total_time / len(completed) if completed else 0.0,
        completion_rate=len(completed) / len(finished) * 100 if finished else 0.0,
    )


# ── Chart series ──────────────────────────────────────────────


def _bucket(day: date, period: str) -> tuple[date, str]:
    if period == "daily":
        return day, day.isoformat()
    if period == "weekly":
        start = day - timedelta(days=day.weekday())
        return start, start.isoformat()
    if period == "monthly":
        start = day.replace(day=1)
        return start, f"{start.year}-{start.month:02d}"
    start = date(day.year, 1, 1)
    return start, str(day.year)


def chart_data(sessions: Iterable[FocusSession], period: str, tz: tzinfo) -> list[ChartDataPoint]:
    """Completed focus minutes per bucket, oldest bucket first.

    Weeks start on Monday.
    """
    if period not in CHART_PERIODS:
        raise ValueError(f"period must be one of {', '.join(CHART_PERIODS)}")
    totals: dict[date, float] = defaultdict(float)
    labels: dict[date, str] = {}
    for session in completed_sessions(sessions):
        start, label = _bucket(local_date(session.start_time, tz), period)
        totals[start] += session.duration
        labels[start] = label
    return [ChartDataPoint(date=d, value=totals[d], label=labels[d]) for d in sorted(totals)]


# ── Insights ──────────────────────────────────────────────────


def weekly_trend(sessions: Iterable[FocusSession], today: date, tz: tzinfo) -> str:
    """Compare completed minutes over the last 7 days with the 7 before."""
    recent = previous = 0.0
    for session in completed_sessions(sessions):
        age = (today - local_date(session.start_time, tz)).days
        if 0 <= age < 7:
            recent += session.duration
        elif 7 <= age < 14:
            previous += session.duration
    if previous == 0:
        return "up" if recent > 0 else "stable"
    change = (recent - previous) / previous
    if change > TREND_THRESHOLD:
        return "up"
    if change < -TREND_THRESHOLD:
        return "down"
    return "stable"


def productivity_insights(sessions: list[FocusSession], now: datetime, tz: tzinfo) -> ProductivityInsights:
    completed = completed_sessions(sessions)
    total = len(sessions)
    if not completed:
        return ProductivityInsights(
            total_sessions=total,
            suggestions=["Start your first focus session to see insights!"],
        )

    completion_rate = len(completed) / max(total, 1) * 100
    average = sum(s.duration for s in completed) / len(completed)

    by_hour: dict[int, float] = defaultdict(float)
    by_day: dict[int, float] = defaultdict(float)
    for session in completed:
        local = session.start_time.astimezone(tz)
        by_hour[local.hour] += session.duration
        by_day[local.weekday()] += session.duration
    # Ties go to the earliest hour / weekday.
    best_hour = max(sorted(by_hour), key=lambda h: by_hour[h])
    best_day = max(sorted(by_day), key=lambda d: by_day[d])

    suggestions = []
    if completion_rate < 70:
        suggestions.append("Try shorter sessions to improve completion rate")
    if average < 15:
        suggestions.append("Consider longer sessions for deeper focus")
    if len(completed) < 5:
        suggestions.append("Build consistency with daily focus sessions")

    return ProductivityInsights(
        best_time_of_day=f"{best_hour}:00 - {best_hour + 1}:00",
        most_productive_day=DAY_NAMES[best_day],
        average_session_length=round(average),
        completion_rate=round(completion_rate),
        total_sessions=total,
        weekly_trend=weekly_trend(completed, local_date(now, tz), tz),
        suggestions=suggestions,
    )
