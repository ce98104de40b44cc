"""Social slice: squads, challenges, and stats fed by completed sessions.

Member stats and challenge progress are written only from
FOCUS_SESSION_COMPLETED events; session code never touches them.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Any

from bittersweet.base import Slice, StoreContext
from bittersweet.errors import InvalidStateError, NotFoundError, ValidationError
from bittersweet.events import StoreEvent, StoreEvents
from bittersweet.models import (
    CHALLENGE_GOALS,
    Challenge,
    MemberStats,
    Squad,
    new_id,
    parse_date,
    parse_datetime,
)
from bittersweet.normalized import NormalizedState

logger = logging.getLogger(__name__)

MAX_SQUAD_SIZE = 50


class SocialSlice(Slice):
    name = "social"

    def __init__(self, ctx: StoreContext) -> None:
        super().__init__(ctx)
        self.squads: NormalizedState[Squad] = NormalizedState()
        self.challenges: NormalizedState[Challenge] = NormalizedState()
        self.user_squads: list[str] = []
        self.active_challenges: list[str] = []

    def wire(self) -> None:
        self.ctx.register_reference(
            "squad",
            lambda sid: any(
                c.squad_id == sid and c.status == "active" for c in self.challenges.by_id.values()
            ),
        )
        self.listeners.on(StoreEvents.FOCUS_SESSION_COMPLETED, self._on_session_completed)

    def _user(self, user_id: str | None) -> str:
        return user_id or self.ctx.config.user_id

    def _today(self) -> date:
        return self.ctx.now().astimezone(self.ctx.config.tzinfo).date()

    # ── Squads ────────────────────────────────────────────────

    def get_squad(self, squad_id: str) -> Squad:
        squad = self.squads.by_id.get(squad_id)
        if squad is None:
            raise NotFoundError("Squad", squad_id)
        return squad

    @staticmethod
    def _check_capacity(max_members: int, current: int = 0) -> None:
        if isinstance(max_members, bool) or not isinstance(max_members, int):
            raise ValidationError("maxMembers must be a whole number", rule="squad_capacity")
        if not 1 <= max_members <= MAX_SQUAD_SIZE:
            raise ValidationError(f"maxMembers must be between 1 and {MAX_SQUAD_SIZE}", rule="squad_capacity")
        if max_members < current:
            raise ValidationError("maxMembers is below the current member count", rule="squad_capacity")

    def create_squad(self, name: str, description: str = "", max_members: int = 10) -> Squad:
        """Create a squad; the current user is its creator and first member."""
        if not (name or "").strip():
            raise ValidationError("Squad name is required", rule="name_required")
        self._check_capacity(max_members)
        now = self.ctx.now()
        user = self.ctx.config.user_id
        squad = Squad(
            id=new_id("squad"), created_at=now, updated_at=now,
            name=name.strip(), description=description, created_by=user,
            member_ids=[user], max_members=max_members,
            member_stats={user: MemberStats(week_start=self._week_start(self._today()))},
        )
        self.squads = self._mutate(self.squads, lambda m: m.add(squad))
        self.user_squads = [*self.user_squads, squad.id]
        self._commit()
        self.events.emit(StoreEvents.SQUAD_JOINED, {"squadId": squad.id, "userId": user})
        return squad

    def update_squad(self, squad_id: str, changes: dict[str, Any]) -> Squad:
        squad = self.get_squad(squad_id)
        unknown = set(changes) - {"name", "description", "max_members"}
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(sorted(unknown))}", rule="editable_fields")
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Squad name is required", rule="name_required")
        if "max_members" in changes:
            self._check_capacity(changes["max_members"], len(squad.member_ids))
        self.squads = self._mutate(self.squads, lambda m: m.update(squad_id, changes))
        self._commit()
        return self.squads.by_id[squad_id]

    def delete_squad(self, squad_id: str) -> None:
        self.get_squad(squad_id)
        self._require_reference_free("squad", squad_id)
        self.squads = self._mutate(self.squads, lambda m: m.remove(squad_id))
        self.user_squads = [s for s in self.user_squads if s != squad_id]
        self._commit()

    def join_squad(self, squad_id: str, user_id: str | None = None) -> Squad:
        squad = self.get_squad(squad_id)
        user = self._user(user_id)
        if user in squad.member_ids:
            raise InvalidStateError(f"{user} is already a member of {squad.name}", state="member")
        if len(squad.member_ids) >= squad.max_members:
            raise ValidationError(f"{squad.name} is full", rule="squad_full")
        stats = {**squad.member_stats, user: MemberStats(week_start=self._week_start(self._today()))}
        self.squads = self._mutate(
            self.squads,
            lambda m: m.update(squad_id, {"member_ids": [*squad.member_ids, user], "member_stats": stats}),
        )
        if user == self.ctx.config.user_id and squad_id not in self.user_squads:
            self.user_squads = [*self.user_squads, squad_id]
        self._commit()
        self.events.emit(StoreEvents.SQUAD_JOINED, {"squadId": squad_id, "userId": user})
        return self.squads.by_id[squad_id]

    def leave_squad(self, squad_id: str, user_id: str | None = None) -> Squad:
        squad = self.get_squad(squad_id)
        user = self._user(user_id)
        if user not in squad.member_ids:
            raise InvalidStateError(f"{user} is not a member of {squad.name}", state="not_member")
        members = [m for m in squad.member_ids if m != user]
        stats = {k: v for k, v in squad.member_stats.items() if k != user}
        self.squads = self._mutate(
            self.squads, lambda m: m.update(squad_id, {"member_ids": members, "member_stats": stats})
        )
        if user == self.ctx.config.user_id:
            self.user_squads = [s for s in self.user_squads if s != squad_id]
        self._commit()
        self.events.emit(StoreEvents.SQUAD_LEFT, {"squadId": squad_id, "userId": user})
        return self.squads.by_id[squad_id]

    def get_user_squads(self) -> list[Squad]:
        return [self.squads.by_id[s] for s in self.user_squads if s in self.squads.by_id]

    def get_squad_leaderboard(self, squad_id: str) -> list[dict[str, Any]]:
        """Members ranked by this week's focus minutes."""
        squad = self.get_squad(squad_id)
        current_week = self._week_start(self._today())
        rows = []
        for member in squad.member_ids:
            stats = squad.member_stats.get(member, MemberStats())
            fresh = stats.week_start == current_week
            rows.append({
                "userId": member,
                "weeklyFocusMinutes": stats.weekly_focus_minutes if fresh else 0.0,
                "weeklySessions": stats.weekly_sessions if fresh else 0,
                "totalSeeds": stats.total_seeds,
            })
        rows.sort(key=lambda r: (-r["weeklyFocusMinutes"], -r["weeklySessions"], r["userId"]))
        for rank, row in enumerate(rows, start=1):
            row["rank"] = rank
        return rows

    # ── Challenges ────────────────────────────────────────────

    def get_challenge(self, challenge_id: str) -> Challenge:
        challenge = self.challenges.by_id.get(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge", challenge_id)
        return challenge

    def create_challenge(
        self,
        title: str,
        goal_type: str,
        target_value: float,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        squad_id: str | None = None,
        reward_seeds: int = 0,
        description: str = "",
    ) -> Challenge:
        if not (title or "").strip():
            raise ValidationError("Challenge title is required", rule="title_required")
        if goal_type not in CHALLENGE_GOALS:
            raise ValidationError(f"goalType must be one of {', '.join(CHALLENGE_GOALS)}", rule="goal_type")
        if isinstance(target_value, bool) or not isinstance(target_value, (int, float)) or target_value <= 0:
            raise ValidationError("targetValue must be positive", rule="target_positive")
        if isinstance(reward_seeds, bool) or not isinstance(reward_seeds, int) or reward_seeds < 0:
            raise ValidationError("rewardSeeds must be a non-negative whole number", rule="reward_range")
        start = parse_date(start_date) if start_date is not None else self._today()
        end = parse_date(end_date) if end_date is not None else None
        if start is None or (end_date is not None and end is None):
            raise ValidationError("Invalid challenge dates", rule="date_format")
        if end is not None and end < start:
            raise ValidationError("endDate is before startDate", rule="date_order")
        if squad_id is not None:
            self.get_squad(squad_id)
        now = self.ctx.now()
        challenge = Challenge(
            id=new_id("challenge"), created_at=now, updated_at=now,
            title=title.strip(), description=description, goal_type=goal_type,
            target_value=float(target_value), start_date=start, end_date=end,
            squad_id=squad_id, reward_seeds=reward_seeds,
        )
        self.challenges = self._mutate(self.challenges, lambda m: m.add(challenge))
        self._commit()
        return challenge

    def join_challenge(self, challenge_id: str, user_id: str | None = None) -> Challenge:
        challenge = self.get_challenge(challenge_id)
        user = self._user(user_id)
        if challenge.status != "active":
            raise InvalidStateError(f"Challenge is {challenge.status}", state=challenge.status)
        if user in challenge.participant_ids:
            raise InvalidStateError(f"{user} already joined this challenge", state="participant")
        if challenge.squad_id is not None:
            squad = self.squads.by_id.get(challenge.squad_id)
            if squad is None or user not in squad.member_ids:
                raise ValidationError("Only squad members can join this challenge", rule="squad_membership")
        self.challenges = self._mutate(
            self.challenges,
            lambda m: m.update(challenge_id, {
                "participant_ids": [*challenge.participant_ids, user],
                "progress": {**challenge.progress, user: 0.0},
            }),
        )
        if user == self.ctx.config.user_id and challenge_id not in self.active_challenges:
            self.active_challenges = [*self.active_challenges, challenge_id]
        self._commit()
        self.events.emit(StoreEvents.CHALLENGE_JOINED, {"challengeId": challenge_id, "userId": user})
        return self.challenges.by_id[challenge_id]

    def leave_challenge(self, challenge_id: str, user_id: str | None = None) -> Challenge:
        challenge = self.get_challenge(challenge_id)
        user = self._user(user_id)
        if user not in challenge.participant_ids:
            raise InvalidStateError(f"{user} has not joined this challenge", state="not_participant")
        self.challenges = self._mutate(
            self.challenges,
            lambda m: m.update(challenge_id, {
                "participant_ids": [p for p in challenge.participant_ids if p != user],
                "progress": {k: v for k, v in challenge.progress.items() if k != user},
            }),
        )
        if user == self.ctx.config.user_id:
            self.active_challenges = [c for c in self.active_challenges if c != challenge_id]
        self._commit()
        self.events.emit(StoreEvents.CHALLENGE_LEFT, {"challengeId": challenge_id, "userId": user})
        return self.challenges.by_id[challenge_id]

    def get_active_challenges(self) -> list[Challenge]:
        return [
            self.challenges.by_id[c] for c in self.active_challenges
            if c in self.challenges.by_id and self.challenges.by_id[c].status == "active"
        ]

    def expire_challenges(self) -> list[str]:
        """Mark active challenges whose end date has passed as expired."""
        today = self._today()
        expired = [
            c.id for c in self.challenges.by_id.values()
            if c.status == "active" and c.end_date is not None and c.end_date < today
        ]
        if not expired:
            return []

        def apply(manager) -> None:
            for challenge_id in expired:
                manager.update(challenge_id, {"status": "expired"})

        self.challenges = self._mutate(self.challenges, apply)
        self.active_challenges = [c for c in self.active_challenges if c not in expired]
        logger.info("Expired %d challenge(s)", len(expired))
        self._commit()
        return expired

    # ── Session reactions ─────────────────────────────────────

    @staticmethod
    def _week_start(day: date) -> date:
        return day - timedelta(days=day.weekday())

    def _on_session_completed(self, event: StoreEvent) -> None:
        user = event.payload.get("userId") or self.ctx.config.user_id
        minutes = float(event.payload.get("duration", 0.0))
        seeds = int(event.payload.get("seedsEarned", 0))
        completed_at = parse_datetime(event.payload.get("completedAt")) or self.ctx.now()
        day = completed_at.astimezone(self.ctx.config.tzinfo).date()

        touched_squads = self._record_squad_stats(user, day, minutes, seeds)
        finished = self._advance_challenges(user, day, minutes, seeds)
        if touched_squads or finished is not None:
            self._commit()
        for challenge in finished or []:
            self.events.emit(StoreEvents.CHALLENGE_COMPLETED, {
                "challengeId": challenge.id,
                "userId": user,
                "rewardSeeds": challenge.reward_seeds,
            })

    def _record_squad_stats(self, user: str, day: date, minutes: float, seeds: int) -> bool:
        squads = [s for s in self.squads.by_id.values() if user in s.member_ids]
        if not squads:
            return False
        week = self._week_start(day)

        def apply(manager) -> None:
            for squad in squads:
                stats = squad.member_stats.get(user, MemberStats())
                if stats.week_start != week:
                    stats = replace(stats, week_start=week, weekly_focus_minutes=0.0, weekly_sessions=0)
                stats = replace(
                    stats,
                    weekly_focus_minutes=stats.weekly_focus_minutes + minutes,
                    weekly_sessions=stats.weekly_sessions + 1,
                    total_focus_minutes=stats.total_focus_minutes + minutes,
                    total_seeds=stats.total_seeds + seeds,
                )
                manager.update(squad.id, {"member_stats": {**squad.member_stats, user: stats}})

        self.squads = self._mutate(self.squads, apply)
        return True

    def _advance_challenges(self, user: str, day: date, minutes: float, seeds: int) -> list[Challenge] | None:
        """Add this session to each running challenge the user is in.

        Returns the challenges the user just finished, or None if nothing
        changed.
        """
        running = [
            c for c in self.challenges.by_id.values()
            if c.status == "active" and user in c.participant_ids
            and (c.start_date is None or c.start_date <= day)
            and (c.end_date is None or day <= c.end_date)
        ]
        if not running:
            return None
        increments = {"focus_minutes": minutes, "sessions": 1.0, "seeds": float(seeds)}
        finished: list[Challenge] = []

        def apply(manager) -> None:
            for challenge in running:
                value = challenge.progress.get(user, 0.0) + increments[challenge.goal_type]
                changes: dict[str, Any] = {"progress": {**challenge.progress, user: value}}
                if value >= challenge.target_value and user not in challenge.completed_by:
                    done = [*challenge.completed_by, user]
                    changes["completed_by"] = done
                    # Closed once every participant has reached the target.
                    if set(done) >= set(challenge.participant_ids):
                        changes["status"] = "completed"
                    finished.append(manager.update(challenge.id, changes))
                else:
                    manager.update(challenge.id, changes)

        self.challenges = self._mutate(self.challenges, apply)
        closed = {c.id for c in finished if c.status == "completed"}
        if closed:
            self.active_challenges = [c for c in self.active_challenges if c not in closed]
        return finished

    # ── Persistence ───────────────────────────────────────────

    def to_persisted(self) -> dict[str, Any]:
        return {
            "squads": self.squads.to_dict(),
            "challenges": self.challenges.to_dict(),
            "userSquads": list(self.user_squads),
            "activeChallenges": list(self.active_challenges),
        }

    def parse_persisted(self, data: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if "squads" in data:
            values["squads"] = NormalizedState.from_dict(data["squads"], Squad.from_dict)
        if "challenges" in data:
            values["challenges"] = NormalizedState.from_dict(data["challenges"], Challenge.from_dict)
        for key, attr in (("userSquads", "user_squads"), ("activeChallenges", "active_challenges")):
            if isinstance(data.get(key), list):
                values[attr] = [str(i) for i in data[key]]
        return values

    def after_hydrate(self) -> None:
        self.user_squads = [s for s in self.user_squads if s in self.squads.by_id]
        self.active_challenges = [c for c in self.active_challenges if c in self.challenges.by_id]
        self.expire_challenges()
