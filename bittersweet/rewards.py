"""Rewards slice: the seed ledger and unlockable apps.

The ledger is append-only. ``balance``, ``total_earned`` and
``total_spent`` are caches of sums over it and are rebuilt by
``reconcile`` after hydration.
"""

from __future__ import annotations

import logging
from typing import Any

from bittersweet.base import Slice, StoreContext
from bittersweet.errors import InvalidStateError, NotFoundError, ValidationError
from bittersweet.events import StoreEvent, StoreEvents
from bittersweet.models import RewardTransaction, UnlockableApp, new_id
from bittersweet.normalized import NormalizedState

logger = logging.getLogger(__name__)


def ledger_totals(transactions: NormalizedState[RewardTransaction]) -> tuple[int, int]:
    """(earned, spent) summed over the log in index order."""
    earned = spent = 0
    for tx_id in transactions.all_ids:
        tx = transactions.by_id.get(tx_id)
        if tx is None:
            continue
        if tx.type == "earned":
            earned += tx.amount
        else:
            spent += tx.amount
    return earned, spent


class RewardsSlice(Slice):
    name = "rewards"

    def __init__(self, ctx: StoreContext) -> None:
        super().__init__(ctx)
        self.balance = 0
        self.total_earned = 0
        self.total_spent = 0
        self.transactions: NormalizedState[RewardTransaction] = NormalizedState()
        self.unlockable_apps: NormalizedState[UnlockableApp] = NormalizedState()

    def wire(self) -> None:
        self.listeners.on(StoreEvents.FOCUS_SESSION_COMPLETED, self._on_session_completed)
        self.listeners.on(StoreEvents.CHALLENGE_COMPLETED, self._on_challenge_completed)

    # ── Ledger ────────────────────────────────────────────────

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive whole number of seeds", rule="amount_positive")

    def _record(
        self, amount: int, tx_type: str, source: str, description: str, metadata: dict[str, Any] | None
    ) -> RewardTransaction:
        now = self.ctx.now()
        tx = RewardTransaction(
            id=new_id("tx"),
            created_at=now,
            updated_at=now,
            user_id=self.ctx.config.user_id,
            amount=amount,
            type=tx_type,
            source=source,
            description=description,
            metadata=dict(metadata or {}),
        )
        self.transactions = self._mutate(self.transactions, lambda m: m.add(tx))
        if tx_type == "earned":
            self.total_earned += amount
        else:
            self.total_spent += amount
        self.balance = self.total_earned - self.total_spent
        return tx

    def earn_seeds(
        self, amount: int, source: str, description: str = "", metadata: dict[str, Any] | None = None
    ) -> RewardTransaction:
        self._check_amount(amount)
        tx = self._record(amount, "earned", source, description, metadata)
        logger.info("Earned %d seed(s) from %s; balance %d", amount, source, self.balance)
        self._commit()
        self.events.emit(StoreEvents.SEEDS_EARNED, {
            "amount": amount,
            "source": source,
            "balance": self.balance,
            "transactionId": tx.id,
            "metadata": tx.metadata,
        })
        return tx

    def spend_seeds(
        self, amount: int, source: str, description: str = "", metadata: dict[str, Any] | None = None
    ) -> RewardTransaction:
        self._check_amount(amount)
        if amount > self.balance:
            raise ValidationError(
                f"Insufficient seeds: need {amount}, have {self.balance}", rule="insufficient_balance"
            )
        tx = self._record(amount, "spent", source, description, metadata)
        logger.info("Spent %d seed(s) on %s; balance %d", amount, source, self.balance)
        self._commit()
        self.events.emit(StoreEvents.SEEDS_SPENT, {
            "amount": amount,
            "source": source,
            "balance": self.balance,
            "transactionId": tx.id,
            "metadata": tx.metadata,
        })
        return tx

    def can_afford(self, amount: int) -> bool:
        return 0 <= amount <= self.balance

    def get_transaction_history(self, limit: int | None = None) -> list[RewardTransaction]:
        """Newest first."""
        history = [self.transactions.by_id[i] for i in reversed(self.transactions.all_ids)
                   if i in self.transactions.by_id]
        return history[:limit] if limit is not None else history

    def reconcile(self) -> bool:
        """Rebuild the cached totals from the ledger. True if they had drifted."""
        earned, spent = ledger_totals(self.transactions)
        drifted = (earned, spent, earned - spent) != (self.total_earned, self.total_spent, self.balance)
        if drifted:
            logger.warning(
                "Reward totals drifted from ledger (balance %d, ledger %d); repairing",
                self.balance, earned - spent,
            )
        self.total_earned, self.total_spent = earned, spent
        self.balance = earned - spent
        return drifted

    # ── Unlockable apps ───────────────────────────────────────

    def get_app(self, app_id: str) -> UnlockableApp:
        app = self.unlockable_apps.by_id.get(app_id)
        if app is None:
            raise NotFoundError("App", app_id)
        return app

    def find_app_by_bundle(self, bundle_id: str) -> UnlockableApp | None:
        for app in self.unlockable_apps.by_id.values():
            if app.bundle_id == bundle_id:
                return app
        return None

    def add_unlockable_app(
        self,
        name: str,
        bundle_id: str,
        cost: int,
        unlock_minutes: int = 15,
        icon: str = "",
        description: str = "",
    ) -> UnlockableApp:
        if not (name or "").strip():
            raise ValidationError("App name is required", rule="name_required")
        if not bundle_id:
            raise ValidationError("Bundle identifier is required", rule="bundle_required")
        if self.find_app_by_bundle(bundle_id) is not None:
            raise ValidationError(f"{bundle_id} is already registered", rule="bundle_unique")
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
            raise ValidationError("Cost must be a non-negative whole number", rule="cost_range")
        if isinstance(unlock_minutes, bool) or not isinstance(unlock_minutes, int) or unlock_minutes <= 0:
            raise ValidationError("Unlock minutes must be positive", rule="unlock_minutes_range")
        now = self.ctx.now()
        app = UnlockableApp(
            id=new_id("app"), created_at=now, updated_at=now,
            name=name.strip(), bundle_id=bundle_id, icon=icon, cost=cost,
            unlock_minutes=unlock_minutes, description=description,
        )
        self.unlockable_apps = self._mutate(self.unlockable_apps, lambda m: m.add(app))
        self._commit()
        return app

    def remove_unlockable_app(self, app_id: str) -> None:
        self.get_app(app_id)
        self.unlockable_apps = self._mutate(self.unlockable_apps, lambda m: m.remove(app_id))
        self._commit()

    def unlock_app(self, app_id: str) -> UnlockableApp:
        """Spend the app's cost and mark it unlocked."""
        app = self.get_app(app_id)
        if app.is_unlocked:
            raise InvalidStateError(f"{app.name} is already unlocked", state="unlocked")
        if app.cost > 0:
            self.spend_seeds(
                app.cost, "app_unlock", f"Unlocked {app.name}",
                {"appId": app.id, "bundleIdentifier": app.bundle_id},
            )
        now = self.ctx.now()
        self.unlockable_apps = self._mutate(
            self.unlockable_apps,
            lambda m: m.update(app_id, {"is_unlocked": True, "last_unlocked": now}),
        )
        self._commit()
        self.events.emit(StoreEvents.APP_UNLOCKED, {
            "appId": app.id,
            "bundleIdentifier": app.bundle_id,
            "unlockMinutes": app.unlock_minutes,
            "cost": app.cost,
        })
        return self.unlockable_apps.by_id[app_id]

    def relock_app(self, app_id: str) -> UnlockableApp:
        """Mark an app locked again. Already-locked apps are left alone."""
        app = self.get_app(app_id)
        if not app.is_unlocked:
            return app
        self.unlockable_apps = self._mutate(
            self.unlockable_apps, lambda m: m.update(app_id, {"is_unlocked": False})
        )
        self._commit()
        self.events.emit(StoreEvents.APP_RELOCKED, {"appId": app.id, "bundleIdentifier": app.bundle_id})
        return self.unlockable_apps.by_id[app_id]

    # ── Bus reactions ─────────────────────────────────────────

    def _on_session_completed(self, event: StoreEvent) -> None:
        seeds = int(event.payload.get("seedsEarned", 0))
        if seeds > 0:
            self.earn_seeds(
                seeds, "focus_session", "Focus session completed",
                {"sessionId": event.payload.get("sessionId")},
            )

    def _on_challenge_completed(self, event: StoreEvent) -> None:
        seeds = int(event.payload.get("rewardSeeds", 0))
        if seeds > 0 and event.payload.get("userId") == self.ctx.config.user_id:
            self.earn_seeds(
                seeds, "challenge", "Challenge completed",
                {"challengeId": event.payload.get("challengeId")},
            )

    # ── Persistence ───────────────────────────────────────────

    def to_persisted(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "totalEarned": self.total_earned,
            "totalSpent": self.total_spent,
            "transactions": self.transactions.to_dict(),
            "unlockableApps": self.unlockable_apps.to_dict(),
        }

    def parse_persisted(self, data: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, attr in (("balance", "balance"), ("totalEarned", "total_earned"), ("totalSpent", "total_spent")):
            if isinstance(data.get(key), (int, float)) and not isinstance(data.get(key), bool):
                values[attr] = int(data[key])
        if "transactions" in data:
            values["transactions"] = NormalizedState.from_dict(data["transactions"], RewardTransaction.from_dict)
        if "unlockableApps" in data:
            values["unlockable_apps"] = NormalizedState.from_dict(data["unlockableApps"], UnlockableApp.from_dict)
        return values

    def after_hydrate(self) -> None:
        self.reconcile()
