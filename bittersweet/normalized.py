"""Normalized collections: an id->record map plus an ordered id index.

``EntityManager`` is the only code that mutates a collection. It never
touches storage and never emits events; slices do that after a mutation.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from bittersweet.clock import utc_now
from bittersweet.errors import IntegrityError
from bittersweet.models import BaseEntity, format_datetime, parse_datetime

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseEntity)

# Fields an update may never change.
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


@dataclass
class NormalizedState(Generic[T]):
    by_id: dict[str, T] = field(default_factory=dict)
    all_ids: list[str] = field(default_factory=list)
    loading: bool = False
    error: str | None = None
    last_updated: datetime | None = None

    def to_dict(self, serialize: Callable[[T], dict[str, Any]] | None = None) -> dict[str, Any]:
        ser = serialize or (lambda e: e.to_dict())  # type: ignore[attr-defined]
        return {
            "byId": {k: ser(v) for k, v in self.by_id.items()},
            "allIds": list(self.all_ids),
            "loading": self.loading,
            "error": self.error,
            "lastUpdated": format_datetime(self.last_updated),
        }

    @classmethod
    def from_dict(
        cls, d: dict[str, Any] | None, parse: Callable[[dict[str, Any]], T]
    ) -> NormalizedState[T]:
        """Build from a structurally valid payload (see persistence validator).

        A record ``parse`` cannot read is dropped along with its id.
        """
        if not d:
            return cls()
        by_id: dict[str, T] = {}
        for key, value in (d.get("byId") or {}).items():
            if not isinstance(value, dict):
                continue
            try:
                by_id[str(key)] = parse(value)
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Dropped unreadable record: %s", IntegrityError(f"byId.{key}", str(exc)))
        return cls(
            by_id=by_id,
            all_ids=[str(i) for i in (d.get("allIds") or []) if str(i) in by_id],
            loading=False,
            error=d.get("error"),
            last_updated=parse_datetime(d.get("lastUpdated")),
        )

    def is_consistent(self) -> bool:
        """True when the index has no duplicates and matches the map's keys."""
        return len(self.all_ids) == len(set(self.all_ids)) and set(self.all_ids) == set(self.by_id)


class EntityManager(Generic[T]):
    """CRUD over one normalized collection.

    Works on copies of the state it was given; call ``get_state`` to read
    the result back.
    """

    def __init__(
        self,
        state: NormalizedState[T] | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._entities: dict[str, T] = dict(state.by_id) if state else {}
        self._ids: list[str] = list(state.all_ids) if state else []
        self._now = now

    def add(self, entity: T) -> None:
        """Insert or overwrite by id; the index never gets a duplicate."""
        if entity.id not in self._ids:
            self._ids.append(entity.id)
        self._entities[entity.id] = entity

    def add_many(self, entities: Iterable[T]) -> None:
        for entity in entities:
            self.add(entity)

    def update(self, entity_id: str, changes: dict[str, Any]) -> T | None:
        """Apply ``changes`` and stamp ``updated_at``. Unknown id: no-op."""
        current = self._entities.get(entity_id)
        if current is None:
            return None
        allowed = {k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS}
        allowed["updated_at"] = self._now()
        updated = dataclasses.replace(current, **allowed)
        self._entities[entity_id] = updated
        return updated

    def remove(self, entity_id: str) -> None:
        self._entities.pop(entity_id, None)
        self._ids = [i for i in self._ids if i != entity_id]

    def remove_many(self, entity_ids: Iterable[str]) -> None:
        for entity_id in list(entity_ids):
            self.remove(entity_id)

    def get_by_id(self, entity_id: str) -> T | None:
        return self._entities.get(entity_id)

    def get_all(self) -> list[T]:
        # Ids without a record are skipped rather than raising.
        return [self._entities[i] for i in self._ids if i in self._entities]

    def query(self, predicate: Callable[[T], bool]) -> list[T]:
        return [e for e in self.get_all() if predicate(e)]

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        for entity in self.get_all():
            if predicate(entity):
                return entity
        return None

    def has(self, entity_id: str) -> bool:
        return entity_id in self._entities

    def count(self) -> int:
        return len(self.get_all())

    def clear(self) -> None:
        self._entities = {}
        self._ids = []

    def sort_by(self, key: str, direction: str = "asc") -> list[T]:
        """Stable sort on an attribute; ``None`` values go last."""
        if direction not in ("asc", "desc"):
            raise ValueError(f"direction must be 'asc' or 'desc', got {direction!r}")
        present = [e for e in self.get_all() if getattr(e, key, None) is not None]
        missing = [e for e in self.get_all() if getattr(e, key, None) is None]
        present.sort(key=lambda e: getattr(e, key), reverse=direction == "desc")
        return present + missing

    def group_by(self, key: str) -> dict[str, list[T]]:
        groups: dict[str, list[T]] = {}
        for entity in self.get_all():
            groups.setdefault(str(getattr(entity, key, None)), []).append(entity)
        return groups

    def paginate(self, page: int, page_size: int) -> dict[str, Any]:
        """1-based pages over the materialized collection."""
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be >= 1")
        items = self.get_all()
        total = len(items)
        start = (page - 1) * page_size
        return {
            "data": items[start:start + page_size],
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": math.ceil(total / page_size),
        }

    def get_state(self) -> tuple[dict[str, T], list[str]]:
        """Snapshot of ``(by_id, all_ids)``."""
        return dict(self._entities), list(self._ids)


def create_normalized_state(entities: Iterable[T] = ()) -> NormalizedState[T]:
    manager: EntityManager[T] = EntityManager()
    manager.add_many(entities)
    by_id, all_ids = manager.get_state()
    return NormalizedState(by_id=by_id, all_ids=all_ids)


def update_normalized_state(
    state: NormalizedState[T],
    updater: Callable[[EntityManager[T]], Any],
    now: Callable[[], datetime] = utc_now,
) -> NormalizedState[T]:
    """Run ``updater`` against a manager and return a new state.

    ``loading`` and ``error`` carry over; ``last_updated`` is stamped.
    """
    manager = EntityManager(state, now=now)
    updater(manager)
    by_id, all_ids = manager.get_state()
    return NormalizedState(
        by_id=by_id,
        all_ids=all_ids,
        loading=state.loading,
        error=state.error,
        last_updated=now(),
    )
