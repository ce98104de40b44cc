"""Error types raised by the Bittersweet state engine.

Action-level errors (validation, invalid state, not found) propagate to the
caller. Integrity and migration problems are handled inside the persistence
layer: they are logged, recorded, and replaced with safe defaults.
"""

from __future__ import annotations

from typing import Any


class StoreError(Exception):
    """Base class for every error the store produces."""

    code = "store_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "code": self.code}


class ValidationError(StoreError, ValueError):
    """Bad input to an action. ``rule`` names the violated rule."""

    code = "validation_error"

    def __init__(self, message: str, rule: str = "") -> None:
        super().__init__(message)
        self.rule = rule

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["rule"] = self.rule
        return d


class InvalidStateError(StoreError):
    """Action attempted from a state that forbids it."""

    code = "invalid_state"

    def __init__(self, message: str, state: str = "") -> None:
        super().__init__(message)
        self.state = state


class SessionConflictError(ValidationError, InvalidStateError):
    """A session is already current when a new one is requested."""

    code = "session_conflict"

    def __init__(self, message: str, state: str = "") -> None:
        ValidationError.__init__(self, message, rule="no_current_session")
        self.state = state


class NotFoundError(StoreError, LookupError):
    """Operation on an unknown id."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class IntegrityError(StoreError):
    """Normalized-state shape violation found while loading.

    Never raised to callers: the validator records it and repairs the field.
    """

    code = "integrity_error"

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class MigrationError(StoreError):
    """A migration step failed; the raw payload is preserved as a backup."""

    code = "migration_error"

    def __init__(self, from_version: int, step: int | None, message: str) -> None:
        super().__init__(message)
        self.from_version = from_version
        self.step = step


class EventRecursionError(StoreError):
    """Nested emits went past the bus's depth limit."""

    code = "event_recursion"
