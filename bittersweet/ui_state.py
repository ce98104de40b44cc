"""UI slice: hydration flag, modals, loading flags and the error log.

Never persisted.
"""

from __future__ import annotations

from collections import deque
from typing import Any

from bittersweet.base import Slice, StoreContext
from bittersweet.events import StoreEvents
from bittersweet.models import format_datetime, new_id

MAX_ERRORS = 50


class UISlice(Slice):
    name = "ui"

    def __init__(self, ctx: StoreContext) -> None:
        super().__init__(ctx)
        self.is_hydrated = False
        self.modals: dict[str, dict[str, Any]] = {}
        self.loading: dict[str, bool] = {}
        self.errors: deque[dict[str, Any]] = deque(maxlen=MAX_ERRORS)

    def set_hydrated(self, value: bool = True) -> None:
        self.is_hydrated = value
        self._commit(persist=False)

    def show_modal(self, name: str, props: dict[str, Any] | None = None) -> None:
        self.modals[name] = dict(props or {})
        self._commit(persist=False)
        self.events.emit(StoreEvents.MODAL_OPENED, {"modal": name, "props": self.modals[name]})

    def hide_modal(self, name: str) -> None:
        if self.modals.pop(name, None) is None:
            return
        self._commit(persist=False)
        self.events.emit(StoreEvents.MODAL_CLOSED, {"modal": name})

    def set_loading(self, key: str, value: bool) -> None:
        if value:
            self.loading[key] = True
        else:
            self.loading.pop(key, None)
        self._commit(persist=False)

    @property
    def is_loading(self) -> bool:
        return bool(self.loading)

    def add_error(self, message: str, code: str = "", source: str = "") -> dict[str, Any]:
        entry = {
            "id": new_id("error"),
            "message": message,
            "code": code,
            "source": source,
            "timestamp": format_datetime(self.ctx.now()),
        }
        self.errors.append(entry)
        self._commit(persist=False)
        self.events.emit(StoreEvents.ERROR_OCCURRED, dict(entry))
        return entry

    def clear_error(self, error_id: str) -> None:
        self.errors = deque((e for e in self.errors if e["id"] != error_id), maxlen=MAX_ERRORS)
        self._commit(persist=False)

    def clear_all_errors(self) -> None:
        self.errors.clear()
        self._commit(persist=False)
