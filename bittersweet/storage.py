"""String-keyed durable storage backends and the write batcher."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from bittersweet.clock import Scheduler, TimerHandle
from bittersweet.fileio import read_text, remove_file, write_text_atomic

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def multi_set(self, items: Iterable[tuple[str, str]]) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage for tests and ephemeral stores."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})
        self.write_count = 0

    def get_item(self, key: str) -> str | None:
        return self.data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.data[key] = value
        self.write_count += 1

    def multi_set(self, items: Iterable[tuple[str, str]]) -> None:
        for key, value in items:
            self.data[key] = value
        self.write_count += 1

    def remove_item(self, key: str) -> None:
        self.data.pop(key, None)


class FileStorage:
    """One JSON file per key under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def get_item(self, key: str) -> str | None:
        return read_text(self.path_for(key))

    def set_item(self, key: str, value: str) -> None:
        write_text_atomic(self.path_for(key), value)

    def multi_set(self, items: Iterable[tuple[str, str]]) -> None:
        for key, value in items:
            self.set_item(key, value)

    def remove_item(self, key: str) -> None:
        remove_file(self.path_for(key))


class BatchedStorage:
    """Coalesces writes made within ``window`` seconds into one ``multi_set``.

    Each ``set_item`` restarts the window. If the batch write fails, every
    key is retried on its own so one bad key cannot block the rest.
    Reads see pending values.
    """

    def __init__(self, backend: KeyValueStorage, scheduler: Scheduler, window: float = 0.1) -> None:
        self.backend = backend
        self._scheduler = scheduler
        self._window = window
        self._pending: dict[str, str] = {}
        self._timer: TimerHandle | None = None
        self.failed_keys: list[str] = []

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def get_item(self, key: str) -> str | None:
        if key in self._pending:
            return self._pending[key]
        try:
            return self.backend.get_item(key)
        except OSError:
            logger.exception("Storage read failed for %s", key)
            return None

    def set_item(self, key: str, value: str) -> None:
        self._pending[key] = value
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self._window, self.flush)

    def multi_set(self, items: Iterable[tuple[str, str]]) -> None:
        for key, value in items:
            self.set_item(key, value)

    def remove_item(self, key: str) -> None:
        self._pending.pop(key, None)
        try:
            self.backend.remove_item(key)
        except OSError:
            logger.exception("Storage remove failed for %s", key)

    def flush(self) -> None:
        """Write everything pending now."""
        self._cancel_timer()
        if not self._pending:
            return
        writes = list(self._pending.items())
        self._pending.clear()
        try:
            self.backend.multi_set(writes)
            logger.debug("Flushed %d key(s)", len(writes))
            return
        except Exception:
            logger.exception("Batch write failed; falling back to per-key writes")
        self.failed_keys = []
        for key, value in writes:
            try:
                self.backend.set_item(key, value)
            except Exception:
                logger.exception("Storage write failed for %s", key)
                self.failed_keys.append(key)

    def close(self) -> None:
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
