"""Time source and timer ports.

The engine never reads the wall clock or creates timers directly; it asks an
injected ``Clock`` and ``Scheduler``. Production code uses ``SystemClock`` and
``AsyncioScheduler``; tests drive a virtual clock instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Clock(Protocol):
    def now(self) -> datetime: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle: ...


class SystemClock:
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── asyncio-backed scheduler ──────────────────────────────────


class _LoopTimer:
    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """Schedules callbacks on an asyncio event loop.

    The loop is looked up lazily so one scheduler can be created before the
    application's loop starts running.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _LoopTimer:
        timer = _LoopTimer()

        def fire() -> None:
            if not timer.cancelled:
                timer._handle = None
                callback()

        timer._handle = self._get_loop().call_later(max(0.0, delay), fire)
        return timer

    def call_every(self, interval: float, callback: Callable[[], None]) -> _LoopTimer:
        if interval <= 0:
            raise ValueError("interval must be positive")
        timer = _LoopTimer()
        loop = self._get_loop()

        def fire() -> None:
            if timer.cancelled:
                return
            # Re-arm before running so a callback that cancels the timer wins.
            timer._handle = loop.call_later(interval, fire)
            try:
                callback()
            except Exception:
                logger.exception("Periodic timer callback failed")

        timer._handle = loop.call_later(interval, fire)
        return timer
