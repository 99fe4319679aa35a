"""
Timer scheduling for the round engine.

Every phase change runs inside a loop callback that runs to completion, so
engine state needs no locks. Handles are cancelable and idempotent.
AsyncioScheduler is the production implementation; tests drive the engine
with a manual clock that implements the same three methods.
"""
import asyncio
import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float:
        """Monotonic seconds."""
        ...

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval_s: float, callback: Callable[[], None]) -> TimerHandle: ...


class _Ticker:
    """Fixed-interval repeating callback built on loop.call_later."""

    def __init__(self, loop: asyncio.AbstractEventLoop, interval_s: float, callback: Callable[[], None]):
        self._loop = loop
        self._interval_s = interval_s
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self._next_at = loop.time() + interval_s
        self._schedule()

    def _schedule(self) -> None:
        self._handle = self._loop.call_at(self._next_at, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        # Advance from the previous deadline so slow ticks don't accumulate drift
        self._next_at = max(self._next_at + self._interval_s, self._loop.time())
        self._schedule()
        try:
            self._callback()
        except Exception:
            logger.exception("Ticker callback failed")

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """Scheduler backed by the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay_s), callback)

    def call_every(self, interval_s: float, callback: Callable[[], None]) -> _Ticker:
        return _Ticker(self.loop, interval_s, callback)
