import random
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from config import Settings
from engine.phase_machine import CrashEngine
from models.game import Event, QueuedMultiplier

TEST_SECRET = "test-secret"


class _ManualHandle:
    _seq = 0

    def __init__(self, when: float, callback: Callable[[], None], interval: Optional[float] = None):
        _ManualHandle._seq += 1
        self.seq = _ManualHandle._seq
        self.when = when
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by advance(); callbacks run synchronously in due order."""

    def __init__(self):
        self.time = 0.0
        self._handles: List[_ManualHandle] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self.time + delay_s, callback)
        self._handles.append(handle)
        return handle

    def call_every(self, interval_s: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self.time + interval_s, callback, interval_s)
        self._handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self.time + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self.time = max(self.time, handle.when)
            if handle.interval:
                handle.when += handle.interval
            else:
                self._handles.remove(handle)
            handle.callback()
        self.time = target
        self._handles = [h for h in self._handles if not h.cancelled]

    def pending(self) -> int:
        return len([h for h in self._handles if not h.cancelled])


class RecordingPublisher:
    def __init__(self):
        self.events: List[Tuple[Event, Dict[str, Any]]] = []

    def publish(self, event: Event, payload: Dict[str, Any]) -> None:
        self.events.append((event, dict(payload)))

    def names(self) -> List[str]:
        return [event.value for event, _ in self.events]

    def of(self, event: Event) -> List[Dict[str, Any]]:
        return [payload for e, payload in self.events if e == event]


class NoJitter(random.Random):
    def uniform(self, a: float, b: float) -> float:
        return a


def tagged(start_round: int, *values: float) -> List[QueuedMultiplier]:
    return [QueuedMultiplier(v, start_round + i) for i, v in enumerate(values)]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        socket_server_secret=TEST_SECRET,
        betting_phase_ms=6000,
        wait_phase_ms=3000,
        multiplier_update_interval_ms=80,
        instant_crash_threshold=1.03,
        ledger_retention=1000,
        disclose_crash_point_early=False,
    )


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def engine(scheduler, publisher, settings) -> CrashEngine:
    return CrashEngine(scheduler=scheduler, publisher=publisher, settings=settings, rng=NoJitter())
