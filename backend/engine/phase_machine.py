"""
Crash Engine — phase state machine for the live round loop.

  wait ──(queue non-empty)──▶ betting ──(betting_phase_ms)──▶ flying
    ▲                                                          │
    └──(wait_phase_ms, round += 1)── crashed ◀──(M reaches C)──┘

The engine is the only writer of GameState. Every transition runs inside a
scheduler callback (or an ingestion/trigger request) and is published to the
broadcast gateway as it happens. Each timer purpose holds at most one live
handle; the previous one is cancelled before a replacement is scheduled.
"""
import logging
import math
import random
import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from config import Settings
from engine import curve
from engine.scheduler import Scheduler, TimerHandle
from engine.synchronizer import RoundSynchronizer, SyncResult
from models.game import Event, GameState, Phase, QueuedMultiplier
from services.round_store import CrashQueue, RoundMultiplierLedger

logger = logging.getLogger(__name__)

BETTING_TIMER = "bettingTimer"
ANIMATION_TICKER = "animationTicker"
WAIT_TIMER = "waitTimer"


class Publisher(Protocol):
    def publish(self, event: Event, payload: Dict[str, Any]) -> None: ...


class TriggerRejected(Exception):
    """A manual start was requested while a round is running or nothing is queued."""


def is_playable(crash_point: float) -> bool:
    """A crash point the curve can animate: finite and at least 1.00."""
    return math.isfinite(crash_point) and crash_point >= 1.0


class CrashEngine:
    def __init__(
        self,
        scheduler: Scheduler,
        publisher: Publisher,
        settings: Settings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.scheduler = scheduler
        self.publisher = publisher
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock

        self.state = GameState()
        self.queue = CrashQueue()
        self.ledger = RoundMultiplierLedger(retention=settings.ledger_retention)
        self.synchronizer = RoundSynchronizer(self.ledger)

        self._timers: Dict[str, TimerHandle] = {}
        self._flight_duration_s = 0.0
        self._flight_started_at = 0.0
        self._last_emitted = 1.00

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def is_idle(self) -> bool:
        return self.state.phase == Phase.WAIT

    @property
    def disclose_early(self) -> bool:
        return self.settings.disclose_crash_point_early

    def active_timers(self) -> Dict[str, bool]:
        return {name: name in self._timers for name in (BETTING_TIMER, ANIMATION_TICKER, WAIT_TIMER)}

    # ── Ingestion ─────────────────────────────────────────────────────────────

    def ingest(self, entries: Iterable[QueuedMultiplier], start_round: Optional[int] = None) -> int:
        """
        Append a producer batch to the queue and ledger.
        When idle, reconcile the round counter and start playing; otherwise the
        batch simply waits for the running round to finish. Returns the queue size.
        """
        entries = list(entries)
        rejected = [e for e in entries if not is_playable(e.value)]
        if rejected:
            logger.warning(
                "Dropping %d unplayable crash points from batch: %s",
                len(rejected), [e.value for e in rejected],
            )
            entries = [e for e in entries if is_playable(e.value)]
        previous_size = len(self.queue)
        self.queue.extend(entries)
        for entry in entries:
            if entry.round_number is not None:
                self.ledger.assign(entry.round_number, entry.value)
                logger.debug("📋 Mapped round %d → %.2fx", entry.round_number, entry.value)

        logger.info(
            "📥 Queued %d multipliers (start round %s), queue %d → %d",
            len(entries), start_round, previous_size, len(self.queue),
        )

        if not self.is_idle:
            logger.info(
                "⏳ Round %d in progress (phase: %s), batch will be played after it",
                self.state.current_round, self.state.phase.value,
            )
            return len(self.queue)

        self.resync(start_round)
        if self.queue:
            logger.info("🚀 Starting playback from round %d", self.state.current_round)
            self._start_next_round()
        return len(self.queue)

    def resync(self, start_round: Optional[int]) -> SyncResult:
        if not self.is_idle:
            raise TriggerRejected(f"Cannot resync while {self.state.phase.value}")
        result = self.synchronizer.reconcile(self.state.current_round, start_round)
        self.state.current_round = result.round
        return result

    def trigger_next(self, start_round: Optional[int] = None) -> int:
        """Out-of-schedule wait → betting. Returns the round that started."""
        if not self.is_idle or not self.queue:
            raise TriggerRejected(
                f"Cannot trigger next round. Phase: {self.state.phase.value}, Queue: {len(self.queue)}"
            )
        if start_round:
            self.resync(start_round)
        logger.info("🔧 Manual trigger: starting round %d", self.state.current_round or 1)
        self._start_next_round()
        return self.state.current_round

    # ── Phase transitions ─────────────────────────────────────────────────────

    def _start_next_round(self) -> bool:
        """wait → betting."""
        if not self.queue:
            logger.info("⏸️ No multipliers in queue, waiting for the next batch")
            self.state.phase = Phase.WAIT
            return False

        if self.state.current_round == 0:
            logger.warning("No start round received from the producer — numbering from round 1")
            self.state.current_round = 1

        round_number = self.state.current_round
        mapped = self.ledger.get(round_number)
        head = self.queue.pop_head()
        if mapped is None:
            logger.warning(
                "⚠️ Desync: no multiplier mapped for round %d, using queue head %.2fx (tagged round %s)",
                round_number, head.value, head.round_number,
            )
            crash_point = head.value
        else:
            crash_point = mapped
        crash_point = self.ledger.seal(round_number, crash_point)

        self.state.phase = Phase.BETTING
        self.state.crash_point = crash_point
        self.state.current_multiplier = 1.00
        self.state.flying_started_at = None
        self.state.betting_ends_at = self.clock() + self.settings.betting_phase_ms / 1000

        logger.info(
            "🎮 Round %d: betting open, crash point %.2fx (%d left in queue)",
            round_number, crash_point, len(self.queue),
        )
        self._publish(Event.ROUND_START, {
            "round": round_number,
            "crashPoint": self._disclosed(crash_point),
        })
        self._schedule(BETTING_TIMER, self.settings.betting_phase_ms / 1000, self._start_flying)
        return True

    def _start_flying(self) -> None:
        """betting → flying."""
        self._timers.pop(BETTING_TIMER, None)
        crash_point = self.state.crash_point

        self.state.phase = Phase.FLYING
        self.state.current_multiplier = 1.00
        self.state.betting_ends_at = None
        self.state.flying_started_at = self.clock()

        self._publish(Event.ROUND_FLYING, {
            "round": self.state.current_round,
            "multiplier": 1.00,
            "crashPoint": self._disclosed(crash_point),
        })

        if crash_point < self.settings.instant_crash_threshold:
            logger.info("💥 Round %d crash point %.2fx below threshold — instant crash",
                        self.state.current_round, crash_point)
            self._crash()
            return

        self._flight_duration_s = curve.duration(crash_point, self.rng, self.settings.duration_jitter_s)
        self._flight_started_at = self.scheduler.now()
        self._last_emitted = 1.00
        logger.info(
            "✈️ Round %d flying to %.2fx over %.1fs (k=%.4f)",
            self.state.current_round, crash_point, self._flight_duration_s,
            curve.growth_rate(crash_point, self._flight_duration_s),
        )
        self._schedule_every(
            ANIMATION_TICKER, self.settings.multiplier_update_interval_ms / 1000, self._tick
        )

    def _tick(self) -> None:
        if self.state.phase != Phase.FLYING:
            return
        crash_point = self.state.crash_point
        elapsed = self.scheduler.now() - self._flight_started_at
        multiplier = curve.multiplier_after(elapsed, self._flight_duration_s, crash_point)
        self.state.current_multiplier = multiplier

        if multiplier != self._last_emitted:
            self._last_emitted = multiplier
            self._publish(Event.MULTIPLIER_UPDATE, {
                "round": self.state.current_round,
                "multiplier": multiplier,
            })
            logger.debug("📊 %.2fx → %.2fx", multiplier, crash_point)

        if multiplier >= crash_point:
            self._crash()

    def _crash(self) -> None:
        """flying → crashed."""
        self._cancel(ANIMATION_TICKER)
        round_number = self.state.current_round
        crash_point = self.ledger.seal(round_number, self.state.crash_point)

        self.state.phase = Phase.CRASHED
        self.state.crash_point = crash_point
        self.state.current_multiplier = crash_point

        logger.info("💥 Round %d crashed at %.2fx", round_number, crash_point)
        self._publish(Event.ROUND_CRASH, {"round": round_number, "crashPoint": crash_point})
        self._schedule(WAIT_TIMER, self.settings.wait_phase_ms / 1000, self._finish_round)

    def _finish_round(self) -> None:
        """crashed → wait, then straight into betting if anything is queued."""
        self._timers.pop(WAIT_TIMER, None)
        self.state.current_round += 1
        self.state.phase = Phase.WAIT
        self.state.flying_started_at = None

        logger.info("⏭️ Moving to round %d", self.state.current_round)
        self._publish(Event.ROUND_WAIT, {"round": self.state.current_round})
        self._start_next_round()

    # ── Timers ────────────────────────────────────────────────────────────────

    def _cancel(self, purpose: str) -> None:
        handle = self._timers.pop(purpose, None)
        if handle is not None:
            handle.cancel()

    def _schedule(self, purpose: str, delay_s: float, callback: Callable[[], None]) -> None:
        self._cancel(purpose)
        self._timers[purpose] = self.scheduler.call_later(delay_s, callback)

    def _schedule_every(self, purpose: str, interval_s: float, callback: Callable[[], None]) -> None:
        self._cancel(purpose)
        self._timers[purpose] = self.scheduler.call_every(interval_s, callback)

    def shutdown(self) -> None:
        """Cancel every pending timer so nothing fires into a closed gateway."""
        for purpose in list(self._timers):
            self._cancel(purpose)
        logger.info("Engine timers cancelled (round %d, phase %s)",
                    self.state.current_round, self.state.phase.value)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _disclosed(self, crash_point: float) -> Optional[float]:
        return crash_point if self.disclose_early else None

    def _publish(self, event: Event, payload: Dict[str, Any]) -> None:
        # Withheld crash points are omitted rather than sent as null
        if "crashPoint" in payload and payload["crashPoint"] is None:
            del payload["crashPoint"]
        self.publisher.publish(event, payload)

    def multiplier_for_round(self, round_number: int) -> float:
        return self.ledger.get(round_number) or 1.00
