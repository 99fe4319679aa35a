from pydantic import BaseModel, Field
from typing import Annotated, Optional, List, Dict, Any, Union
from dataclasses import dataclass
from enum import Enum


class Phase(str, Enum):
    WAIT = "wait"
    BETTING = "betting"
    FLYING = "flying"
    CRASHED = "crashed"


# ── Realtime event names ──────────────────────────────────────────────────────

class Event(str, Enum):
    GAME_STATE = "game:state"
    ROUND_INFO = "round:info"
    ROUND_START = "round:start"
    ROUND_FLYING = "round:flying"
    MULTIPLIER_UPDATE = "multiplier:update"
    ROUND_CRASH = "round:crash"
    ROUND_WAIT = "round:wait"


# ── Engine state ──────────────────────────────────────────────────────────────

class GameState(BaseModel):
    """Singleton round state. Only CrashEngine assigns to these fields."""

    current_round: int = 0
    phase: Phase = Phase.WAIT
    current_multiplier: float = 1.00
    crash_point: Optional[float] = None
    betting_ends_at: Optional[float] = None     # epoch seconds, set while betting
    flying_started_at: Optional[float] = None   # epoch seconds, set while flying

    def crash_point_visible(self, disclose_early: bool = False) -> bool:
        if self.crash_point is None:
            return False
        if disclose_early:
            return True
        return self.phase in (Phase.CRASHED, Phase.WAIT)

    def public_crash_point(self, disclose_early: bool = False) -> Optional[float]:
        """Crash point as viewers may see it — withheld until the round has crashed."""
        if self.crash_point_visible(disclose_early):
            return self.crash_point
        return None

    def to_public(self, disclose_early: bool = False) -> Dict[str, Any]:
        """game:state payload."""
        if self.phase == Phase.FLYING:
            multiplier = self.current_multiplier
        else:
            multiplier = self.public_crash_point(disclose_early) or 1.00
        return {
            "currentRound": self.current_round,
            "phase": self.phase.value,
            "currentMultiplier": multiplier,
            "crashPoint": self.public_crash_point(disclose_early),
        }


# ── Queue / ledger entries ────────────────────────────────────────────────────

@dataclass(frozen=True)
class QueuedMultiplier:
    """Uniform internal form of an ingested crash point."""
    value: float
    round_number: Optional[int] = None


# ── HTTP request/response models ──────────────────────────────────────────────

class TaggedMultiplier(BaseModel):
    multiplier: float = Field(ge=1.0, allow_inf_nan=False)
    round_number: int = Field(ge=1)


# A bare crash point; NaN and ±Infinity are valid JSON to the body parser
CrashPoint = Annotated[float, Field(ge=1.0, allow_inf_nan=False)]

# Wire form of one batch item: a bare number, or a number tagged with its round
MultiplierEntry = Union[TaggedMultiplier, CrashPoint]


class QueueRequest(BaseModel):
    multipliers: List[MultiplierEntry]
    startRound: Optional[int] = Field(default=None, ge=0)

    def to_queue_entries(self) -> List[QueuedMultiplier]:
        """
        Resolve every item to a QueuedMultiplier.
        Bare numbers are keyed by startRound + index; without startRound they
        are queued untagged and played from the queue head.
        """
        resolved: List[QueuedMultiplier] = []
        for index, entry in enumerate(self.multipliers):
            if isinstance(entry, TaggedMultiplier):
                resolved.append(QueuedMultiplier(entry.multiplier, entry.round_number))
            elif self.startRound:
                resolved.append(QueuedMultiplier(float(entry), self.startRound + index))
            else:
                resolved.append(QueuedMultiplier(float(entry)))
        return resolved


class QueueResponse(BaseModel):
    success: bool = True
    queueSize: int


class ForceStartRequest(BaseModel):
    startRound: Optional[int] = Field(default=None, ge=1)


class TriggerResponse(BaseModel):
    success: bool = True
    message: str
    round: int
