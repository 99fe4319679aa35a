"""
In-memory round storage.

CrashQueue             — FIFO backlog of crash points not yet played
RoundMultiplierLedger  — round number → crash point, for scheduling and lookups

Both live for the lifetime of the process only. The ledger keeps every
unplayed round and trims the oldest played rounds beyond `retention`.
"""
import logging
from collections import OrderedDict, deque
from typing import Deque, Iterable, List, Optional, Set, Tuple

from models.game import QueuedMultiplier

logger = logging.getLogger(__name__)


class CrashQueue:
    """Ordered backlog of crash points. Each entry leaves exactly once, at round start."""

    def __init__(self):
        self._entries: Deque[QueuedMultiplier] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def extend(self, entries: Iterable[QueuedMultiplier]) -> None:
        self._entries.extend(entries)

    def pop_head(self) -> Optional[QueuedMultiplier]:
        if not self._entries:
            return None
        return self._entries.popleft()

    def peek(self, limit: int = 5) -> List[float]:
        return [e.value for e in list(self._entries)[:limit]]


class RoundMultiplierLedger:
    """
    Round → crash point mapping.
    A round is sealed once it starts playing; sealed values never change.
    """

    def __init__(self, retention: int = 1000):
        self.retention = max(1, retention)
        self._entries: "OrderedDict[int, float]" = OrderedDict()
        self._sealed: Set[int] = set()

    def __contains__(self, round_number: int) -> bool:
        return round_number in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, round_number: int) -> Optional[float]:
        return self._entries.get(round_number)

    # ── Writes ────────────────────────────────────────────────────────────────

    def assign(self, round_number: int, value: float) -> bool:
        """
        Map a round to its crash point. Rounds that already started keep
        their value; returns False when the write was refused.
        """
        if round_number in self._sealed:
            existing = self._entries.get(round_number)
            if existing != value:
                logger.warning(
                    "Ledger: round %d already played at %.2fx, ignoring %.2fx",
                    round_number, existing, value,
                )
            return False
        self._entries[round_number] = value
        self._entries.move_to_end(round_number)
        return True

    def seal(self, round_number: int, value: float) -> float:
        """Record the crash point a round is playing and freeze it. Returns the stored value."""
        if round_number not in self._sealed:
            self._entries[round_number] = value
            self._sealed.add(round_number)
            self._trim(keep=round_number)
        return self._entries[round_number]

    def _trim(self, keep: int) -> None:
        # Only finished rounds are eligible; unplayed ones wait for their turn
        excess = len(self._entries) - self.retention
        if excess <= 0:
            return
        for round_number in sorted(self._sealed - {keep}):
            if excess <= 0:
                break
            self._entries.pop(round_number, None)
            self._sealed.discard(round_number)
            excess -= 1

    # ── Reads (observability) ─────────────────────────────────────────────────

    def recent(self, limit: int = 10) -> List[Tuple[int, float]]:
        """Most recently written entries, oldest first."""
        items = list(self._entries.items())
        return items[-limit:]

    def known_rounds(self) -> List[int]:
        return sorted(self._entries)
