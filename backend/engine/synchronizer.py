"""
Round synchronizer — reconciles the local round counter with the round the
multiplier producer says a batch starts at.

  local == 0             first batch: adopt start_round
  local <  start_round   behind: catch up to start_round
  local >  start_round   ahead: keep local if the ledger covers it, else the
                         counter has drifted into a gap and jumps back
  local == start_round   in sync

Only run while the engine is idle.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from services.round_store import RoundMultiplierLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    round: int
    reason: str  # first_sync | catch_up | gap_repair | ahead_valid | in_sync | skipped

    @property
    def changed(self) -> bool:
        return self.reason in ("first_sync", "catch_up", "gap_repair")


class RoundSynchronizer:
    def __init__(self, ledger: RoundMultiplierLedger):
        self.ledger = ledger

    def reconcile(self, current_round: int, start_round: Optional[int]) -> SyncResult:
        if not start_round:
            return SyncResult(current_round, "skipped")

        if current_round == 0:
            logger.info("🎯 First sync: current round set to %d", start_round)
            return SyncResult(start_round, "first_sync")

        if current_round < start_round:
            logger.warning("Round desync: behind producer, catching up %d → %d", current_round, start_round)
            return SyncResult(start_round, "catch_up")

        if current_round > start_round:
            if current_round not in self.ledger:
                logger.warning(
                    "Round desync: ahead of producer (%d > %d) with no multiplier for %d — jumping to %d",
                    current_round, start_round, current_round, start_round,
                )
                return SyncResult(start_round, "gap_repair")
            logger.info(
                "Ahead of producer (%d > %d) but round %d is in the ledger — keeping it",
                current_round, start_round, current_round,
            )
            return SyncResult(current_round, "ahead_valid")

        logger.info("✅ In sync at round %d", current_round)
        return SyncResult(current_round, "in_sync")
