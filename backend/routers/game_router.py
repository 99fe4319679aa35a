"""
Round engine HTTP endpoints.

Routes:
  POST /queue              — Producer pushes a batch of crash points (auth)
  POST /trigger-next       — Start the next queued round now (auth, idle only)
  POST /force-start        — Same, optionally resyncing to a start round first (auth)
  GET  /health             — Engine health and round drift
  GET  /current-state      — Late-joiner snapshot (crash point withheld mid-round)
  GET  /debug              — Queue preview, recent ledger and timer state (auth)
  GET  /test-round/{round} — Ledger lookup for one round (auth)
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from engine.phase_machine import CrashEngine, TriggerRejected
from models.game import ForceStartRequest, Phase, QueueRequest, QueueResponse, TriggerResponse
from utils.auth import require_token
from utils.clock import epoch_ms, time_based_round

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rounds"])


def get_engine(request: Request) -> CrashEngine:
    return request.app.state.engine


def _displayed_multiplier(engine: CrashEngine) -> float:
    state = engine.state
    if state.phase == Phase.FLYING:
        return state.current_multiplier
    return state.public_crash_point(engine.disclose_early) or 1.00


# ── Producer / operator actions ───────────────────────────────────────────────

@router.post("/queue", response_model=QueueResponse, dependencies=[Depends(require_token)])
async def queue_multipliers(body: QueueRequest, engine: CrashEngine = Depends(get_engine)):
    """
    Append a batch to the crash queue and ledger.
    Plays immediately if the engine is idle; otherwise the batch waits its turn.
    """
    queue_size = engine.ingest(body.to_queue_entries(), body.startRound)
    return QueueResponse(queueSize=queue_size)


@router.post("/trigger-next", response_model=TriggerResponse, dependencies=[Depends(require_token)])
async def trigger_next(engine: CrashEngine = Depends(get_engine)):
    try:
        round_number = engine.trigger_next()
    except TriggerRejected as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return TriggerResponse(message="Next round triggered", round=round_number)


@router.post("/force-start", response_model=TriggerResponse, dependencies=[Depends(require_token)])
async def force_start(
    body: Optional[ForceStartRequest] = Body(default=None),
    engine: CrashEngine = Depends(get_engine),
):
    """Manual override: resync to `startRound` (if given) and start the next round."""
    start_round = body.startRound if body else None
    try:
        round_number = engine.trigger_next(start_round)
    except TriggerRejected as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    logger.warning("Force start: round %d started by operator", round_number)
    return TriggerResponse(message="Round force-started", round=round_number)


# ── Read-only snapshots ───────────────────────────────────────────────────────

@router.get("/health")
async def health(request: Request, engine: CrashEngine = Depends(get_engine)):
    state = engine.state
    wall_round = time_based_round()
    return {
        "status": "healthy",
        "gamePhase": state.phase.value,
        "currentRound": state.current_round,
        "timeBasedRound": wall_round,
        "roundDifference": state.current_round - wall_round,
        "queueSize": len(engine.queue),
        "currentMultiplier": _displayed_multiplier(engine),
        "activeViewers": request.app.state.gateway.count(),
    }


@router.get("/current-state")
async def current_state(engine: CrashEngine = Depends(get_engine)):
    """Snapshot for clients that load before opening the socket."""
    state = engine.state
    return {
        **state.to_public(engine.disclose_early),
        "gamePhase": state.phase.value,
        "roundStartTime": epoch_ms(state.flying_started_at),
        "bettingEndTime": epoch_ms(state.betting_ends_at),
    }


@router.get("/debug", dependencies=[Depends(require_token)])
async def debug(engine: CrashEngine = Depends(get_engine)):
    state = engine.state
    wall_round = time_based_round()
    return {
        "gamePhase": state.phase.value,
        "currentRound": state.current_round,
        "timeBasedRound": wall_round,
        "roundDifference": state.current_round - wall_round,
        "queueSize": len(engine.queue),
        "currentMultiplier": state.current_multiplier,
        "crashPoint": state.crash_point,
        "queuePreview": engine.queue.peek(5),
        "roundMultipliers": engine.ledger.recent(10),
        "activeTimers": engine.active_timers(),
        "serverTime": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/test-round/{round_number}", dependencies=[Depends(require_token)])
async def test_round(round_number: int, engine: CrashEngine = Depends(get_engine)):
    return {
        "round": round_number,
        "multiplier": engine.multiplier_for_round(round_number),
        "hasMultiplier": round_number in engine.ledger,
        "allRounds": engine.ledger.known_rounds(),
        "recentRounds": engine.ledger.recent(10),
    }
