"""
Broadcast Gateway — fans engine events out to every connected viewer.

Each viewer gets an outbox queue drained by its own sender task, so the
engine can publish synchronously from a timer callback without awaiting
any socket. Messages to a single viewer keep their publish order.

Wire shape (flat): {"type": "<event>", ...payload}
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Set

from models.game import Event, GameState, Phase

logger = logging.getLogger(__name__)

OUTBOX_LIMIT = 256
DROPPED_CLOSE_CODE = 1011  # server error: viewer fell behind or its send failed


def replay_messages(state: GameState, disclose_early: bool = False) -> List[Dict[str, Any]]:
    """
    Messages that bring a fresh (or reconnecting) viewer up to date:
    game:state, round:info, then the event that opened the current phase.
    """
    crash_point = state.public_crash_point(disclose_early)
    messages: List[Dict[str, Any]] = [
        {"type": Event.GAME_STATE.value, **state.to_public(disclose_early)},
        _without_hidden({
            "type": Event.ROUND_INFO.value,
            "round": state.current_round,
            "phase": state.phase.value,
            "multiplier": state.current_multiplier,
            "crashPoint": crash_point,
        }),
    ]
    if state.phase == Phase.BETTING:
        messages.append(_without_hidden({
            "type": Event.ROUND_START.value,
            "round": state.current_round,
            "crashPoint": crash_point,
        }))
    elif state.phase == Phase.FLYING:
        messages.append(_without_hidden({
            "type": Event.ROUND_FLYING.value,
            "round": state.current_round,
            "multiplier": state.current_multiplier,
            "crashPoint": crash_point,
        }))
    elif state.phase == Phase.CRASHED:
        messages.append({
            "type": Event.ROUND_CRASH.value,
            "round": state.current_round,
            "crashPoint": state.crash_point,
        })
    return messages


def _without_hidden(message: Dict[str, Any]) -> Dict[str, Any]:
    if message.get("crashPoint") is None:
        message.pop("crashPoint", None)
    return message


class ViewerConnection:
    """One connected viewer. Discarded on disconnect; never touches game state."""

    def __init__(self, viewer_id: str, ws):
        self.id = viewer_id
        self.ws = ws
        self.last_round = 0
        self.synced = False
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=OUTBOX_LIMIT)
        self.task: Optional[asyncio.Task] = None


class BroadcastGateway:
    def __init__(self, disclose_early: bool = False):
        self.disclose_early = disclose_early
        self._viewers: Dict[str, ViewerConnection] = {}
        self._closing: Set[asyncio.Task] = set()

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, ws) -> ViewerConnection:
        await ws.accept()
        viewer = ViewerConnection(str(uuid.uuid4())[:8], ws)
        viewer.task = asyncio.create_task(self._sender(viewer), name=f"viewer-{viewer.id}")
        self._viewers[viewer.id] = viewer
        logger.info("🔌 Viewer %s connected (%d total)", viewer.id, self.count())
        return viewer

    def disconnect(self, viewer_id: str) -> None:
        viewer = self._viewers.pop(viewer_id, None)
        if viewer is None:
            return
        if viewer.task and viewer.task is not asyncio.current_task() and not viewer.task.done():
            viewer.task.cancel()
        logger.info("🔌 Viewer %s disconnected (%d total)", viewer_id, self.count())

    async def close(self) -> None:
        """Stop every sender task. Called on shutdown after engine timers are cancelled."""
        viewers = list(self._viewers.values())
        self._viewers.clear()
        tasks = [v.task for v in viewers if v.task and not v.task.done()]
        tasks.extend(self._closing)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def count(self) -> int:
        return len(self._viewers)

    def get(self, viewer_id: str) -> Optional[ViewerConnection]:
        return self._viewers.get(viewer_id)

    # ── Sending ────────────────────────────────────────────────────────────────

    def send_to(self, viewer_id: str, message: Dict[str, Any]) -> None:
        viewer = self._viewers.get(viewer_id)
        if viewer:
            self._enqueue(viewer, message)

    def publish(self, event: Event, payload: Dict[str, Any]) -> None:
        """Broadcast an engine event to all connected viewers."""
        message = {"type": event.value, **payload}
        for viewer in list(self._viewers.values()):
            if "round" in payload:
                viewer.last_round = payload["round"]
            self._enqueue(viewer, message)

    def replay(self, viewer_id: str, state: GameState) -> None:
        """Send the current game state to one viewer and mark it synced."""
        viewer = self._viewers.get(viewer_id)
        if viewer is None:
            return
        for message in replay_messages(state, self.disclose_early):
            self._enqueue(viewer, message)
        viewer.last_round = state.current_round
        viewer.synced = True

    def _enqueue(self, viewer: ViewerConnection, message: Dict[str, Any]) -> None:
        try:
            viewer.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Viewer %s is %d messages behind — dropping it", viewer.id, OUTBOX_LIMIT)
            self._drop(viewer)

    def _drop(self, viewer: ViewerConnection) -> None:
        """Discard a viewer the gateway can no longer serve and close its socket."""
        if self._viewers.get(viewer.id) is not viewer:
            return
        self.disconnect(viewer.id)
        task = asyncio.get_running_loop().create_task(self._close_socket(viewer))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_socket(self, viewer: ViewerConnection) -> None:
        try:
            await viewer.ws.close(code=DROPPED_CLOSE_CODE)
        except Exception as exc:
            logger.debug("Closing socket of viewer %s failed: %s", viewer.id, exc)

    async def _sender(self, viewer: ViewerConnection) -> None:
        while True:
            message = await viewer.outbox.get()
            try:
                await viewer.ws.send_json(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Send to viewer %s failed: %s", viewer.id, exc)
                self._drop(viewer)
                return
