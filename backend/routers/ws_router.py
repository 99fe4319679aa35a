"""
Viewer WebSocket.

URL: /ws

Connection flow:
  1. Accept and register with the broadcast gateway
  2. Replay current state: game:state, round:info, then the phase event
     (round:start / round:flying / round:crash)
  3. Message loop (_dispatch_message dispatcher)
  4. On disconnect: discard the viewer; game state is untouched

Client → server message types:
  ping   — keep-alive heartbeat → responds with "pong"
  sync   — reconnecting client asks for a fresh state replay
"""
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from engine.phase_machine import CrashEngine
from services.broadcast_gateway import BroadcastGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    gateway: BroadcastGateway = ws.app.state.gateway
    engine: CrashEngine = ws.app.state.engine

    viewer = await gateway.connect(ws)
    gateway.replay(viewer.id, engine.state)

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                gateway.send_to(viewer.id, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue
            msg_type = data.get("type", "") if isinstance(data, dict) else ""
            _dispatch_message(gateway, engine, viewer.id, msg_type)

    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(viewer.id)


def _dispatch_message(gateway: BroadcastGateway, engine: CrashEngine, viewer_id: str, msg_type: str) -> None:
    if msg_type == "ping":
        gateway.send_to(viewer_id, {"type": "pong"})

    elif msg_type == "sync":
        logger.debug("Viewer %s requested resync", viewer_id)
        gateway.replay(viewer_id, engine.state)

    else:
        message: Dict[str, Any] = {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        }
        gateway.send_to(viewer_id, message)
