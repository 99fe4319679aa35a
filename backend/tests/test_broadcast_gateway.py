import asyncio

from models.game import Event, GameState, Phase
from services.broadcast_gateway import OUTBOX_LIMIT, BroadcastGateway, replay_messages


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.accepted = False
        self.fail = fail
        self.sent = []
        self.closed_with = None

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def close(self, code: int = 1000):
        self.closed_with = code


async def _drain():
    for _ in range(10):
        await asyncio.sleep(0)


def _types(messages):
    return [m["type"] for m in messages]


# ── Replay payloads ───────────────────────────────────────────────────────────

def test_replay_during_betting_hides_crash_point():
    state = GameState(current_round=12, phase=Phase.BETTING, crash_point=3.4)
    messages = replay_messages(state)

    assert _types(messages) == ["game:state", "round:info", "round:start"]
    assert messages[0] == {
        "type": "game:state", "currentRound": 12, "phase": "betting",
        "currentMultiplier": 1.00, "crashPoint": None,
    }
    assert messages[2] == {"type": "round:start", "round": 12}


def test_replay_during_flying_sends_live_multiplier():
    state = GameState(current_round=5, phase=Phase.FLYING, crash_point=8.0, current_multiplier=2.31)
    messages = replay_messages(state)

    assert _types(messages) == ["game:state", "round:info", "round:flying"]
    assert messages[0]["currentMultiplier"] == 2.31
    assert messages[2] == {"type": "round:flying", "round": 5, "multiplier": 2.31}


def test_replay_during_crash_repeats_the_broadcast_crash_point():
    state = GameState(current_round=9, phase=Phase.CRASHED, crash_point=4.25, current_multiplier=4.25)
    messages = replay_messages(state)

    assert _types(messages) == ["game:state", "round:info", "round:crash"]
    assert messages[2] == {"type": "round:crash", "round": 9, "crashPoint": 4.25}
    assert messages[0]["crashPoint"] == 4.25


def test_replay_while_waiting_has_no_phase_event():
    messages = replay_messages(GameState())
    assert _types(messages) == ["game:state", "round:info"]
    assert messages[0]["currentRound"] == 0
    assert messages[0]["crashPoint"] is None


def test_replay_can_disclose_early():
    state = GameState(current_round=1, phase=Phase.BETTING, crash_point=2.0)
    messages = replay_messages(state, disclose_early=True)
    assert messages[2] == {"type": "round:start", "round": 1, "crashPoint": 2.0}


# ── Gateway fan-out ───────────────────────────────────────────────────────────

def test_publish_reaches_every_viewer_in_order():
    async def scenario():
        gateway = BroadcastGateway()
        sockets = [FakeSocket(), FakeSocket()]
        viewers = [await gateway.connect(ws) for ws in sockets]

        gateway.publish(Event.ROUND_START, {"round": 3})
        gateway.publish(Event.MULTIPLIER_UPDATE, {"round": 3, "multiplier": 1.01})
        gateway.publish(Event.MULTIPLIER_UPDATE, {"round": 3, "multiplier": 1.02})
        await _drain()
        await gateway.close()
        return sockets, viewers

    sockets, viewers = asyncio.run(scenario())
    for ws in sockets:
        assert ws.accepted
        assert ws.sent == [
            {"type": "round:start", "round": 3},
            {"type": "multiplier:update", "round": 3, "multiplier": 1.01},
            {"type": "multiplier:update", "round": 3, "multiplier": 1.02},
        ]
    assert all(v.last_round == 3 for v in viewers)


def test_late_joiner_gets_replay_then_live_events():
    async def scenario():
        gateway = BroadcastGateway()
        state = GameState(current_round=7, phase=Phase.FLYING, crash_point=5.0, current_multiplier=1.5)
        ws = FakeSocket()
        viewer = await gateway.connect(ws)
        gateway.replay(viewer.id, state)
        gateway.publish(Event.MULTIPLIER_UPDATE, {"round": 7, "multiplier": 1.51})
        await _drain()
        synced = viewer.synced
        await gateway.close()
        return ws, synced

    ws, synced = asyncio.run(scenario())
    assert synced
    assert _types(ws.sent) == ["game:state", "round:info", "round:flying", "multiplier:update"]


def test_failing_viewer_is_dropped_without_affecting_others():
    async def scenario():
        gateway = BroadcastGateway()
        good, bad = FakeSocket(), FakeSocket(fail=True)
        await gateway.connect(good)
        await gateway.connect(bad)
        gateway.publish(Event.ROUND_CRASH, {"round": 1, "crashPoint": 1.5})
        await _drain()
        count = gateway.count()
        gateway.publish(Event.ROUND_WAIT, {"round": 2})
        await _drain()
        await gateway.close()
        return good, bad, count

    good, bad, count = asyncio.run(scenario())
    assert count == 1
    assert _types(good.sent) == ["round:crash", "round:wait"]
    assert bad.closed_with == 1011
    assert good.closed_with is None


def test_disconnect_discards_viewer_only():
    async def scenario():
        gateway = BroadcastGateway()
        ws = FakeSocket()
        viewer = await gateway.connect(ws)
        gateway.disconnect(viewer.id)
        gateway.disconnect(viewer.id)
        gateway.publish(Event.ROUND_START, {"round": 1})
        await _drain()
        return gateway.count(), ws.sent, gateway.get(viewer.id)

    count, sent, viewer = asyncio.run(scenario())
    assert count == 0
    assert sent == []
    assert viewer is None


def test_viewer_that_falls_behind_is_dropped_and_closed():
    async def scenario():
        gateway = BroadcastGateway()
        ws = FakeSocket()
        viewer = await gateway.connect(ws)
        for n in range(OUTBOX_LIMIT + 1):
            gateway.publish(Event.MULTIPLIER_UPDATE, {"round": 1, "multiplier": 1.0 + n / 100})
        await _drain()
        count = gateway.count()
        await gateway.close()
        return ws, viewer, count

    ws, viewer, count = asyncio.run(scenario())
    assert count == 0
    assert ws.closed_with == 1011
    assert viewer.task.cancelled()
