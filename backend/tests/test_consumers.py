import pytest
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator

from meet.calls.models import CallLog
from meet.config.asgi import application
from meet.matches import queue, services
from tests.conftest import create_user, token_for


async def _user(**extra):
    return await database_sync_to_async(create_user)(**extra)


def _match_socket(user=None):
    path = "/ws/match/"
    if user is not None:
        path += f"?token={token_for(user)}"
    return WebsocketCommunicator(application, path)


def _signaling_socket(room_id, user=None):
    path = f"/ws/signaling/{room_id}/"
    if user is not None:
        path += f"?token={token_for(user)}"
    return WebsocketCommunicator(application, path)


async def _receive_until(comm, frame_type, timeout=1):
    seen = []
    while True:
        frame = await comm.receive_json_from(timeout=timeout)
        seen.append(frame)
        if frame.get("type") == frame_type:
            return frame, seen


async def _make_room():
    a, b = await _user(), await _user()
    await database_sync_to_async(services.find_match)(b)
    room = (await database_sync_to_async(services.find_match)(a)).room
    return room, a, b


# ---- ws/match/ ----


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_match_socket_requires_token():
    comm = _match_socket()
    connected, code = await comm.connect()
    assert not connected
    assert code == 4401


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_match_socket_rejects_unverified_user():
    comm = _match_socket(await _user(verified=False))
    connected, _ = await comm.connect()
    assert connected

    frame = await comm.receive_json_from()
    assert frame["type"] == "error"
    assert frame["error"]["code"] == "USER_NOT_VERIFIED"
    assert (await comm.receive_output())["code"] == 4403
    await comm.disconnect()


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_match_socket_pending_then_matched_once():
    a, b = await _user(), await _user()
    comm_a = _match_socket(a)
    await comm_a.connect()
    assert await comm_a.receive_json_from() == {"type": "pending"}

    comm_b = _match_socket(b)
    await comm_b.connect()
    frame_b = await comm_b.receive_json_from()
    assert frame_b["type"] == "matched"
    assert frame_b["room"]["initiator"] is True
    assert frame_b["room"]["peerId"] == a.id

    frame_a = await comm_a.receive_json_from()
    assert frame_a["type"] == "matched"
    assert frame_a["room"]["roomId"] == frame_b["room"]["roomId"]
    assert frame_a["room"]["initiator"] is False
    # notify 와 retry 루프가 겹쳐도 matched 는 한 번
    assert await comm_a.receive_nothing(timeout=0.3)
    assert await comm_b.receive_nothing(timeout=0.1)

    await comm_a.disconnect()
    await comm_b.disconnect()
    room = await database_sync_to_async(services.get_active_room)(a.id)
    assert room is not None and str(room.room_id) == frame_a["room"]["roomId"]


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_match_socket_cancel_withdraws():
    a = await _user()
    comm = _match_socket(a)
    await comm.connect()
    assert await comm.receive_json_from() == {"type": "pending"}

    await comm.send_json_to({"type": "cancel"})
    assert await comm.receive_json_from() == {"type": "cancelled"}
    assert (await comm.receive_output())["code"] == 1000
    await comm.disconnect()

    assert not await database_sync_to_async(queue.is_waiting)(a.id)


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_match_socket_closes_after_withdraw_elsewhere():
    a = await _user()
    comm = _match_socket(a)
    await comm.connect()
    assert await comm.receive_json_from() == {"type": "pending"}

    # 같은 유저가 HTTP 로 withdraw
    assert await database_sync_to_async(services.withdraw)(a.id)
    assert await comm.receive_json_from(timeout=2) == {"type": "cancelled"}
    assert (await comm.receive_output())["code"] == 1000
    await comm.disconnect()

    assert not await database_sync_to_async(queue.is_waiting)(a.id)


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_match_socket_disconnect_withdraws():
    a = await _user()
    comm = _match_socket(a)
    await comm.connect()
    await comm.receive_json_from()
    await comm.disconnect()

    assert not await database_sync_to_async(queue.is_waiting)(a.id)


# ---- ws/signaling/<roomId>/ ----


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_signaling_socket_close_codes():
    room, a, _ = await _make_room()
    stranger = await _user()

    cases = [
        (_signaling_socket(room.room_id), 4401),
        (_signaling_socket(room.room_id, stranger), 4403),
        (_signaling_socket("00000000-0000-0000-0000-000000000000", a), 4404),
        (_signaling_socket("not-a-room", a), 4404),
    ]
    for comm, expected in cases:
        connected, code = await comm.connect()
        assert not connected
        assert code == expected

    await database_sync_to_async(services.end_room)(room.room_id, a.id)
    connected, code = await _signaling_socket(room.room_id, a).connect()
    assert not connected
    assert code == 4410


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_signaling_relays_to_peer_only():
    room, a, b = await _make_room()
    room_id = str(room.room_id)
    comm_a = _signaling_socket(room_id, a)
    comm_b = _signaling_socket(room_id, b)

    assert (await comm_a.connect())[0]
    joined = await comm_a.receive_json_from()
    assert joined == {
        "type": "joined",
        "roomId": room_id,
        "senderId": a.id,
        "payload": {"state": "connecting"},
    }

    assert (await comm_b.connect())[0]
    assert (await comm_b.receive_json_from())["type"] == "joined"
    peer_joined = await comm_a.receive_json_from()
    assert peer_joined == {"type": "peer-joined", "roomId": room_id, "senderId": b.id}

    await comm_a.send_json_to(
        {"type": "offer", "roomId": room_id, "payload": {"offer": {"type": "offer", "sdp": "v=0 a"}}}
    )
    relayed = await comm_b.receive_json_from()
    assert relayed == {
        "type": "offer",
        "roomId": room_id,
        "senderId": a.id,
        "payload": {"sdp": "v=0 a"},
    }
    assert await comm_a.receive_nothing(timeout=0.2)

    await comm_b.send_json_to(
        {
            "type": "ice-candidate",
            "payload": {"candidate": "candidate:1 1 udp", "sdpMid": "0", "sdpMLineIndex": 0},
        }
    )
    candidate = await comm_a.receive_json_from()
    assert candidate["senderId"] == b.id
    assert candidate["payload"]["candidate"] == "candidate:1 1 udp"

    await comm_a.disconnect()
    peer_left = await comm_b.receive_json_from()
    assert peer_left == {"type": "peer-left", "roomId": room_id, "senderId": a.id}
    await comm_b.disconnect()

    # 소켓만 끊긴 것이라 방은 그대로
    assert await database_sync_to_async(services.is_room_active)(room_id)


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_signaling_rejects_malformed_frames():
    room, a, _ = await _make_room()
    comm = _signaling_socket(room.room_id, a)
    await comm.connect()
    await comm.receive_json_from()

    await comm.send_json_to({"type": "offer", "payload": {}})
    error = await comm.receive_json_from()
    assert error["type"] == "error"
    assert error["error"]["code"] == "VALIDATION_ERROR"

    await comm.send_json_to({"type": "bogus"})
    assert (await comm.receive_json_from())["error"]["code"] == "VALIDATION_ERROR"

    broken = [
        {"type": "ice-candidate", "payload": {"candidate": "c", "sdpMLineIndex": [1]}},
        {"type": "ice-candidate", "payload": {"candidate": 42}},
        {"type": "answer", "payload": "v=0"},
        [1, 2],
    ]
    for frame in broken:
        await comm.send_json_to(frame)
        assert (await comm.receive_json_from())["error"]["code"] == "VALIDATION_ERROR"

    await comm.send_to(text_data="{not json")
    assert (await comm.receive_json_from())["error"]["code"] == "VALIDATION_ERROR"
    await comm.send_to(bytes_data=b"\x00\x01")
    assert (await comm.receive_json_from())["error"]["code"] == "VALIDATION_ERROR"

    # 소켓은 계속 살아있음
    await comm.send_json_to({"type": "state", "payload": {"connectionState": "connected"}})
    assert (await comm.receive_json_from())["type"] == "call-state"
    await comm.disconnect()


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_signaling_state_frames_drive_call_state():
    room, a, _ = await _make_room()
    comm = _signaling_socket(room.room_id, a)
    await comm.connect()
    await comm.receive_json_from()

    await comm.send_json_to({"type": "state", "payload": {"connectionState": "connected"}})
    frame = await comm.receive_json_from()
    assert frame["type"] == "call-state"
    assert frame["payload"]["from"] == "connecting"
    assert frame["payload"]["to"] == "connected"

    await comm.send_json_to({"type": "state", "payload": {"connectionState": "failed"}})
    frame = await comm.receive_json_from()
    assert frame["payload"]["to"] == "disconnected"

    # 이미 disconnected: 변화 없음
    await comm.send_json_to({"type": "state", "payload": {"connectionState": "disconnected"}})
    assert await comm.receive_nothing(timeout=0.1)
    await comm.disconnect()


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_leave_ends_room_for_both_peers_and_logs_calls():
    room, a, b = await _make_room()
    room_id = str(room.room_id)
    comm_a = _signaling_socket(room_id, a)
    comm_b = _signaling_socket(room_id, b)
    await comm_a.connect()
    await comm_a.receive_json_from()
    await comm_b.connect()
    await comm_b.receive_json_from()
    await comm_a.receive_json_from()  # peer-joined

    await comm_a.send_json_to({"type": "state", "payload": {"connectionState": "connected"}})
    await comm_a.receive_json_from()

    await comm_a.send_json_to({"type": "leave"})
    ended_a, seen_a = await _receive_until(comm_a, "room-ended")
    assert seen_a[0]["type"] == "call-state"
    assert seen_a[0]["payload"]["to"] == "ended"
    assert ended_a["payload"]["endedBy"] == a.id
    assert (await comm_a.receive_output())["code"] == 1000

    ended_b, seen_b = await _receive_until(comm_b, "room-ended")
    states_b = [f["payload"]["to"] for f in seen_b if f["type"] == "call-state"]
    assert states_b == ["ended"]
    assert (await comm_b.receive_output())["code"] == 1000

    await comm_a.disconnect()
    await comm_b.disconnect()

    assert not await database_sync_to_async(services.is_room_active)(room_id)
    logs = await database_sync_to_async(
        lambda: {log.user_id: log for log in CallLog.objects.filter(room=room)}
    )()
    assert set(logs) == {a.id, b.id}
    assert logs[a.id].ever_connected
    assert not logs[b.id].ever_connected


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_negotiation_failed_frame_ends_room_with_code():
    room, a, _ = await _make_room()
    comm = _signaling_socket(room.room_id, a)
    await comm.connect()
    await comm.receive_json_from()

    await comm.send_json_to({"type": "negotiation-failed", "payload": {"reason": "no answer"}})
    _, seen = await _receive_until(comm, "room-ended")
    states = [f["payload"] for f in seen if f["type"] == "call-state"]
    assert [s["to"] for s in states] == ["disconnected", "ended"]
    assert states[-1]["failureCode"] == "NEGOTIATION_FAILED"
    await comm.disconnect()

    log = await database_sync_to_async(CallLog.objects.get)(room=room, user=a)
    assert log.failure_code == "NEGOTIATION_FAILED"
