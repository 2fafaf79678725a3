import asyncio

import pytest
from channels.db import database_sync_to_async

from meet.calls.peer import PeerSession
from meet.calls.state import CallState
from meet.common.exceptions import MediaAcquisitionFailed
from meet.matches import services
from meet.matches.models import Room
from meet.signaling import relay
from meet.signaling.messages import Answer, IceCandidate, Offer
from tests.conftest import create_user


class FakePeerConnection:
    """Records every call the session makes, in order."""

    def __init__(self, name="pc", reject_remote=False, answer_error=None, candidate_error=None):
        self.name = name
        self.reject_remote = reject_remote
        self.answer_error = answer_error
        self.candidate_error = candidate_error
        self.calls = []
        self.closed = False

    async def create_offer(self):
        self.calls.append(("create_offer",))
        return f"offer-from-{self.name}"

    async def create_answer(self):
        self.calls.append(("create_answer",))
        if self.answer_error is not None:
            raise self.answer_error
        return f"answer-from-{self.name}"

    async def set_remote_description(self, kind, sdp):
        if self.reject_remote:
            raise ValueError("malformed sdp")
        self.calls.append(("remote", kind, sdp))

    async def add_ice_candidate(self, candidate):
        if self.candidate_error is not None and candidate.candidate == "bad":
            raise self.candidate_error
        self.calls.append(("candidate", candidate.candidate))

    async def close(self):
        self.closed = True


class FakeMedia:
    def __init__(self, error=None):
        self.error = error
        self.released = False

    async def acquire(self):
        if self.error is not None:
            raise self.error
        return ["audio", "video"]

    async def release(self):
        self.released = True


class RecordingHandle:
    def __init__(self):
        self.sent = []
        self.closed = False

    async def send(self, message):
        self.sent.append(message)
        return True


def _make_room():
    a, b = create_user(), create_user()
    services.find_match(b)
    room = services.find_match(a).room
    return room, a, b  # a 가 initiator


@pytest.fixture
def room_pair(transactional_db):
    return _make_room()


async def _wait_for(predicate, timeout=1.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


async def _room_active(room_id):
    return await database_sync_to_async(services.is_room_active)(room_id)


@pytest.mark.asyncio
async def test_early_candidates_are_applied_in_order_before_answer():
    pc = FakePeerConnection("b")
    session = PeerSession("room-1", 2, initiator=False, peer_connection=pc)
    session.handle = RecordingHandle()

    await session.handle_message(IceCandidate(candidate="c1"))
    await session.handle_message(IceCandidate(candidate="c2"))
    assert pc.calls == []
    assert [c.candidate for c in session.pending_candidates] == ["c1", "c2"]

    await session.handle_message(Offer(sdp="remote-offer"))

    assert pc.calls == [
        ("remote", "offer", "remote-offer"),
        ("candidate", "c1"),
        ("candidate", "c2"),
        ("create_answer",),
    ]
    assert session.handle.sent == [Answer(sdp="answer-from-b")]
    assert not session.pending_candidates


@pytest.mark.asyncio
async def test_candidates_after_remote_description_are_applied_immediately():
    pc = FakePeerConnection("a")
    session = PeerSession("room-1", 1, initiator=True, peer_connection=pc)
    session.handle = RecordingHandle()

    await session.handle_message(Answer(sdp="remote-answer"))
    await session.handle_message(IceCandidate(candidate="c1"))

    assert pc.calls == [("remote", "answer", "remote-answer"), ("candidate", "c1")]


@pytest.mark.asyncio
async def test_wrong_role_messages_are_ignored():
    pc = FakePeerConnection()
    initiator = PeerSession("room-1", 1, initiator=True, peer_connection=pc)
    initiator.handle = RecordingHandle()

    await initiator.handle_message(Offer(sdp="glare"))

    assert pc.calls == []
    assert initiator.handle.sent == []


@pytest.mark.asyncio
async def test_local_candidates_wait_for_subscription():
    session = PeerSession("room-1", 1, initiator=True, peer_connection=FakePeerConnection())
    await session.on_local_candidate(IceCandidate(candidate="early"))

    session.handle = RecordingHandle()
    await session._flush_outbox()
    await session.on_local_candidate(IceCandidate(candidate="late"))

    assert [m.candidate for m in session.handle.sent] == ["early", "late"]


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_two_peers_negotiate_connect_and_hang_up(room_pair):
    room, a, b = room_pair
    pc_a, pc_b = FakePeerConnection("a"), FakePeerConnection("b")
    media_a, media_b = FakeMedia(), FakeMedia()
    alice = PeerSession(
        room.room_id, a.id, initiator=True, peer_connection=pc_a, media=media_a
    )
    bob = PeerSession(
        room.room_id, b.id, initiator=False, peer_connection=pc_b, media=media_b
    )

    bob_task = asyncio.ensure_future(bob.run())
    await asyncio.wait_for(bob.wait_subscribed(), 1)
    alice_task = asyncio.ensure_future(alice.run())

    await _wait_for(lambda: ("remote", "answer", "answer-from-b") in pc_a.calls)
    assert ("remote", "offer", "offer-from-a") in pc_b.calls

    await alice.on_local_candidate(IceCandidate(candidate="a-host"))
    await _wait_for(lambda: ("candidate", "a-host") in pc_b.calls)

    alice.on_connection_state_change("connected")
    bob.on_remote_track()
    assert alice.state is CallState.CONNECTED
    assert bob.state is CallState.CONNECTED

    await alice.hang_up()
    assert await asyncio.wait_for(alice_task, 1) is CallState.ENDED
    assert await asyncio.wait_for(bob_task, 1) is CallState.ENDED

    assert not await _room_active(room.room_id)
    assert alice.machine.ever_connected and bob.machine.ever_connected
    assert alice.machine.failure_code is None
    assert pc_a.closed and pc_b.closed
    assert media_a.released and media_b.released


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_reconnect_then_drop(room_pair):
    room, a, b = room_pair
    bob = PeerSession(room.room_id, b.id, initiator=False, peer_connection=FakePeerConnection())
    task = asyncio.ensure_future(bob.run())
    await asyncio.wait_for(bob.wait_subscribed(), 1)

    bob.on_connection_state_change("connected")
    bob.on_connection_state_change("disconnected")
    bob.on_connection_state_change("connected")
    assert bob.state is CallState.CONNECTED

    await database_sync_to_async(services.end_room)(room.room_id, a.id)
    assert await asyncio.wait_for(task, 1) is CallState.ENDED
    assert [s for s, _ in bob.machine.history] == [
        CallState.CONNECTING,
        CallState.CONNECTED,
        CallState.DISCONNECTED,
        CallState.CONNECTED,
        CallState.ENDED,
    ]


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_missing_answer_times_out_and_ends_room(room_pair):
    room, a, _ = room_pair
    pc = FakePeerConnection("a")
    alice = PeerSession(
        room.room_id,
        a.id,
        initiator=True,
        peer_connection=pc,
        settle_delay=0,
        negotiation_timeout=0.1,
    )

    state = await asyncio.wait_for(alice.run(), 2)

    assert state is CallState.ENDED
    assert alice.machine.failure_code == "NEGOTIATION_FAILED"
    assert CallState.DISCONNECTED in [s for s, _ in alice.machine.history]
    assert not alice.machine.ever_connected
    assert pc.closed
    assert not await _room_active(room.room_id)


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_media_failure_ends_call_before_signaling(room_pair):
    room, a, _ = room_pair
    pc = FakePeerConnection("a")
    alice = PeerSession(
        room.room_id,
        a.id,
        initiator=True,
        peer_connection=pc,
        media=FakeMedia(error=RuntimeError("camera busy")),
    )

    state = await alice.run()

    assert state is CallState.ENDED
    assert alice.machine.failure_code == MediaAcquisitionFailed.code
    assert alice.handle is None
    assert pc.calls == []
    assert pc.closed
    room = await database_sync_to_async(Room.objects.get)(pk=room.pk)
    assert not room.active
    assert room.ended_by_id == a.id


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_rejected_offer_fails_negotiation(room_pair):
    room, a, b = room_pair
    bob = PeerSession(
        room.room_id,
        b.id,
        initiator=False,
        peer_connection=FakePeerConnection("b", reject_remote=True),
    )
    task = asyncio.ensure_future(bob.run())
    await asyncio.wait_for(bob.wait_subscribed(), 1)

    handle_a = await relay.subscribe(room.room_id, a.id)
    await handle_a.send(Offer(sdp="garbage"))

    assert await asyncio.wait_for(task, 1) is CallState.ENDED
    assert bob.machine.failure_code == "NEGOTIATION_FAILED"
    # 상대 쪽도 room.ended 로 정리됨
    assert await handle_a.receive(timeout=1) is None
    assert handle_a.room_ended


@pytest.mark.asyncio
async def test_late_local_candidates_are_dropped_after_unsubscribe():
    session = PeerSession("room-1", 1, initiator=True, peer_connection=FakePeerConnection())
    session.handle = RecordingHandle()

    await session.on_local_candidate(IceCandidate(candidate="live"))
    session.handle.closed = True
    await session.on_local_candidate(IceCandidate(candidate="late"))

    assert [m.candidate for m in session.handle.sent] == ["live"]


@pytest.mark.asyncio
async def test_rejected_candidate_is_skipped():
    pc = FakePeerConnection("a", candidate_error=ValueError("bad candidate line"))
    session = PeerSession("room-1", 1, initiator=True, peer_connection=pc)
    session.handle = RecordingHandle()

    await session.handle_message(Answer(sdp="remote-answer"))
    await session.handle_message(IceCandidate(candidate="bad"))
    await session.handle_message(IceCandidate(candidate="good"))

    assert pc.calls == [("remote", "answer", "remote-answer"), ("candidate", "good")]
    assert session.state is CallState.CONNECTING


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_answer_creation_failure_ends_room(room_pair):
    room, a, b = room_pair
    pc = FakePeerConnection("b", answer_error=RuntimeError("encoder refused answer"))
    bob = PeerSession(room.room_id, b.id, initiator=False, peer_connection=pc)
    task = asyncio.ensure_future(bob.run())
    await asyncio.wait_for(bob.wait_subscribed(), 1)

    handle_a = await relay.subscribe(room.room_id, a.id)
    await handle_a.send(Offer(sdp="v=0"))

    assert await asyncio.wait_for(task, 1) is CallState.ENDED
    assert bob.machine.failure_code == "NEGOTIATION_FAILED"
    assert pc.closed
    assert not await _room_active(room.room_id)
    # answer 는 안 나가고 room.ended 만 옴
    assert await handle_a.receive(timeout=1) is None
    assert handle_a.room_ended


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_unexpected_host_error_ends_room_and_propagates(room_pair):
    room, a, b = room_pair
    bob = PeerSession(room.room_id, b.id, initiator=False, peer_connection=FakePeerConnection("b"))

    async def broken(message):
        raise KeyError("host bug")

    bob.handle_message = broken
    task = asyncio.ensure_future(bob.run())
    await asyncio.wait_for(bob.wait_subscribed(), 1)

    handle_a = await relay.subscribe(room.room_id, a.id)
    await handle_a.send(Offer(sdp="v=0"))

    with pytest.raises(KeyError):
        await asyncio.wait_for(task, 1)
    assert bob.state is CallState.ENDED
    assert bob.machine.failure_code == "NEGOTIATION_FAILED"
    assert not await _room_active(room.room_id)
