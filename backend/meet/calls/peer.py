# meet/calls/peer.py
"""
One peer's side of a call: drives the offer/answer/ICE exchange over the
signaling relay and feeds a CallStateMachine.

The media engine itself (the actual peer connection and camera/microphone)
is supplied by the host through the ``PeerConnection`` and ``MediaSource``
protocols below.
"""
import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Protocol

from channels.db import database_sync_to_async
from django.conf import settings

from meet.calls.state import CallState, CallStateMachine
from meet.common.exceptions import (
    MediaAcquisitionFailed,
    MeetError,
    NegotiationFailed,
    SignalingDeliveryFailed,
)
from meet.matches import services
from meet.signaling import relay
from meet.signaling.messages import Answer, IceCandidate, Offer, SignalingMessage

logger = logging.getLogger(__name__)


class PeerConnection(Protocol):
    async def create_offer(self) -> str:
        """Create an offer, set it as the local description, return its SDP."""

    async def create_answer(self) -> str:
        """Create an answer, set it as the local description, return its SDP."""

    async def set_remote_description(self, kind: str, sdp: str) -> None:
        ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        ...

    async def close(self) -> None:
        ...


class MediaSource(Protocol):
    async def acquire(self):
        """Return local tracks or raise MediaAcquisitionFailed."""

    async def release(self) -> None:
        ...


class PeerSession:
    def __init__(
        self,
        room_id,
        user_id,
        *,
        initiator: bool,
        peer_connection: PeerConnection,
        media: Optional[MediaSource] = None,
        channel_layer=None,
        settle_delay: Optional[float] = None,
        negotiation_timeout: Optional[float] = None,
    ):
        self.room_id = str(room_id)
        self.user_id = user_id
        self.initiator = initiator
        self.pc = peer_connection
        self.media = media
        self.channel_layer = channel_layer
        self.settle_delay = (
            settings.SIGNALING_SETTLE_DELAY_SEC if settle_delay is None else settle_delay
        )
        self.negotiation_timeout = (
            settings.NEGOTIATION_TIMEOUT_SEC
            if negotiation_timeout is None
            else negotiation_timeout
        )

        self._room_active = True
        self.machine = CallStateMachine(
            self.room_id, user_id, room_active=lambda: self._room_active
        )
        self.handle: Optional[relay.RelayHandle] = None
        self.remote_description_set = False
        self.pending_candidates: Deque[IceCandidate] = deque()
        self._outbox: List[IceCandidate] = []
        self._negotiated = asyncio.Event()
        self._failure: Optional[MeetError] = None
        self._subscribed = asyncio.Event()

    def __repr__(self):
        role = "initiator" if self.initiator else "responder"
        return f"<PeerSession room={self.room_id} user={self.user_id} {role} {self.machine.state.value}>"

    @property
    def state(self) -> CallState:
        return self.machine.state

    async def wait_subscribed(self) -> None:
        await self._subscribed.wait()

    async def run(self) -> CallState:
        """Run the call until it ends. Returns the final state (always Ended)."""
        try:
            await self._acquire_media()
        except MediaAcquisitionFailed as exc:
            # 시그널링 시작 전에 실패 보고
            await self._fail(exc)
            await self.pc.close()
            return self.machine.state

        watchdog = None
        try:
            self.handle = await relay.subscribe(
                self.room_id, self.user_id, channel_layer=self.channel_layer
            )
            self._subscribed.set()
            await self._flush_outbox()

            watchdog = asyncio.ensure_future(self._watch_negotiation())

            if self.initiator:
                # 상대가 구독을 마칠 시간
                await asyncio.sleep(self.settle_delay)
                await self._send(Offer(sdp=await self._create_local("offer")))

            while True:
                envelope = await self.handle.receive()
                if envelope is None:
                    break
                await self.handle_message(envelope.message)

            if self._failure is not None:
                raise self._failure
            self._room_active = False
            self.machine.room_closed()
        except (NegotiationFailed, SignalingDeliveryFailed) as exc:
            await self._fail(exc)
        except Exception as exc:
            # host 쪽 예외도 방은 정리하고 다시 던짐
            await self._fail(NegotiationFailed(f"peer session crashed: {exc}"))
            raise
        finally:
            if watchdog is not None:
                watchdog.cancel()
            await self._teardown()

        return self.machine.state

    async def handle_message(self, message: SignalingMessage) -> None:
        if isinstance(message, Offer):
            if self.initiator:
                logger.warning("initiator got an offer room=%s, ignored", self.room_id)
                return
            await self._apply_remote("offer", message.sdp)
            await self._send(Answer(sdp=await self._create_local("answer")))
            self._negotiated.set()
        elif isinstance(message, Answer):
            if not self.initiator:
                logger.warning("responder got an answer room=%s, ignored", self.room_id)
                return
            await self._apply_remote("answer", message.sdp)
            self._negotiated.set()
        elif isinstance(message, IceCandidate):
            if self.remote_description_set:
                await self._add_candidate(message)
            else:
                # remote description 전에 온 candidate 는 순서대로 보관
                self.pending_candidates.append(message)

    # ---- host callbacks ----

    async def on_local_candidate(self, candidate: IceCandidate) -> None:
        if self.handle is None:
            self._outbox.append(candidate)
            return
        if self.handle.closed:
            logger.debug(
                "late candidate dropped room=%s user=%s", self.room_id, self.user_id
            )
            return
        await self.handle.send(candidate)

    def on_connection_state_change(self, connection_state: str) -> None:
        if connection_state == "connected":
            self.machine.mark_connected("peer connection connected")
        elif connection_state in ("disconnected", "failed"):
            self.machine.mark_disconnected(f"peer connection {connection_state}")

    def on_remote_track(self) -> None:
        # 첫 원격 미디어 수신 = connected 로 취급
        self.machine.mark_connected("remote media received")

    async def hang_up(self) -> None:
        self.machine.end("hung up")
        await self._end_room()
        if self.handle is not None:
            await self.handle.unsubscribe()

    # ---- internals ----

    async def _acquire_media(self) -> None:
        if self.media is None:
            return
        try:
            await self.media.acquire()
        except MediaAcquisitionFailed:
            raise
        except Exception as exc:
            raise MediaAcquisitionFailed(str(exc)) from exc

    async def _apply_remote(self, kind: str, sdp: str) -> None:
        try:
            await self.pc.set_remote_description(kind, sdp)
        except Exception as exc:
            raise NegotiationFailed(f"remote {kind} rejected: {exc}") from exc
        self.remote_description_set = True

        while self.pending_candidates:
            await self._add_candidate(self.pending_candidates.popleft())

    async def _create_local(self, kind: str) -> str:
        create = self.pc.create_offer if kind == "offer" else self.pc.create_answer
        try:
            return await create()
        except Exception as exc:
            raise NegotiationFailed(f"local {kind} not created: {exc}") from exc

    async def _add_candidate(self, candidate: IceCandidate) -> None:
        # 뒤에 오는 candidate 가 대신하므로 하나 실패해도 통화는 계속
        try:
            await self.pc.add_ice_candidate(candidate)
        except Exception as exc:
            logger.warning(
                "ice candidate rejected room=%s user=%s: %s", self.room_id, self.user_id, exc
            )

    async def _send(self, message: SignalingMessage) -> None:
        await self.handle.send(message)

    async def _flush_outbox(self) -> None:
        outbox, self._outbox = self._outbox, []
        for candidate in outbox:
            await self.handle.send(candidate)

    async def _watch_negotiation(self) -> None:
        try:
            await asyncio.wait_for(self._negotiated.wait(), self.negotiation_timeout)
        except asyncio.TimeoutError:
            what = "answer" if self.initiator else "offer"
            self._failure = NegotiationFailed(
                f"no {what} within {self.negotiation_timeout:g}s"
            )
            logger.warning("negotiation timeout room=%s user=%s", self.room_id, self.user_id)
            await self.handle.unsubscribe()

    async def _fail(self, exc: MeetError) -> None:
        self.machine.fail(exc)
        self._room_active = False
        await self._end_room()

    async def _end_room(self) -> None:
        try:
            await database_sync_to_async(services.end_room)(self.room_id, self.user_id)
        except MeetError as exc:
            logger.warning("end_room failed room=%s: %s", self.room_id, exc)

    async def _teardown(self) -> None:
        if self.handle is not None:
            await self.handle.unsubscribe()
        await self.pc.close()
        if self.media is not None:
            await self.media.release()
