# meet/signaling/relay.py
"""
Per-room signaling bus on top of the Channels channel layer.

Only the two peers of an active room can subscribe. A subscriber never sees
its own messages. Delivery is at most once and nothing is stored: a peer that
was not subscribed when a message went out has lost it.
"""
import asyncio
import logging
from typing import Optional

from channels.db import database_sync_to_async
from channels.exceptions import ChannelFull
from channels.layers import get_channel_layer
from django.conf import settings
from redis.exceptions import RedisError

from meet.common.exceptions import SignalingDeliveryFailed
from meet.common.groups import room_group_name
from meet.matches import services
from meet.signaling.messages import Envelope, SignalingMessage

logger = logging.getLogger(__name__)

SIGNAL_EVENT = "signal.message"  # handler: signal_message
ROOM_ENDED_EVENT = "room.ended"  # handler: room_ended

TRANSIENT_ERRORS = (ChannelFull, RedisError, OSError, asyncio.TimeoutError)


def build_event(envelope: Envelope) -> dict:
    return {"type": SIGNAL_EVENT, "envelope": envelope.to_dict()}


def is_own_event(event: dict, self_id) -> bool:
    envelope = event.get("envelope") or {}
    return envelope.get("senderId") == self_id


@database_sync_to_async
def resolve_room(room_id, user_id) -> str:
    """Canonical room id, or RoomNotFound / NotRoomMember / RoomInactive."""
    room = services.get_room_for_member(room_id, user_id, require_active=True)
    return str(room.room_id)


async def send(room_id, sender_id, message: SignalingMessage, *, channel_layer=None) -> bool:
    """
    Fire-and-forget broadcast to the other subscriber of ``room_id``.

    Offer/Answer are retried on transient layer errors and finally raise
    SignalingDeliveryFailed. ICE candidates are tried once; a failure is
    logged and reported as ``False``.
    """
    layer = channel_layer or get_channel_layer()
    envelope = Envelope(room_id=str(room_id), sender_id=sender_id, message=message)
    event = build_event(envelope)
    group = room_group_name(room_id)

    attempts = 1 + (settings.SIGNALING_SEND_RETRIES if message.load_bearing else 0)
    for attempt in range(1, attempts + 1):
        try:
            await layer.group_send(group, event)
            return True
        except TRANSIENT_ERRORS as exc:
            if not message.load_bearing:
                logger.warning(
                    "dropped %s room=%s sender=%s: %s",
                    message.kind,
                    room_id,
                    sender_id,
                    exc,
                )
                return False
            if attempt == attempts:
                logger.error(
                    "giving up on %s room=%s sender=%s after %d attempts: %s",
                    message.kind,
                    room_id,
                    sender_id,
                    attempts,
                    exc,
                )
                raise SignalingDeliveryFailed(
                    f"{message.kind} not delivered after {attempts} attempts"
                ) from exc
            logger.info(
                "retrying %s room=%s attempt=%d: %s", message.kind, room_id, attempt, exc
            )
            await asyncio.sleep(settings.SIGNALING_RETRY_DELAY_SEC * attempt)
    return False


class RelayHandle:
    """One subscription to a room's signaling group."""

    def __init__(self, channel_layer, room_id: str, self_id, channel_name: str):
        self.channel_layer = channel_layer
        self.room_id = room_id
        self.self_id = self_id
        self.channel_name = channel_name
        self.closed = False
        self.room_ended = False
        self._receiving: Optional[asyncio.Future] = None

    def __repr__(self):
        return f"<RelayHandle room={self.room_id} self={self.self_id} closed={self.closed}>"

    async def send(self, message: SignalingMessage) -> bool:
        return await send(
            self.room_id, self.self_id, message, channel_layer=self.channel_layer
        )

    async def receive(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        """
        Next message from the other peer, in the order that peer sent them.

        Returns ``None`` once the room ended or the handle was unsubscribed,
        including when that happens while this call is waiting.
        """
        while not self.closed:
            self._receiving = asyncio.ensure_future(
                self.channel_layer.receive(self.channel_name)
            )
            try:
                event = await asyncio.wait_for(self._receiving, timeout)
            except asyncio.CancelledError:
                if self.closed:
                    return None
                raise
            finally:
                self._receiving = None

            event_type = event.get("type")
            if event_type == ROOM_ENDED_EVENT:
                self.room_ended = True
                await self.unsubscribe()
                return None
            if event_type != SIGNAL_EVENT or is_own_event(event, self.self_id):
                continue

            try:
                return Envelope.from_dict(event.get("envelope") or {})
            except ValueError as exc:
                logger.warning("bad envelope on room=%s: %s", self.room_id, exc)
        return None

    async def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._receiving is not None and not self._receiving.done():
            self._receiving.cancel()
        await self.channel_layer.group_discard(
            room_group_name(self.room_id), self.channel_name
        )
        logger.debug("unsubscribed %r", self)


async def subscribe(room_id, self_id, *, channel_layer=None) -> RelayHandle:
    canonical_id = await resolve_room(room_id, self_id)
    layer = channel_layer or get_channel_layer()
    channel_name = await layer.new_channel()
    await layer.group_add(room_group_name(canonical_id), channel_name)
    logger.debug("subscribed user=%s room=%s", self_id, canonical_id)
    return RelayHandle(layer, canonical_id, self_id, channel_name)


async def unsubscribe(handle: RelayHandle) -> None:
    await handle.unsubscribe()
