# meet/matches/services.py
import logging
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from meet.common.exceptions import (
    NotRoomMember,
    QueueConflict,
    RoomInactive,
    RoomNotFound,
    UserNotVerified,
)
from meet.common.groups import room_group_name, user_group_name
from meet.matches import queue
from meet.matches.models import Room
from meet.presence.store import get_presence_store

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    room: Optional[Room]
    # True 면 이번 호출에서 방이 새로 만들어짐 (기존 방 재반환이면 False)
    created: bool = False
    # 방 없이 돌아올 때 아직 대기열에 남아있는지
    waiting: bool = False

    @property
    def matched(self) -> bool:
        return self.room is not None

    @property
    def pending(self) -> bool:
        return self.room is None


def room_payload(room: Room, viewer_id) -> dict:
    return {
        "roomId": str(room.room_id),
        "peerA": room.peer_a_id,
        "peerB": room.peer_b_id,
        "peerId": room.peer_of(viewer_id),
        "initiator": room.is_initiator(viewer_id),
        "active": room.active,
        "createdAt": room.created_at.isoformat() if room.created_at else None,
        "endedAt": room.ended_at.isoformat() if room.ended_at else None,
    }


def parse_room_id(room_id) -> uuid.UUID:
    if isinstance(room_id, uuid.UUID):
        return room_id
    try:
        return uuid.UUID(str(room_id))
    except (TypeError, ValueError):
        raise RoomNotFound()


def get_active_room(user_id) -> Optional[Room]:
    return (
        Room.objects.filter(Q(peer_a_id=user_id) | Q(peer_b_id=user_id), active=True)
        .order_by("-created_at")
        .first()
    )


def is_room_active(room_id) -> bool:
    return Room.objects.filter(room_id=parse_room_id(room_id), active=True).exists()


def get_room_for_member(room_id, user_id, *, require_active: bool = False) -> Room:
    room = Room.objects.filter(room_id=parse_room_id(room_id)).first()
    if room is None:
        raise RoomNotFound()
    if not room.has_member(user_id):
        raise NotRoomMember()
    if require_active and not room.active:
        raise RoomInactive()
    return room


def find_match(user, *, requeue: bool = True) -> MatchResult:
    """
    Enqueue ``user`` and try to pair them right away.

    ``requeue=False`` is used by retries of an already waiting caller so the
    original queue position is kept. If that caller has withdrawn in the
    meantime nothing is enqueued and the result is neither matched nor
    waiting.
    """
    if not user.is_verified:
        raise UserNotVerified()

    get_presence_store().set_online(user.id, True)

    with queue.coordinator():
        # 이미 진행중인 방이 있으면 그 방을 돌려줌 (한 유저당 active room 1개)
        existing = get_active_room(user.id)
        if existing is not None:
            queue.withdraw(user.id)
            return MatchResult(room=existing)

        if requeue:
            queue.enqueue(user.id)
        elif not queue.is_waiting(user.id):
            # 그 사이 withdraw 됨: 다시 넣지 않음
            return MatchResult(room=None)

        try:
            other_id = queue.try_match(user.id)
        except QueueConflict:
            # 다른 트랜잭션이 나를 잡아가는 중: 다음 retry 때 방이 보임
            logger.debug("queue conflict user=%s", user.id)
            other_id = None
        if other_id is None:
            return MatchResult(room=None, waiting=True)

        room = Room.objects.create(peer_a_id=user.id, peer_b_id=other_id)
        transaction.on_commit(partial(notify_match, room), robust=True)

    logger.info(
        "room created room=%s peer_a=%s peer_b=%s",
        room.room_id,
        room.peer_a_id,
        room.peer_b_id,
    )
    return MatchResult(room=room, created=True)


def withdraw(user_id) -> bool:
    """Leave the queue. A room that already exists is left untouched."""
    return queue.withdraw(user_id)


def end_room(room_id, requester_id) -> Room:
    with transaction.atomic():
        room = (
            Room.objects.select_for_update()
            .filter(room_id=parse_room_id(room_id))
            .first()
        )
        if room is None:
            raise RoomNotFound()
        if not room.has_member(requester_id):
            raise NotRoomMember()

        if room.active:
            room.active = False
            room.ended_at = timezone.now()
            room.ended_by_id = requester_id
            room.save(update_fields=["active", "ended_at", "ended_by"])
            transaction.on_commit(partial(notify_room_ended, room), robust=True)
            logger.info("room ended room=%s by=%s", room.room_id, requester_id)

    return room


# ---- channel layer notifications ----


def notify_match(room: Room):
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    for user_id in (room.peer_a_id, room.peer_b_id):
        async_to_sync(channel_layer.group_send)(
            user_group_name(user_id),
            {
                "type": "match.found",  # handler: match_found
                "room": room_payload(room, user_id),
            },
        )


def notify_room_ended(room: Room):
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(
        room_group_name(room.room_id),
        {
            "type": "room.ended",  # handler: room_ended
            "roomId": str(room.room_id),
            "endedBy": room.ended_by_id,
        },
    )
