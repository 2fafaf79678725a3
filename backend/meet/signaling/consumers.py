# meet/signaling/consumers.py
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.core.exceptions import ObjectDoesNotExist
from django.db import DatabaseError
from django.utils import timezone

from meet.calls.services import record_call
from meet.calls.state import CallState, CallStateMachine
from meet.common.exceptions import (
    MeetError,
    NegotiationFailed,
    NotRoomMember,
    RoomInactive,
    RoomNotFound,
    SignalingDeliveryFailed,
)
from meet.common.groups import room_group_name
from meet.matches import services
from meet.signaling import relay
from meet.signaling.messages import MESSAGE_TYPES, parse_message

logger = logging.getLogger(__name__)

CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404
CLOSE_ROOM_INACTIVE = 4410

_CLOSE_CODES = {
    RoomNotFound: CLOSE_NOT_FOUND,
    NotRoomMember: CLOSE_FORBIDDEN,
    RoomInactive: CLOSE_ROOM_INACTIVE,
}


class SignalingConsumer(AsyncJsonWebsocketConsumer):
    """
    WS Signaling Protocol
      - URL: ws://<host>/ws/signaling/<roomId>/?token=<jwt>
      - Envelope:
        {
          "type": "offer" | "answer" | "ice-candidate",
          "roomId": "...",
          "senderId": 1,
          "payload": {...}
        }
      - client -> server 추가 메시지
          {"type": "state", "payload": {"connectionState": "connected" | "disconnected" | "failed"}}
          {"type": "negotiation-failed", "payload": {"reason": "..."}}
          {"type": "leave"}
      - server -> client 추가 메시지
          joined / peer-joined / peer-left / call-state / room-ended / error
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.machine = None
        self._pending_states = []

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            await self.close(code=CLOSE_UNAUTHORIZED)
            return
        self.user_id = user.id

        try:
            self.room_id = await relay.resolve_room(
                self.scope["url_route"]["kwargs"]["room_id"], self.user_id
            )
        except (RoomNotFound, NotRoomMember, RoomInactive) as exc:
            await self.close(code=_CLOSE_CODES[type(exc)])
            return

        self.room_group_name = room_group_name(self.room_id)
        self.started_at = timezone.now()
        self.logged = False
        self.machine = CallStateMachine(self.room_id, self.user_id)
        self.machine.add_listener(self._on_transition)

        await self.channel_layer.group_add(self.room_group_name, self.channel_name)
        await self.accept()

        await self.send_json(
            {
                "type": "joined",
                "roomId": self.room_id,
                "senderId": self.user_id,
                "payload": {"state": self.machine.state.value},
            }
        )
        await self.channel_layer.group_send(
            self.room_group_name,
            {
                "type": "peer.joined",  # handler: peer_joined
                "roomId": self.room_id,
                "senderId": self.user_id,
            },
        )

    async def disconnect(self, close_code):
        if getattr(self, "machine", None) is None:
            return

        # 나감을 먼저 알리고 그 다음 group 에서 제거
        await self.channel_layer.group_send(
            self.room_group_name,
            {
                "type": "peer.left",  # handler: peer_left
                "roomId": self.room_id,
                "senderId": self.user_id,
            },
        )
        await self.channel_layer.group_discard(self.room_group_name, self.channel_name)

        # 소켓만 끊긴 경우 방은 살아있고 재접속하면 새로 협상
        if not self.machine.is_ended:
            self.machine.mark_disconnected("socket closed")
        await self._record_if_ended()

    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        # 깨진 프레임 하나로 소켓이 죽지 않게 error 로 응답
        if text_data is None:
            await self._send_error("VALIDATION_ERROR", "text frames only")
            return
        try:
            content = await self.decode_json(text_data)
        except ValueError:
            await self._send_error("VALIDATION_ERROR", "frame is not valid JSON")
            return
        await self.receive_json(content, **kwargs)

    async def receive_json(self, content, **kwargs):
        if self.machine is None or self.machine.is_ended:
            return
        if not isinstance(content, dict):
            await self._send_error("VALIDATION_ERROR", "frame must be an object")
            return
        await self._handle(content)
        await self._flush_states()

    async def _handle(self, content):
        msg_type = content.get("type")
        payload = content.get("payload") or {}
        if not isinstance(payload, dict):
            await self._send_error("VALIDATION_ERROR", "payload must be an object")
            return

        if msg_type in MESSAGE_TYPES:
            await self._relay(msg_type, payload)
        elif msg_type == "state":
            await self._connection_state(payload.get("connectionState"))
        elif msg_type == "negotiation-failed":
            reason = str(payload.get("reason") or "negotiation failed")
            self.machine.fail(NegotiationFailed(reason))
            await self._flush_states()
            await self._end_room()
        elif msg_type == "leave":
            self.machine.end("left")
            await self._flush_states()
            await self._end_room()
        else:
            await self._send_error("VALIDATION_ERROR", f"unknown type: {msg_type}")

    # ---- group handlers ----

    async def signal_message(self, event):
        # 그룹 브로드캐스트라 내 메시지도 돌아옴: 서버에서 걸러냄
        if relay.is_own_event(event, self.user_id):
            return
        await self.send_json(event.get("envelope") or {})

    async def peer_joined(self, event):
        if event.get("senderId") == self.user_id:
            return
        await self.send_json(
            {"type": "peer-joined", "roomId": self.room_id, "senderId": event.get("senderId")}
        )

    async def peer_left(self, event):
        if event.get("senderId") == self.user_id:
            return
        await self.send_json(
            {"type": "peer-left", "roomId": self.room_id, "senderId": event.get("senderId")}
        )

    async def room_ended(self, event):
        self.machine.room_closed()
        await self._flush_states()
        await self.send_json(
            {
                "type": "room-ended",
                "roomId": self.room_id,
                "payload": {"endedBy": event.get("endedBy")},
            }
        )
        await self._record_if_ended()
        await self.close(code=1000)

    # ---- helpers ----

    async def _relay(self, msg_type, payload):
        try:
            message = parse_message(msg_type, payload or {})
        except ValueError as exc:
            await self._send_error("VALIDATION_ERROR", str(exc))
            return

        try:
            await relay.send(
                self.room_id, self.user_id, message, channel_layer=self.channel_layer
            )
        except SignalingDeliveryFailed as exc:
            # offer/answer 유실은 이번 통화 시도의 실패
            await self._send_error(exc.code, exc.message)
            self.machine.fail(NegotiationFailed(exc.message))
            await self._flush_states()
            await self._end_room()

    async def _connection_state(self, connection_state):
        if connection_state == "connected":
            room_active = await database_sync_to_async(self._room_is_active)()
            if room_active:
                self.machine.mark_connected()
            else:
                self.machine.room_closed()
        elif connection_state in ("disconnected", "failed"):
            self.machine.mark_disconnected(f"peer connection {connection_state}")
        else:
            await self._send_error(
                "VALIDATION_ERROR", f"unknown connectionState: {connection_state}"
            )

    def _room_is_active(self) -> bool:
        return services.is_room_active(self.room_id)

    async def _end_room(self):
        try:
            await database_sync_to_async(services.end_room)(self.room_id, self.user_id)
        except MeetError as exc:
            logger.warning("end_room failed room=%s: %s", self.room_id, exc)
        await self._record_if_ended()

    async def _record_if_ended(self):
        if self.logged or not self.machine.is_ended:
            return
        self.logged = True
        try:
            await database_sync_to_async(record_call)(self.machine, self.started_at)
        except (DatabaseError, ObjectDoesNotExist):
            # 기록 실패가 종료 처리를 막으면 안 됨
            logger.exception(
                "call log not written room=%s user=%s", self.room_id, self.user_id
            )

    def _on_transition(self, old_state: CallState, new_state: CallState, reason: str):
        # listener 는 sync: 전송은 _flush_states 에서
        self._pending_states.append(
            {
                "type": "call-state",
                "roomId": self.room_id,
                "payload": {
                    "from": old_state.value,
                    "to": new_state.value,
                    "reason": reason,
                    "failureCode": self.machine.failure_code,
                },
            }
        )

    async def _flush_states(self):
        while self._pending_states:
            await self.send_json(self._pending_states.pop(0))

    async def _send_error(self, code: str, message: str):
        await self.send_json(
            {"type": "error", "roomId": self.room_id, "error": {"code": code, "message": message}}
        )
