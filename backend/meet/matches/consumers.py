# meet/matches/consumers.py
import asyncio
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from meet.common.exceptions import UserNotVerified
from meet.common.groups import user_group_name
from meet.matches import services
from meet.matches.waiting import wait_for_match

logger = logging.getLogger(__name__)


class MatchConsumer(AsyncJsonWebsocketConsumer):
    """
    WS Matchmaking
      - URL: ws://<host>/ws/match/?token=<jwt>
      - server -> client
          {"type": "pending"}
          {"type": "matched", "room": {...}}
          {"type": "cancelled"}
          {"type": "error", "error": {"code", "message"}}
      - client -> server
          {"type": "cancel"}
    """

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            await self.close(code=4401)
            return

        self.user = user
        self.room_id = None
        self.wait_task = None
        self.group_name = user_group_name(user.id)

        # 매칭 알림은 user 그룹으로 옴 (상대가 매칭을 성사시킨 경우)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        try:
            result = await database_sync_to_async(services.find_match)(user)
        except UserNotVerified as exc:
            await self.send_json(
                {"type": "error", "error": {"code": exc.code, "message": exc.message}}
            )
            await self.close(code=4403)
            return

        if result.matched:
            await self._send_matched(
                services.room_payload(result.room, user.id)
            )
            return

        await self.send_json({"type": "pending"})
        self.wait_task = asyncio.ensure_future(self._wait())

    async def disconnect(self, close_code):
        user = getattr(self, "user", None)
        if user is None:
            return

        await self._stop_waiting()
        if self.room_id is None:
            await database_sync_to_async(services.withdraw)(user.id)

        await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        if content.get("type") != "cancel" or self.room_id is not None:
            return

        await self._stop_waiting()
        await database_sync_to_async(services.withdraw)(self.user.id)

        room = await database_sync_to_async(services.get_active_room)(self.user.id)
        if room is not None:
            await self._send_matched(
                services.room_payload(room, self.user.id)
            )
            return

        await self.send_json({"type": "cancelled"})
        await self.close(code=1000)

    # ---- group handlers ----

    async def match_found(self, event):
        await self._stop_waiting()
        await self._send_matched(event.get("room") or {})

    # ---- helpers ----

    async def _wait(self):
        room = await wait_for_match(self.user)
        if room is not None:
            payload = services.room_payload(room, self.user.id)
            await self._send_matched(payload)
            return

        # HTTP withdraw 등으로 대기열에서 빠진 경우
        if self.room_id is None:
            await self.send_json({"type": "cancelled"})
            await self.close(code=1000)

    async def _stop_waiting(self):
        task = self.wait_task
        self.wait_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _send_matched(self, payload: dict):
        # notify + retry 루프 양쪽에서 올 수 있어서 한 번만 보냄
        if self.room_id is not None:
            return
        self.room_id = payload.get("roomId")
        logger.info("matched user=%s room=%s", self.user.id, self.room_id)
        await self.send_json({"type": "matched", "room": payload})
