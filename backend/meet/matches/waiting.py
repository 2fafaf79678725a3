# meet/matches/waiting.py
import asyncio
import logging
from typing import Optional

from channels.db import database_sync_to_async
from django.conf import settings

from meet.matches import services
from meet.matches.models import Room

logger = logging.getLogger(__name__)

BACKOFF_FACTOR = 1.5


async def _cancelled_within(cancel_event: Optional[asyncio.Event], delay: float) -> bool:
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


async def _give_up(user) -> Optional[Room]:
    # withdraw 와 매칭이 경합하면 방이 이긴다: 이미 만들어진 방은 그대로 돌려줌
    await database_sync_to_async(services.withdraw)(user.id)
    return await database_sync_to_async(services.get_active_room)(user.id)


async def wait_for_match(
    user,
    *,
    interval: Optional[float] = None,
    max_interval: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> Optional[Room]:
    """
    Keep a pending caller in line until a room exists for them.

    Retries TryMatch with a bounded backoff and no overall deadline. Setting
    ``cancel_event`` (or cancelling the task) withdraws the queue entry; the
    return value is then the room that raced in, or ``None``. A withdrawal
    made elsewhere also ends the wait with ``None``.
    """
    delay = interval or settings.MATCH_RETRY_INTERVAL_SEC
    ceiling = max_interval or settings.MATCH_RETRY_MAX_INTERVAL_SEC

    try:
        while True:
            result = await database_sync_to_async(services.find_match)(
                user, requeue=False
            )
            if result.matched:
                return result.room
            if not result.waiting:
                # 다른 경로(HTTP withdraw 등)로 대기열에서 빠짐
                logger.info("match wait stopped, user withdrew user=%s", user.id)
                return await database_sync_to_async(services.get_active_room)(user.id)

            if await _cancelled_within(cancel_event, delay):
                logger.info("match wait cancelled user=%s", user.id)
                return await _give_up(user)

            delay = min(delay * BACKOFF_FACTOR, ceiling)
    except asyncio.CancelledError:
        await database_sync_to_async(services.withdraw)(user.id)
        raise
