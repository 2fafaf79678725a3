# meet/presence/store.py
"""
Who is online right now.

The matching core only talks to the ``PresenceStore`` interface; the concrete
backend is picked with the ``PRESENCE_BACKEND`` setting so the core can run
against Redis in production and an in-process dict in tests.
"""
import threading
import time
from typing import Dict, Optional

from django.conf import settings
from django.utils.module_loading import import_string

from meet.common.redis_client import get_redis


def presence_key(user_id: int) -> str:
    return f"presence:user:{user_id}"


class PresenceStore:
    def set_online(self, user_id: int, online: bool = True) -> None:
        raise NotImplementedError

    def is_online(self, user_id: int) -> bool:
        raise NotImplementedError

    def online_count(self) -> int:
        raise NotImplementedError


class RedisPresenceStore(PresenceStore):
    """Online flag = a key with TTL; the client keeps it alive by pinging."""

    def __init__(self, ttl_sec: Optional[int] = None, client=None):
        self.ttl_sec = ttl_sec or settings.PRESENCE_TTL_SEC
        self._client = client

    @property
    def client(self):
        return self._client or get_redis()

    def set_online(self, user_id: int, online: bool = True) -> None:
        if online:
            self.client.set(presence_key(user_id), "1", ex=self.ttl_sec)
        else:
            self.client.delete(presence_key(user_id))

    def is_online(self, user_id: int) -> bool:
        return self.client.exists(presence_key(user_id)) > 0

    def online_count(self) -> int:
        return sum(1 for _ in self.client.scan_iter(match=presence_key("*")))


class LocalPresenceStore(PresenceStore):
    """Single-process store with the same TTL semantics as the Redis one."""

    def __init__(self, ttl_sec: Optional[int] = None, clock=time.monotonic):
        self.ttl_sec = ttl_sec or settings.PRESENCE_TTL_SEC
        self._clock = clock
        self._expires: Dict[int, float] = {}
        self._lock = threading.Lock()

    def set_online(self, user_id: int, online: bool = True) -> None:
        with self._lock:
            if online:
                self._expires[user_id] = self._clock() + self.ttl_sec
            else:
                self._expires.pop(user_id, None)

    def is_online(self, user_id: int) -> bool:
        with self._lock:
            expires_at = self._expires.get(user_id)
            return expires_at is not None and expires_at > self._clock()

    def online_count(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [uid for uid, exp in self._expires.items() if exp <= now]
            for uid in expired:
                del self._expires[uid]
            return len(self._expires)


_stores: Dict[str, PresenceStore] = {}


def get_presence_store() -> PresenceStore:
    path = settings.PRESENCE_BACKEND
    store = _stores.get(path)
    if store is None:
        store = import_string(path)()
        _stores[path] = store
    return store


def reset_presence_stores() -> None:
    _stores.clear()
