# meet/matches/queue.py
"""
Waiting queue: the pool of users currently looking for a partner.

Every mutation goes through one serialization point, ``coordinator()``: a
process-wide lock around a DB transaction. Inside it the candidate rows are
read with ``select_for_update(skip_locked=True)`` so a second worker process
on a row-locking database also never claims an entry another transaction is
holding.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Optional

from django.db import transaction
from django.utils import timezone

from meet.common.exceptions import QueueConflict
from meet.matches.models import WaitingEntry

logger = logging.getLogger(__name__)

# find_match 가 enqueue/try_match/room 생성을 한 번에 잡아야 해서 RLock
_coordinator_lock = threading.RLock()


@contextmanager
def coordinator():
    with _coordinator_lock:
        with transaction.atomic():
            yield


def enqueue(user_id) -> WaitingEntry:
    """Upsert; a repeat call only moves the user to the back of the line."""
    with coordinator():
        entry, created = WaitingEntry.objects.update_or_create(
            user_id=user_id, defaults={"enqueued_at": timezone.now()}
        )
    logger.debug("enqueue user=%s created=%s", user_id, created)
    return entry


def try_match(user_id) -> Optional[int]:
    """
    Claim the oldest other waiting user.

    Both entries are deleted and the other user's id is returned. When nobody
    else is waiting (or ``user_id`` itself is no longer queued, e.g. it just
    withdrew) nothing changes and ``None`` is returned. QueueConflict means
    our own entry is locked by a transaction that is claiming it right now.
    """
    with coordinator():
        mine = (
            WaitingEntry.objects.select_for_update(skip_locked=True)
            .filter(user_id=user_id)
            .first()
        )
        if mine is None:
            if WaitingEntry.objects.filter(user_id=user_id).exists():
                raise QueueConflict()
            return None

        other = (
            WaitingEntry.objects.select_for_update(skip_locked=True)
            .exclude(user_id=user_id)
            .order_by("enqueued_at", "id")
            .first()
        )
        if other is None:
            return None

        WaitingEntry.objects.filter(pk__in=[mine.pk, other.pk]).delete()

    logger.info("queue match user=%s other=%s", user_id, other.user_id)
    return other.user_id


def withdraw(user_id) -> bool:
    with coordinator():
        deleted, _ = WaitingEntry.objects.filter(user_id=user_id).delete()
    if deleted:
        logger.info("withdraw user=%s", user_id)
    return bool(deleted)


def is_waiting(user_id) -> bool:
    return WaitingEntry.objects.filter(user_id=user_id).exists()


def waiting_count() -> int:
    return WaitingEntry.objects.count()
