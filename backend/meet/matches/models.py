# meet/matches/models.py
import uuid
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class WaitingEntry(models.Model):
    """A user currently looking for a partner. One row per user."""

    user = models.OneToOneField(
        "users.User", related_name="waiting_entry", on_delete=models.CASCADE
    )
    enqueued_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["enqueued_at", "id"]

    def __str__(self):
        return f"waiting user={self.user_id} since={self.enqueued_at:%H:%M:%S}"


class Room(models.Model):
    room_id = models.UUIDField(default=uuid.uuid4, unique=True, db_index=True)

    # peer_a 가 offer 를 보내는 쪽(initiator)
    peer_a = models.ForeignKey(
        "users.User", related_name="rooms_as_a", on_delete=models.CASCADE
    )
    peer_b = models.ForeignKey(
        "users.User", related_name="rooms_as_b", on_delete=models.CASCADE
    )

    created_at = models.DateTimeField(auto_now_add=True)
    active = models.BooleanField(default=True, db_index=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    ended_by = models.ForeignKey(
        "users.User",
        related_name="+",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=~Q(peer_a=F("peer_b")), name="room_distinct_peers"
            ),
        ]

    def __str__(self):
        return f"room {self.room_id} ({self.peer_a_id}<->{self.peer_b_id})"

    def has_member(self, user_id) -> bool:
        return user_id in (self.peer_a_id, self.peer_b_id)

    def peer_of(self, user_id):
        if user_id == self.peer_a_id:
            return self.peer_b_id
        if user_id == self.peer_b_id:
            return self.peer_a_id
        return None

    def is_initiator(self, user_id) -> bool:
        return user_id == self.peer_a_id
