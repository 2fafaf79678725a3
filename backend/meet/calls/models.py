# meet/calls/models.py
import uuid
from django.db import models


class CallLog(models.Model):
    """
    One peer's view of one call, written when its state machine reaches Ended.
    Display/history only; the Room row is the source of truth.
    """

    call_id = models.UUIDField(default=uuid.uuid4, unique=True, db_index=True)
    room = models.ForeignKey(
        "matches.Room", on_delete=models.CASCADE, related_name="call_logs"
    )
    user = models.ForeignKey(
        "users.User", on_delete=models.CASCADE, related_name="call_logs"
    )

    started_at = models.DateTimeField()
    ended_at = models.DateTimeField()
    ever_connected = models.BooleanField(default=False)
    duration_sec = models.FloatField(default=0)
    failure_code = models.CharField(max_length=50, blank=True, default="")

    class Meta:
        ordering = ["-ended_at"]
