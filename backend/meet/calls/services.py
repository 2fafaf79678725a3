# meet/calls/services.py
import logging

from django.utils import timezone

from meet.calls.models import CallLog
from meet.calls.state import CallStateMachine
from meet.matches.models import Room

logger = logging.getLogger(__name__)


def record_call(machine: CallStateMachine, started_at) -> CallLog:
    room = Room.objects.get(room_id=machine.room_id)
    log = CallLog.objects.create(
        room=room,
        user_id=machine.user_id,
        started_at=started_at,
        ended_at=timezone.now(),
        ever_connected=machine.ever_connected,
        duration_sec=round(machine.duration_sec, 3),
        failure_code=machine.failure_code or "",
    )
    logger.info(
        "call log room=%s user=%s connected=%s duration=%.1fs failure=%s",
        machine.room_id,
        machine.user_id,
        log.ever_connected,
        log.duration_sec,
        log.failure_code or "-",
    )
    return log


def call_log_payload(log: CallLog) -> dict:
    return {
        "callId": str(log.call_id),
        "roomId": str(log.room.room_id),
        "startedAt": log.started_at.isoformat(),
        "endedAt": log.ended_at.isoformat(),
        "everConnected": log.ever_connected,
        "durationSec": log.duration_sec,
        "failureCode": log.failure_code or None,
    }
