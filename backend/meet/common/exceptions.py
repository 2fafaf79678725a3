# meet/common/exceptions.py
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError


class MeetError(Exception):
    """Base class for domain errors that reach a client with a stable code."""

    code = "MEET_ERROR"
    http_status = 400
    default_message = "request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class QueueConflict(MeetError):
    # 다른 호출자가 먼저 잡아간 대기열 항목. 호출자는 그냥 다시 기다림
    code = "QUEUE_CONFLICT"
    http_status = 409
    default_message = "waiting entry already claimed"


class RoomNotFound(MeetError):
    code = "ROOM_NOT_FOUND"
    http_status = 404
    default_message = "room not found"


class RoomInactive(MeetError):
    code = "ROOM_INACTIVE"
    http_status = 409
    default_message = "room already ended"


class NotRoomMember(MeetError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "not your room"


class UserNotVerified(MeetError):
    code = "USER_NOT_VERIFIED"
    http_status = 403
    default_message = "only verified users can request a match"


class SignalingDeliveryFailed(MeetError):
    code = "SIGNALING_DELIVERY_FAILED"
    http_status = 503
    default_message = "signaling message could not be delivered"


class NegotiationFailed(MeetError):
    code = "NEGOTIATION_FAILED"
    http_status = 409
    default_message = "offer/answer negotiation failed"


class MediaAcquisitionFailed(MeetError):
    code = "MEDIA_ACQUISITION_FAILED"
    http_status = 409
    default_message = "local audio/video could not be acquired"


class InvalidTransition(MeetError):
    code = "INVALID_TRANSITION"
    http_status = 409
    default_message = "call state transition not allowed"


def _envelope(code: str, message: str) -> dict:
    return {
        "success": False,
        "data": None,
        "error": {"code": code, "message": message},
    }


def custom_exception_handler(exc, context):
    if isinstance(exc, MeetError):
        return Response(_envelope(exc.code, exc.message), status=exc.http_status)

    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(exc, NotAuthenticated):
        response.data = _envelope("UNAUTHORIZED", "Authorization header missing")
    elif isinstance(exc, PermissionDenied):
        response.data = _envelope("FORBIDDEN", "Permission denied")
    elif isinstance(exc, (InvalidToken, TokenError)):
        response.data = _envelope("INVALID_TOKEN", "Invalid token")

    return response
