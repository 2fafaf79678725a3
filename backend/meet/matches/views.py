# meet/matches/views.py
from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated

from meet.common.responses import ok, fail
from meet.matches import queue, services


def _match_state(result, user_id):
    if result.matched:
        return {
            "status": "MATCHED",
            "room": services.room_payload(result.room, user_id),
        }
    if not result.waiting:
        return {"status": "IDLE", "room": None}
    return {"status": "PENDING", "room": None}


class MatchRequestView(APIView):
    """
    POST /api/match/request
    res: { status: "MATCHED" | "PENDING", room }
    PENDING 이면 /api/match/status 를 1~3초 간격으로 polling (또는 ws/match/ 사용)
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        result = services.find_match(request.user)
        return ok(_match_state(result, request.user.id))


class MatchStatusView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = request.user

        room = services.get_active_room(user.id)
        if room is not None:
            return ok({"status": "MATCHED", "room": services.room_payload(room, user.id)})

        if not queue.is_waiting(user.id):
            return ok({"status": "IDLE", "room": None})

        # polling 한 번이 곧 retry 한 번
        result = services.find_match(user, requeue=False)
        return ok(_match_state(result, user.id))


class MatchWithdrawView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        withdrawn = services.withdraw(request.user.id)
        room = services.get_active_room(request.user.id)
        return ok(
            {
                "withdrawn": withdrawn,
                "room": services.room_payload(room, request.user.id) if room else None,
            }
        )


class MatchEndView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        room_id = request.data.get("roomId") or request.data.get("room_id")
        if not room_id:
            return fail("VALIDATION_ERROR", "roomId is required")

        room = services.end_room(room_id, request.user.id)
        return ok({"ended": True, "room": services.room_payload(room, request.user.id)})


class RoomDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, room_id: str):
        room = services.get_room_for_member(room_id, request.user.id)
        return ok(services.room_payload(room, request.user.id))
