# meet/presence/views.py
from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated

from meet.common.responses import ok
from .store import get_presence_store


class PresencePingView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        get_presence_store().set_online(request.user.id, True)
        return ok({"ok": True})


class PresenceOfflineView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        get_presence_store().set_online(request.user.id, False)
        return ok({"ok": True})


class OnlineCountView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return ok({"onlineCount": get_presence_store().online_count()})
