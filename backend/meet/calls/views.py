# meet/calls/views.py
from django.conf import settings
from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated

from meet.common.responses import ok
from .models import CallLog
from .services import call_log_payload

MAX_LOGS = 20


class IceServersView(APIView):
    """
    GET /api/calls/ice-servers
    res: { iceServers: [{urls}], iceCandidatePoolSize }
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        return ok({"iceServers": settings.ICE_SERVERS, "iceCandidatePoolSize": 10})


class CallLogListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        logs = CallLog.objects.filter(user=request.user).select_related("room")[:MAX_LOGS]
        return ok({"items": [call_log_payload(log) for log in logs]})
