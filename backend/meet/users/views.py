# meet/users/views.py
import logging

from django.conf import settings
from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated
from rest_framework_simplejwt.tokens import AccessToken

from meet.common.responses import ok, fail
from .domains import is_college_email
from .models import User
from .serializers import UserMeSerializer

logger = logging.getLogger(__name__)


def issue_jwt_for_user(user: User) -> str:
    return str(AccessToken.for_user(user))


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return ok(UserMeSerializer(request.user).data)


class DevJwtIssueView(APIView):
    """
    개발용 JWT 발급. 실제 학교 이메일 인증은 외부 인증 서비스 담당.
    body: { "email": "kim@snu.edu", "displayName": "kim" }
    """

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if not getattr(settings, "DEV_JWT_ENABLED", False):
            return fail("NOT_FOUND", "not available", 404)

        email = (request.data.get("email") or "").strip().lower()
        if not email:
            return fail("VALIDATION_ERROR", "email is required")
        if not is_college_email(email):
            return fail("INVALID_EMAIL", "college email required")

        user = User.objects.filter(email=email).first()
        if not user:
            user = User.objects.create_user(
                email,
                display_name=request.data.get("displayName") or email.split("@")[0],
                is_verified=True,
            )
            logger.info("dev user created user_id=%s", user.id)

        return ok(
            {
                "accessToken": issue_jwt_for_user(user),
                "tokenType": "Bearer",
                "userId": user.id,
            }
        )
