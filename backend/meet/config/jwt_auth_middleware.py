# meet/config/jwt_auth_middleware.py
import logging
from typing import Optional
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken

logger = logging.getLogger(__name__)


def token_from_scope(scope) -> Optional[str]:
    """
    ws://.../?token=<jwt> 우선, 없으면 Authorization: Bearer <jwt> 헤더.
    브라우저 WebSocket 은 헤더를 못 붙여서 query string 이 기본.
    """
    qs = parse_qs(scope.get("query_string", b"").decode())
    token_list = qs.get("token", [])
    if token_list and token_list[0]:
        return token_list[0]

    for name, value in scope.get("headers", []):
        if name.lower() == b"authorization":
            scheme, _, credentials = value.decode().partition(" ")
            if scheme.lower() == "bearer" and credentials:
                return credentials.strip()
    return None


@database_sync_to_async
def get_user_from_token(token: str):
    """SimpleJWT 로 검증한 유저, 실패하면 AnonymousUser."""
    jwt_auth = JWTAuthentication()
    try:
        validated = jwt_auth.get_validated_token(token)
        return jwt_auth.get_user(validated)
    except (InvalidToken, AuthenticationFailed) as exc:
        logger.info("websocket token rejected: %s", exc)
        return AnonymousUser()


class JwtAuthMiddleware:
    """Sets scope['user'] for the match and signaling sockets."""

    def __init__(self, inner):
        self.inner = inner

    async def __call__(self, scope, receive, send):
        token = token_from_scope(scope)

        scope = dict(scope)
        scope["user"] = await get_user_from_token(token) if token else AnonymousUser()

        return await self.inner(scope, receive, send)


def JwtAuthMiddlewareStack(inner):
    return JwtAuthMiddleware(inner)
