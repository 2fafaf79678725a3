import os
from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "meet.config.settings")

django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from meet.config.jwt_auth_middleware import JwtAuthMiddlewareStack  # noqa: E402
import meet.matches.routing  # noqa: E402
import meet.signaling.routing  # noqa: E402

websocket_urlpatterns = (
    meet.matches.routing.websocket_urlpatterns
    + meet.signaling.routing.websocket_urlpatterns
)

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": JwtAuthMiddlewareStack(URLRouter(websocket_urlpatterns)),
    }
)
