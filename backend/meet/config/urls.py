# meet/config/urls.py
from django.contrib import admin
from django.urls import path, include


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/", include("meet.users.auth_urls")),
    path("api/users/", include("meet.users.urls")),
    path("api/presence/", include("meet.presence.urls")),
    path("api/match/", include("meet.matches.urls")),
    path("api/calls/", include("meet.calls.urls")),
]
