from django.urls import path
from .views import PresencePingView, PresenceOfflineView, OnlineCountView

urlpatterns = [
    path("ping", PresencePingView.as_view()),
    path("ping/", PresencePingView.as_view()),
    path("offline", PresenceOfflineView.as_view()),
    path("offline/", PresenceOfflineView.as_view()),
    path("online-count", OnlineCountView.as_view()),
    path("online-count/", OnlineCountView.as_view()),
]
