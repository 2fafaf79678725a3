from django.urls import path
from .views import IceServersView, CallLogListView

urlpatterns = [
    path("ice-servers", IceServersView.as_view()),
    path("ice-servers/", IceServersView.as_view()),
    path("logs", CallLogListView.as_view()),
    path("logs/", CallLogListView.as_view()),
]
