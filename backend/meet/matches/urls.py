# meet/matches/urls.py
from django.urls import path
from .views import (
    MatchRequestView,
    MatchStatusView,
    MatchWithdrawView,
    MatchEndView,
    RoomDetailView,
)

urlpatterns = [
    path("request", MatchRequestView.as_view()),
    path("request/", MatchRequestView.as_view()),
    path("status", MatchStatusView.as_view()),
    path("status/", MatchStatusView.as_view()),
    path("withdraw", MatchWithdrawView.as_view()),
    path("withdraw/", MatchWithdrawView.as_view()),
    path("end", MatchEndView.as_view()),
    path("end/", MatchEndView.as_view()),
    path("rooms/<str:room_id>", RoomDetailView.as_view()),
    path("rooms/<str:room_id>/", RoomDetailView.as_view()),
]
