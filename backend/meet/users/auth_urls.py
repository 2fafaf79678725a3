from django.urls import path
from .views import DevJwtIssueView

urlpatterns = [
    # 개발용 JWT
    path("jwt/dev/", DevJwtIssueView.as_view()),
    path("jwt/dev", DevJwtIssueView.as_view()),
]
