import itertools

import pytest
from channels.layers import channel_layers
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from meet.common.redis_client import reset_redis
from meet.presence.store import reset_presence_stores

_emails = itertools.count(1)


@pytest.fixture(autouse=True)
def _fresh_layers():
    # channel layer / presence / redis client 는 프로세스 전역이라 테스트마다 초기화
    channel_layers.backends.clear()
    reset_presence_stores()
    reset_redis()
    yield
    channel_layers.backends.clear()
    reset_presence_stores()
    reset_redis()


def create_user(verified=True, **extra):
    from meet.users.models import User

    n = next(_emails)
    return User.objects.create_user(
        f"user{n}@test.edu",
        display_name=f"user{n}",
        is_verified=verified,
        **extra,
    )


@pytest.fixture
def make_user(db):
    return create_user


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(make_user):
    def _client(user=None):
        user = user or make_user()
        client = APIClient()
        client.force_authenticate(user=user)
        client.user = user
        return client

    return _client


def token_for(user) -> str:
    return str(AccessToken.for_user(user))
