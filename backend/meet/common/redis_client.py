# meet/common/redis_client.py
import logging

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

_redis = None


def get_redis() -> redis.Redis:
    """Process-wide client for presence keys. REDIS_URL wins over host/port."""
    global _redis
    if _redis is None:
        url = getattr(settings, "REDIS_URL", "")
        if url:
            _redis = redis.Redis.from_url(url, decode_responses=True)
        else:
            _redis = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                decode_responses=True,  # bytes 말고 str로 받게
            )
        logger.debug("redis client created")
    return _redis


def reset_redis() -> None:
    global _redis
    _redis = None
