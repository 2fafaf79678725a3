# config/settings.py
import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # backend/
load_dotenv(BASE_DIR / ".env")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)


REDIS_HOST = os.environ.get("REDIS_HOST", "127.0.0.1")
REDIS_PORT = int(os.environ.get("REDIS_PORT", "6379"))
REDIS_DB = int(os.environ.get("REDIS_DB", "0"))
REDIS_URL = os.environ.get("REDIS_URL", "")


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "")
DEBUG = os.environ.get("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = [
    h.strip()
    for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "").split(",")
    if h.strip()
]
CORS_ALLOW_ALL_ORIGINS = True

CORS_ALLOW_CREDENTIALS = True

DATABASES = {
    "default": dj_database_url.config(
        default=os.environ.get(
            "DATABASE_URL", f"sqlite:///{BASE_DIR / 'db.sqlite3'}"
        ),
        conn_max_age=600,
    )
}

INSTALLED_APPS = [
    "daphne",  # runserver 를 ASGI(websocket 포함)로
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # third party
    "rest_framework",
    "channels",
    "corsheaders",
    # local apps
    "meet.common",
    "meet.users",
    "meet.presence",
    "meet.matches",
    "meet.signaling",
    "meet.calls",
]


ASGI_APPLICATION = "meet.config.asgi.application"

# "memory" 는 단일 프로세스 개발/테스트용
if os.environ.get("CHANNEL_LAYER_BACKEND", "redis") == "memory":
    CHANNEL_LAYERS = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}
else:
    CHANNEL_LAYERS = {
        "default": {
            "BACKEND": "channels_redis.core.RedisChannelLayer",
            "CONFIG": {
                "hosts": [REDIS_URL or (REDIS_HOST, REDIS_PORT)],
            },
        }
    }

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
    "EXCEPTION_HANDLER": "meet.common.exceptions.custom_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(days=7),
    "SIGNING_KEY": os.environ.get("JWT_SECRET", SECRET_KEY),
}

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

ROOT_URLCONF = "meet.config.urls"

APPEND_SLASH = False
USE_TZ = True
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
AUTH_USER_MODEL = "users.User"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"
    },
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "loggers": {
        "meet": {
            "handlers": ["console"],
            "level": os.environ.get("MEET_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# ---- presence ----
PRESENCE_BACKEND = os.environ.get(
    "PRESENCE_BACKEND", "meet.presence.store.RedisPresenceStore"
)
PRESENCE_TTL_SEC = int(os.environ.get("PRESENCE_TTL_SEC", "70"))  # 프론트 30초 ping 기준

# ---- matchmaking ----
MATCH_RETRY_INTERVAL_SEC = _env_float("MATCH_RETRY_INTERVAL_SEC", 1.0)
MATCH_RETRY_MAX_INTERVAL_SEC = _env_float("MATCH_RETRY_MAX_INTERVAL_SEC", 3.0)

# ---- signaling ----
SIGNALING_SETTLE_DELAY_SEC = _env_float("SIGNALING_SETTLE_DELAY_SEC", 2.0)
SIGNALING_SEND_RETRIES = int(os.environ.get("SIGNALING_SEND_RETRIES", "3"))
SIGNALING_RETRY_DELAY_SEC = _env_float("SIGNALING_RETRY_DELAY_SEC", 0.2)
NEGOTIATION_TIMEOUT_SEC = _env_float("NEGOTIATION_TIMEOUT_SEC", 15.0)

ICE_SERVERS = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
    {"urls": "stun:stun2.l.google.com:19302"},
    {"urls": "stun:stun3.l.google.com:19302"},
]

# ---- users ----
ALLOWED_EMAIL_DOMAINS = [
    d.strip().lower()
    for d in os.environ.get(
        "ALLOWED_EMAIL_DOMAINS", "edu,ac.uk,university.edu,college.edu,student.edu"
    ).split(",")
    if d.strip()
]
DEV_JWT_ENABLED = os.environ.get("DEV_JWT_ENABLED", "1" if DEBUG else "0") == "1"
