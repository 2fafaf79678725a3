from django.apps import AppConfig


class PresenceConfig(AppConfig):
    name = "meet.presence"
    label = "presence"
