from django.apps import AppConfig


class CallsConfig(AppConfig):
    name = "meet.calls"
    label = "calls"
