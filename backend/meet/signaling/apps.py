from django.apps import AppConfig


class SignalingConfig(AppConfig):
    name = "meet.signaling"
    label = "signaling"
