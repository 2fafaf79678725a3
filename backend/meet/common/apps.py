from django.apps import AppConfig


class CommonConfig(AppConfig):
    name = "meet.common"
    label = "common"
