from django.apps import AppConfig


class UsersConfig(AppConfig):
    name = "meet.users"
    label = "users"
