from django.apps import AppConfig


class MatchesConfig(AppConfig):
    name = "meet.matches"
    label = "matches"
