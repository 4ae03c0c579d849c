from django.apps.config import AppConfig


class GameboxAppConfig(AppConfig):
    name = "gamebox"
    verbose_name = "Gamebox catalog"
