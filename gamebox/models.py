from django.db import models
from django.utils import timezone


class Game(models.Model):
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True, allow_unicode=True)
    release_year = models.PositiveSmallIntegerField(null=True, blank=True)
    developer = models.CharField(max_length=255, blank=True, default="")
    publisher = models.CharField(max_length=255, blank=True, default="")
    genres = models.JSONField(default=list, blank=True)
    platforms = models.JSONField(default=list, blank=True)
    cover_image_url = models.URLField(max_length=1000, blank=True, default="")
    metacritic = models.PositiveSmallIntegerField(null=True, blank=True)

    #: Identifier of the game in the upstream catalog, when it came from there
    rawg_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)

    created = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("name",)

    def __str__(self):
        return self.name


class Screenshot(models.Model):
    class Difficulty(models.IntegerChoices):
        EASY = 1, "Easy"
        MEDIUM = 2, "Medium"
        HARD = 3, "Hard"

    game = models.ForeignKey(
        Game, on_delete=models.CASCADE, related_name="screenshots"
    )
    image_url = models.CharField(max_length=500)
    difficulty = models.PositiveSmallIntegerField(
        choices=Difficulty.choices, default=Difficulty.EASY
    )
    width = models.PositiveIntegerField(null=True, blank=True)
    height = models.PositiveIntegerField(null=True, blank=True)

    created = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.image_url


class GameSession(models.Model):
    started_at = models.DateTimeField(default=timezone.now, db_index=True)
    is_completed = models.BooleanField(default=False, db_index=True)
    total_score = models.IntegerField(default=0)

    def __str__(self):
        return f"Session {self.pk} ({self.total_score} points)"


class Guess(models.Model):
    class PowerUp(models.TextChoices):
        HINT_YEAR = "hint_year", "Release year hint"
        HINT_PUBLISHER = "hint_publisher", "Publisher hint"
        EXTRA_TIME = "extra_time", "Extra time"

    session = models.ForeignKey(
        GameSession, on_delete=models.CASCADE, related_name="guesses"
    )
    is_correct = models.BooleanField(default=False)
    time_taken_ms = models.PositiveIntegerField(null=True, blank=True)
    power_up_used = models.CharField(
        max_length=30, blank=True, default="", choices=PowerUp.choices
    )
    score_earned = models.IntegerField(default=0)

    created = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "guesses"

    def __str__(self):
        return f"Guess {self.pk} in session {self.session_id}"
