import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Game",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("name", models.CharField(max_length=255)),
                (
                    "slug",
                    models.SlugField(allow_unicode=True, max_length=255, unique=True),
                ),
                ("release_year", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("developer", models.CharField(blank=True, default="", max_length=255)),
                ("publisher", models.CharField(blank=True, default="", max_length=255)),
                ("genres", models.JSONField(blank=True, default=list)),
                ("platforms", models.JSONField(blank=True, default=list)),
                (
                    "cover_image_url",
                    models.URLField(blank=True, default="", max_length=1000),
                ),
                ("metacritic", models.PositiveSmallIntegerField(blank=True, null=True)),
                (
                    "rawg_id",
                    models.PositiveIntegerField(blank=True, db_index=True, null=True),
                ),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                ("created", models.DateTimeField(auto_now_add=True)),
            ],
            options={"ordering": ("name",)},
        ),
        migrations.CreateModel(
            name="GameSession",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(
                        db_index=True, default=django.utils.timezone.now
                    ),
                ),
                ("is_completed", models.BooleanField(db_index=True, default=False)),
                ("total_score", models.IntegerField(default=0)),
            ],
        ),
        migrations.CreateModel(
            name="Screenshot",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("image_url", models.CharField(max_length=500)),
                (
                    "difficulty",
                    models.PositiveSmallIntegerField(
                        choices=[(1, "Easy"), (2, "Medium"), (3, "Hard")], default=1
                    ),
                ),
                ("width", models.PositiveIntegerField(blank=True, null=True)),
                ("height", models.PositiveIntegerField(blank=True, null=True)),
                ("created", models.DateTimeField(auto_now_add=True)),
                (
                    "game",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="screenshots",
                        to="gamebox.game",
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="Guess",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("is_correct", models.BooleanField(default=False)),
                ("time_taken_ms", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "power_up_used",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("hint_year", "Release year hint"),
                            ("hint_publisher", "Publisher hint"),
                            ("extra_time", "Extra time"),
                        ],
                        default="",
                        max_length=30,
                    ),
                ),
                ("score_earned", models.IntegerField(default=0)),
                ("created", models.DateTimeField(auto_now_add=True)),
                (
                    "session",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="guesses",
                        to="gamebox.gamesession",
                    ),
                ),
            ],
            options={"verbose_name_plural": "guesses"},
        ),
    ]
