import django.core.serializers.json
import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ImportProgress",
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
                    "import_type",
                    models.CharField(
                        choices=[
                            ("full_import", "Full catalog import"),
                            ("sync_new_releases", "New release sync"),
                            ("recalculate_scores", "Score recalculation"),
                        ],
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("in_progress", "In progress"),
                            ("paused", "Paused"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "batch_size",
                    models.PositiveIntegerField(
                        validators=[django.core.validators.MinValueValidator(1)]
                    ),
                ),
                (
                    "options",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Job parameters fixed when the job was started",
                    ),
                ),
                ("current_page", models.PositiveIntegerField(default=1)),
                (
                    "page_offset",
                    models.PositiveIntegerField(
                        default=0, help_text="Records of current_page already examined"
                    ),
                ),
                ("current_batch", models.PositiveIntegerField(default=0)),
                (
                    "items_processed",
                    models.PositiveIntegerField(
                        default=0, help_text="Records examined so far"
                    ),
                ),
                (
                    "items_imported",
                    models.PositiveIntegerField(
                        default=0, help_text="Records created or updated"
                    ),
                ),
                (
                    "items_skipped",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Duplicate, disqualified or unchanged records",
                    ),
                ),
                (
                    "records_failed",
                    models.PositiveIntegerField(
                        default=0, help_text="Records which raised an error"
                    ),
                ),
                ("assets_downloaded", models.PositiveIntegerField(default=0)),
                (
                    "failed_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Failed records plus failed asset downloads",
                    ),
                ),
                (
                    "score_delta",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Sum of absolute score changes"
                    ),
                ),
                ("total_available", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "total_batches_estimated",
                    models.PositiveIntegerField(blank=True, null=True),
                ),
                (
                    "recent_errors",
                    models.JSONField(
                        blank=True,
                        default=list,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                    ),
                ),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "task_id",
                    models.UUIDField(
                        blank=True,
                        help_text="UUID of the last Celery task to process this job",
                        null=True,
                    ),
                ),
                (
                    "last_started",
                    models.DateTimeField(
                        blank=True,
                        help_text="Last time when a worker started a batch of this job",
                        null=True,
                    ),
                ),
                ("created", models.DateTimeField(auto_now_add=True)),
                ("modified", models.DateTimeField(auto_now=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("paused_at", models.DateTimeField(blank=True, null=True)),
                ("resumed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name_plural": "import progress",
                "ordering": ("-created",),
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("status__in", ["pending", "in_progress", "paused"])
                        ),
                        fields=("import_type",),
                        name="importer_single_active_job_per_type",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "items_processed",
                                models.F("items_imported")
                                + models.F("items_skipped")
                                + models.F("records_failed"),
                            )
                        ),
                        name="importer_processed_equals_outcomes",
                    ),
                ],
            },
        ),
    ]
