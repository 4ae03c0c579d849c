"""
See the module-level docstring for implementation details
"""

import math
from logging import getLogger

from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

logger = getLogger(__name__)


class ImportType(models.TextChoices):
    FULL_IMPORT = "full_import", "Full catalog import"
    SYNC_NEW_RELEASES = "sync_new_releases", "New release sync"
    RECALCULATE_SCORES = "recalculate_scores", "Score recalculation"


class ImportStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    IN_PROGRESS = "in_progress", "In progress"
    PAUSED = "paused", "Paused"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


ACTIVE_STATUSES = (
    ImportStatus.PENDING,
    ImportStatus.IN_PROGRESS,
    ImportStatus.PAUSED,
)
TERMINAL_STATUSES = (ImportStatus.COMPLETED, ImportStatus.FAILED)

#: Counters stored as absolute values at every checkpoint
COUNTER_FIELDS = (
    "items_processed",
    "items_imported",
    "items_skipped",
    "records_failed",
    "assets_downloaded",
    "failed_count",
    "score_delta",
)

PROGRESS_FIELDS = COUNTER_FIELDS + (
    "current_page",
    "page_offset",
    "current_batch",
    "recent_errors",
)


class ImportProgressQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status__in=ACTIVE_STATUSES)


class ImportProgressManager(models.Manager.from_queryset(ImportProgressQuerySet)):
    def create_job(self, import_type, batch_size, options=None):
        job = self.create(
            import_type=import_type,
            batch_size=batch_size,
            options=options or {},
            status=ImportStatus.PENDING,
        )
        logger.info(
            "Created %s job %s with batch size %s", import_type, job.pk, batch_size
        )
        return job

    def find_active(self, import_type):
        """
        Return the pending, running or paused job of this kind, if there is
        one. The newest row wins, although the unique constraint means there
        can only be one.
        """
        active = self.active().filter(import_type=import_type)
        return active.order_by("-created").first()


class ImportProgress(models.Model):
    import_type = models.CharField(max_length=30, choices=ImportType.choices)
    status = models.CharField(
        max_length=20,
        choices=ImportStatus.choices,
        default=ImportStatus.PENDING,
        db_index=True,
    )

    batch_size = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    options = models.JSONField(
        help_text="Job parameters fixed when the job was started",
        encoder=DjangoJSONEncoder,
        default=dict,
        blank=True,
    )

    current_page = models.PositiveIntegerField(default=1)
    page_offset = models.PositiveIntegerField(
        default=0, help_text="Records of current_page already examined"
    )
    current_batch = models.PositiveIntegerField(default=0)

    items_processed = models.PositiveIntegerField(
        default=0, help_text="Records examined so far"
    )
    items_imported = models.PositiveIntegerField(
        default=0, help_text="Records created or updated"
    )
    items_skipped = models.PositiveIntegerField(
        default=0, help_text="Duplicate, disqualified or unchanged records"
    )
    records_failed = models.PositiveIntegerField(
        default=0, help_text="Records which raised an error"
    )
    assets_downloaded = models.PositiveIntegerField(default=0)
    failed_count = models.PositiveIntegerField(
        default=0, help_text="Failed records plus failed asset downloads"
    )
    score_delta = models.PositiveBigIntegerField(
        default=0, help_text="Sum of absolute score changes"
    )

    total_available = models.PositiveIntegerField(null=True, blank=True)
    total_batches_estimated = models.PositiveIntegerField(null=True, blank=True)

    recent_errors = models.JSONField(
        encoder=DjangoJSONEncoder, default=list, blank=True
    )
    failure_reason = models.TextField(blank=True, default="")

    task_id = models.UUIDField(
        help_text="UUID of the last Celery task to process this job",
        null=True,
        blank=True,
    )
    last_started = models.DateTimeField(
        help_text="Last time when a worker started a batch of this job",
        null=True,
        blank=True,
    )

    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    resumed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = ImportProgressManager()

    class Meta:
        verbose_name_plural = "import progress"
        ordering = ("-created",)
        constraints = [
            models.UniqueConstraint(
                fields=["import_type"],
                condition=Q(status__in=ACTIVE_STATUSES),
                name="importer_single_active_job_per_type",
            ),
            models.CheckConstraint(
                condition=Q(
                    items_processed=F("items_imported")
                    + F("items_skipped")
                    + F("records_failed")
                ),
                name="importer_processed_equals_outcomes",
            ),
        ]

    def __str__(self):
        return f"ImportProgress #{self.pk} ({self.import_type}, {self.status})"

    @property
    def is_active(self):
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def dry_run(self):
        return bool(self.options.get("dry_run"))

    @property
    def percent_complete(self):
        if not self.total_available:
            return 100 if self.status == ImportStatus.COMPLETED else 0
        return min(100, round(100 * self.items_processed / self.total_available))

    def estimate_batches(self, total_available):
        return math.ceil(total_available / self.batch_size)

    def update_fields(self, **fields):
        """
        Set ``fields`` on the instance and write only those columns, so a
        concurrent status change by an operator is never overwritten.
        """
        for name, value in fields.items():
            setattr(self, name, value)
        self.save(update_fields=[*fields, "modified"])

    def update_progress(self, **counters):
        """
        Store absolute counter and cursor values. Only the engine calls this.
        """
        unknown = set(counters) - set(PROGRESS_FIELDS)
        if unknown:
            raise ValueError(f"Not progress fields: {', '.join(sorted(unknown))}")
        self.update_fields(**counters)

    def set_status(self, status, reason=""):
        """
        Move the job to ``status`` and stamp the matching timestamp. A move to
        in progress counts as a resume when the job was paused and as the
        start otherwise.
        """
        now = timezone.now()
        fields = {"status": status}

        if status == ImportStatus.IN_PROGRESS:
            if self.status == ImportStatus.PAUSED:
                fields["resumed_at"] = now
            elif self.started_at is None:
                fields["started_at"] = now
        elif status == ImportStatus.PAUSED:
            fields["paused_at"] = now
        elif status in TERMINAL_STATUSES:
            fields["completed_at"] = now

        if status == ImportStatus.FAILED and reason:
            fields["failure_reason"] = reason

        logger.info("Job %s moving from %s to %s", self.pk, self.status, status)
        self.update_fields(**fields)
        return self

    def refresh_status(self):
        """Reload the persisted status, which an operator may have changed."""
        self.refresh_from_db(fields=["status"])
        return self.status

    def record_error(self, key, error, limit):
        """
        Append a per-record failure to ``recent_errors``, keeping the newest
        ``limit`` entries. The list is written with the next checkpoint.
        """
        entry = {"key": key, "error": str(error), "at": timezone.now().isoformat()}
        self.recent_errors = [*self.recent_errors, entry][-limit:]
