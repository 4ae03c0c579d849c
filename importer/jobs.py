"""
Operator actions on batch jobs: start, pause, resume, cancel and lookups.

These are the only functions which change a job's status from outside the
batch engine.
"""

from django.db import IntegrityError, transaction

from gamebox.logging import GameboxLogger
from importer.broadcast import broadcast_progress
from importer.config import importer_setting
from importer.exceptions import ConfigurationError, JobStateError
from importer.models import ImportProgress, ImportStatus, ImportType
from importer.sources import source_for
from importer.tasks.batches import enqueue_batch

structured_logger = GameboxLogger.get_logger(__name__)


def get_job(pk):
    return ImportProgress.objects.filter(pk=pk).first()


def get_active_job(import_type):
    return ImportProgress.objects.find_active(import_type)


def _get_job_or_error(pk):
    job = get_job(pk)
    if job is None:
        raise JobStateError(f"Job {pk} does not exist")
    return job


def start_job(import_type, batch_size=None, **options):
    """
    Create a job, count the collection and queue the first batch.

    Raises ConfigurationError when the job cannot start: an unknown job kind,
    a bad batch size, a missing API key or another job of the same kind which
    is still pending, running or paused.
    """
    if import_type not in ImportType.values:
        raise ConfigurationError(f"Unknown import type: {import_type}")

    if batch_size is None:
        batch_size = importer_setting("DEFAULT_BATCH_SIZE")
    if batch_size < 1:
        raise ConfigurationError("Batch size must be at least 1")

    active = get_active_job(import_type)
    if active is not None:
        raise ConfigurationError(
            f"A {import_type} job is already {active.status} (job {active.pk})"
        )

    source = source_for(import_type)
    job_options = source.build_options(**options)

    try:
        with transaction.atomic():
            job = ImportProgress.objects.create_job(
                import_type, batch_size, job_options
            )
    except IntegrityError as exc:
        raise ConfigurationError(
            f"A {import_type} job is already pending, in progress or paused"
        ) from exc

    job_logger = structured_logger.bind(progress=job)

    try:
        total = source.count_available(job)
    except Exception as exc:
        job.set_status(ImportStatus.FAILED, reason=f"Unable to count records: {exc}")
        job_logger.error(
            "Job could not be started.",
            event_code="job_start_failed",
            reason=str(exc),
            reason_code=type(exc).__name__,
        )
        raise

    job.update_fields(
        total_available=total, total_batches_estimated=job.estimate_batches(total)
    )
    job.set_status(ImportStatus.IN_PROGRESS)

    job_logger.info(
        "Job started.",
        event_code="job_started",
        total_available=total,
        total_batches=job.total_batches_estimated,
        batch_size=batch_size,
        options=job_options,
    )
    broadcast_progress(
        job, f"Started: {total} records in {job.total_batches_estimated} batches"
    )
    enqueue_batch(job)
    return job


def pause_job(pk):
    """
    Ask a running job to stop. The running batch notices before its next
    record, saves its progress and does not queue another batch.
    """
    job = _get_job_or_error(pk)
    if job.status != ImportStatus.IN_PROGRESS:
        raise JobStateError(f"Cannot pause job {pk} with status: {job.status}")

    job.set_status(ImportStatus.PAUSED)
    structured_logger.info("Job paused.", event_code="job_paused", progress=job)
    broadcast_progress(job, "Pause requested")
    return job


def resume_job(pk):
    job = _get_job_or_error(pk)
    if job.status != ImportStatus.PAUSED:
        raise JobStateError(f"Cannot resume job {pk} with status: {job.status}")

    job.set_status(ImportStatus.IN_PROGRESS)
    structured_logger.info(
        "Job resumed.",
        event_code="job_resumed",
        progress=job,
        current_page=job.current_page,
        current_batch=job.current_batch,
    )
    broadcast_progress(job, "Resumed")
    enqueue_batch(job, is_resume=True)
    return job


def cancel_job(pk):
    """
    Stop a job for good by marking it as failed. A batch which is running
    finishes its current record and then stops.
    """
    job = _get_job_or_error(pk)
    if job.is_terminal:
        raise JobStateError(f"Cannot cancel job {pk} with status: {job.status}")

    job.set_status(ImportStatus.FAILED, reason="Cancelled by operator")
    structured_logger.warning(
        "Job cancelled.",
        event_code="job_cancelled",
        reason="Cancelled by operator",
        reason_code="operator_cancelled",
        progress=job,
    )
    broadcast_progress(job, "Cancelled")
    return job
