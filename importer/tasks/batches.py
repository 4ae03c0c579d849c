from logging import getLogger

from celery import Task
from celery.utils import uuid

from gamebox.contextmanagers import cache_lock
from gamebox.logging import GameboxLogger
from importer.celery import app
from importer.config import importer_setting
from importer.engine import BatchEngine
from importer.models import ImportProgress, ImportStatus
from importer.sources import source_for

from .decorators import update_job_status

logger = getLogger(__name__)
structured_logger = GameboxLogger.get_logger(__name__)


@app.task(bind=True)
def process_batch_task(self: Task, progress_pk: int, is_resume: bool = False):
    """
    Run one batch of a job and queue the next one while the job is still in
    progress.

    Only one batch of a job runs at a time, and only the task most recently
    queued for the job may run it. A task which finds the lock held by
    another worker is queued again after ``LOCK_RETRY_DELAY`` seconds, so a
    lock left behind by a lost worker delays the job instead of stranding
    it. A task which has been superseded by a newer one does nothing.
    """
    lock_key = f"{self.name}:{progress_pk}"
    with cache_lock(lock_key, self.request.hostname) as acquired:
        progress = ImportProgress.objects.get(pk=progress_pk)
        if is_superseded(progress, self.request.id):
            logger.info(
                "Task %s was superseded by %s for job %s",
                self.request.id,
                progress.task_id,
                progress_pk,
            )
            return None
        if not acquired:
            if progress.status == ImportStatus.IN_PROGRESS:
                retry_batch(self, progress, is_resume)
            return None
        result = process_batch(self, progress, is_resume=is_resume)

    if result is not None and result["should_continue"]:
        result["next_batch_queued"] = schedule_next_batch(progress_pk) is not None
    return result


def is_superseded(progress: ImportProgress, task_id) -> bool:
    return progress.task_id is not None and str(progress.task_id) != str(task_id)


def retry_batch(task: Task, progress: ImportProgress, is_resume: bool):
    delay = importer_setting("LOCK_RETRY_DELAY")
    logger.info(
        "A batch of job %s is already running elsewhere; retrying in %ss",
        progress.pk,
        delay,
    )
    return task.apply_async(
        (progress.pk,),
        {"is_resume": is_resume},
        countdown=delay,
        task_id=task.request.id,
        priority=importer_setting("BATCH_TASK_PRIORITY"),
    )


@update_job_status
def process_batch(self: Task, progress: ImportProgress, is_resume: bool = False):
    structured_logger.info(
        "Batch task started.",
        event_code="batch_task_started",
        progress=progress,
        task_id=self.request.id,
        is_resume=is_resume,
    )
    engine = BatchEngine(source_for(progress.import_type))
    result = engine.run(progress.pk)
    return {
        **result.as_dict(),
        "should_continue": result.should_continue,
        "next_batch_queued": False,
    }


def enqueue_batch(progress: ImportProgress, is_resume: bool = False):
    """
    Queue a batch of ``progress``. The task id is stored on the job before the
    task is sent, which supersedes any task queued for it earlier.
    """
    task_id = uuid()
    progress.update_fields(task_id=task_id)
    return process_batch_task.apply_async(
        (progress.pk,),
        {"is_resume": is_resume},
        task_id=task_id,
        priority=importer_setting("BATCH_TASK_PRIORITY"),
    )


def schedule_next_batch(progress_pk: int):
    """
    Queue the next batch when the job is still in progress. A paused,
    completed, failed or missing job gets nothing queued.
    """
    progress = ImportProgress.objects.filter(pk=progress_pk).first()
    if progress is None:
        logger.warning("Job %s no longer exists; no batch queued", progress_pk)
        return None
    if progress.status != ImportStatus.IN_PROGRESS:
        logger.info(
            "Job %s is %s; no further batch queued", progress_pk, progress.status
        )
        return None

    async_result = enqueue_batch(progress)
    structured_logger.info(
        "Next batch queued.",
        event_code="batch_queued",
        progress=progress,
        task_id=async_result.id,
    )
    return async_result
