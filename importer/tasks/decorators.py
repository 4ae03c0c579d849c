from functools import wraps
from logging import getLogger

from django.utils.timezone import now

from importer.models import ImportStatus

logger = getLogger(__name__)


def update_job_status(f):
    """
    Decorator for functions which run a batch of an ImportProgress job.

    The job is stamped with the Celery task id and start time on entry. A job
    which already completed or failed is not touched again. An exception
    marks the job as failed, unless something else already finished it, and
    is re-raised.

    Assumes that all wrapped functions get the Celery task self value as the
    first parameter and the ImportProgress object as the second
    """

    @wraps(f)
    def inner(self, progress, *args, **kwargs):
        # Another worker or an operator may have finished the job since this
        # task was queued
        progress.refresh_from_db()
        if progress.is_terminal:
            logger.warning(
                "Job %s was already %s and will not be processed",
                progress,
                progress.status,
                extra={"data": {"object": progress, "args": args, "kwargs": kwargs}},
            )
            return None

        progress.update_fields(task_id=self.request.id, last_started=now())
        try:
            return f(self, progress, *args, **kwargs)
        except Exception as exc:
            progress.refresh_from_db()
            if not progress.is_terminal:
                progress.set_status(
                    ImportStatus.FAILED, reason=f"Unhandled exception: {exc}"
                )
            raise

    return inner
