from logging import getLogger

from asgiref.sync import AsyncToSync
from channels.layers import get_channel_layer

logger = getLogger(__name__)

IMPORT_PROGRESS_GROUP = "import_progress"


def progress_snapshot(progress, message=""):
    return {
        "job_id": progress.pk,
        "import_type": progress.import_type,
        "status": progress.status,
        "message": message,
        "percent_complete": progress.percent_complete,
        "current_page": progress.current_page,
        "page_offset": progress.page_offset,
        "current_batch": progress.current_batch,
        "total_batches": progress.total_batches_estimated,
        "total_available": progress.total_available,
        "items_processed": progress.items_processed,
        "items_imported": progress.items_imported,
        "items_skipped": progress.items_skipped,
        "records_failed": progress.records_failed,
        "assets_downloaded": progress.assets_downloaded,
        "failed_count": progress.failed_count,
        "score_delta": progress.score_delta,
        "dry_run": progress.dry_run,
    }


def broadcast_progress(progress, message=""):
    """
    Send a snapshot of ``progress`` to every observer of the progress group.
    Without a configured channel layer this does nothing, and a failed send
    is logged without interrupting the job.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.debug("No channel layer configured; progress not broadcast")
        return

    try:
        AsyncToSync(channel_layer.group_send)(
            IMPORT_PROGRESS_GROUP,
            {
                "type": "import_progress",
                "snapshot": progress_snapshot(progress, message),
            },
        )
    except Exception:
        logger.exception("Unable to broadcast progress for job %s", progress.pk)
