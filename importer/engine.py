"""
The batch engine walks a paginated collection one batch at a time, keeping
its cursor and counters in an ImportProgress row.

What is walked and how one record is handled is supplied by a BatchSource.
The engine itself only knows about pages, records and outcomes.
"""

from logging import getLogger

from gamebox.logging import GameboxLogger
from importer.broadcast import broadcast_progress
from importer.config import importer_setting
from importer.models import COUNTER_FIELDS, ImportProgress, ImportStatus

logger = getLogger(__name__)
structured_logger = GameboxLogger.get_logger(__name__)


class ItemOutcome:
    IMPORTED = "imported"
    SKIPPED = "skipped"

    def __init__(
        self, kind, reason="", assets_downloaded=0, asset_failures=0, score_delta=0
    ):
        self.kind = kind
        self.reason = reason
        self.assets_downloaded = assets_downloaded
        self.asset_failures = asset_failures
        self.score_delta = score_delta

    def __repr__(self):
        return f"<ItemOutcome {self.kind} {self.reason!r}>"

    @classmethod
    def imported(cls, **kwargs):
        return cls(cls.IMPORTED, **kwargs)

    @classmethod
    def skipped(cls, reason=""):
        return cls(cls.SKIPPED, reason=reason)


class BatchSource:
    """
    Strategy for one kind of batch job.

    Subclasses describe the collection (``count_available``, ``fetch_page``)
    and the unit of work (``process_item``). Exceptions raised by
    ``process_item`` are counted against the record unless they are listed in
    ``batch_fatal_errors``, which abort the batch and fail the job.

    ``process_item`` opens its own transaction around its writes, so a
    failed record leaves nothing half written. It should not hold one open
    while waiting on the network.
    """

    import_type = None
    batch_fatal_errors = ()

    def default_options(self):
        return {}

    def build_options(self, **options):
        """Merge caller options over the defaults, dropping unset values"""
        merged = self.default_options()
        merged.update({k: v for k, v in options.items() if v is not None})
        return merged

    def page_size(self, progress):
        return progress.options.get("page_size") or importer_setting("PAGE_SIZE")

    def count_available(self, progress):
        raise NotImplementedError

    def fetch_page(self, progress, page):
        raise NotImplementedError

    def process_item(self, progress, item):
        raise NotImplementedError

    def item_key(self, item):
        return str(item)


class PauseToken:
    """
    Cooperative pause signal checked by the engine before every page and
    every record.

    The token is set when ``request()`` was called in this process or when
    the persisted job status has been changed to paused or cancelled, which
    is re-read on every check.
    """

    def __init__(self):
        self._requested = False

    def request(self):
        self._requested = True

    def is_set(self, progress=None):
        if self._requested:
            return True
        if progress is None:
            return False
        return progress.refresh_status() in (ImportStatus.PAUSED, ImportStatus.FAILED)


class BatchCounters:
    """Counter changes made by the current batch"""

    def __init__(self):
        for name in COUNTER_FIELDS:
            setattr(self, name, 0)

    def record(self, outcome):
        self.items_processed += 1
        if outcome.kind == ItemOutcome.IMPORTED:
            self.items_imported += 1
        else:
            self.items_skipped += 1
        self.assets_downloaded += outcome.assets_downloaded
        self.failed_count += outcome.asset_failures
        self.score_delta += outcome.score_delta

    def record_failure(self):
        self.items_processed += 1
        self.records_failed += 1
        self.failed_count += 1

    def as_dict(self):
        return {name: getattr(self, name) for name in COUNTER_FIELDS}


class BatchResult:
    def __init__(self, progress, is_paused=False, is_complete=False, counters=None):
        self.progress = progress
        self.is_paused = is_paused
        self.is_complete = is_complete
        self.counters = counters or BatchCounters()

    def __repr__(self):
        return (
            f"<BatchResult job={self.progress.pk} paused={self.is_paused} "
            f"complete={self.is_complete}>"
        )

    @property
    def should_continue(self):
        return not (self.is_paused or self.is_complete) and (
            self.progress.status == ImportStatus.IN_PROGRESS
        )

    def as_dict(self):
        return {
            "job_id": self.progress.pk,
            "status": self.progress.status,
            "is_paused": self.is_paused,
            "is_complete": self.is_complete,
            "current_page": self.progress.current_page,
            "page_offset": self.progress.page_offset,
            "current_batch": self.progress.current_batch,
            "batch": self.counters.as_dict(),
        }


class BatchEngine:
    def __init__(self, source, checkpoint_every=None, broadcaster=broadcast_progress):
        self.source = source
        self.checkpoint_every = checkpoint_every or importer_setting("CHECKPOINT_EVERY")
        self.broadcaster = broadcaster

    def run(self, progress_pk, pause_token=None):
        """
        Process one batch of the job ``progress_pk`` and return a BatchResult.

        A paused job returns at once, and a completed or failed job is left
        untouched. Any error which escapes the per-record boundary marks the
        job as failed and is re-raised.
        """
        progress = ImportProgress.objects.get(pk=progress_pk)
        job_logger = structured_logger.bind(progress=progress)

        if progress.status == ImportStatus.PAUSED:
            job_logger.info("Job is paused; batch skipped.", event_code="batch_skipped")
            return BatchResult(progress, is_paused=True)

        if progress.is_terminal:
            job_logger.info(
                "Job already finished; batch skipped.", event_code="batch_skipped"
            )
            return BatchResult(
                progress, is_complete=progress.status == ImportStatus.COMPLETED
            )

        pause_token = pause_token or PauseToken()
        base = {name: getattr(progress, name) for name in COUNTER_FIELDS}
        counters = BatchCounters()
        page, offset = progress.current_page, progress.page_offset
        exhausted = False

        job_logger.info(
            "Batch started.",
            event_code="batch_started",
            batch_number=progress.current_batch + 1,
            page=page,
            page_offset=offset,
            batch_size=progress.batch_size,
        )

        try:
            while counters.items_processed < progress.batch_size and not exhausted:
                if pause_token.is_set(progress):
                    return self._pause(
                        progress, base, counters, page, offset, job_logger
                    )

                results = self.source.fetch_page(progress, page)

                for item in results.results[offset:]:
                    if counters.items_processed >= progress.batch_size:
                        break
                    if pause_token.is_set(progress):
                        return self._pause(
                            progress, base, counters, page, offset, job_logger
                        )

                    self._process_item(progress, item, counters, job_logger)
                    offset += 1

                    if counters.items_processed % self.checkpoint_every == 0:
                        self._checkpoint(progress, base, counters, page, offset)

                if offset < len(results):
                    # The batch filled up mid-page; the next one starts at offset
                    break
                offset = 0
                if results.has_next:
                    page += 1
                else:
                    exhausted = True

            self._checkpoint(
                progress,
                base,
                counters,
                page,
                offset,
                current_batch=progress.current_batch + 1,
            )

            total = progress.total_available
            # An operator may have paused or cancelled since the last record
            is_complete = progress.refresh_status() == ImportStatus.IN_PROGRESS and (
                exhausted or (total is not None and progress.items_processed >= total)
            )
            if is_complete:
                progress.set_status(ImportStatus.COMPLETED)
        except Exception as exc:
            self._fail(progress, base, counters, page, offset, exc, job_logger)
            raise

        job_logger.info(
            "Batch finished.",
            event_code="batch_finished" if not is_complete else "job_completed",
            page=page,
            page_offset=offset,
            **counters.as_dict(),
        )
        self.broadcaster(progress, self._summary(progress, counters, is_complete))

        return BatchResult(progress, is_complete=is_complete, counters=counters)

    def _process_item(self, progress, item, counters, job_logger):
        key = self.source.item_key(item)
        try:
            outcome = self.source.process_item(progress, item)
        except self.source.batch_fatal_errors:
            raise
        except Exception as exc:
            counters.record_failure()
            progress.record_error(key, exc, importer_setting("RECENT_ERRORS_LIMIT"))
            job_logger.error(
                "Record failed; continuing with the next one.",
                event_code="batch_record_failed",
                reason=str(exc),
                reason_code=type(exc).__name__,
                item_key=key,
                exc_info=True,
            )
            return

        counters.record(outcome)
        job_logger.debug(
            "Record processed.",
            event_code=f"batch_record_{outcome.kind}",
            item_key=key,
            detail=outcome.reason or None,
        )

    def _checkpoint(self, progress, base, counters, page, offset, **extra):
        delta = counters.as_dict()
        values = {name: base[name] + delta[name] for name in COUNTER_FIELDS}
        progress.update_progress(
            current_page=page,
            page_offset=offset,
            recent_errors=progress.recent_errors,
            **values,
            **extra,
        )
        logger.debug(
            "Checkpoint for job %s at page %s offset %s: %s",
            progress.pk,
            page,
            offset,
            values,
        )

    def _pause(self, progress, base, counters, page, offset, job_logger):
        self._checkpoint(progress, base, counters, page, offset)
        if progress.status == ImportStatus.IN_PROGRESS:
            progress.set_status(ImportStatus.PAUSED)

        job_logger.info(
            "Pause received; progress saved.",
            event_code="batch_paused",
            page=page,
            page_offset=offset,
            **counters.as_dict(),
        )
        self.broadcaster(
            progress,
            f"Paused after {progress.items_processed} records",
        )
        return BatchResult(progress, is_paused=True, counters=counters)

    def _fail(self, progress, base, counters, page, offset, exc, job_logger):
        try:
            self._checkpoint(progress, base, counters, page, offset)
        except Exception:
            logger.exception("Unable to store progress for failed job %s", progress.pk)

        progress.set_status(ImportStatus.FAILED, reason=f"{type(exc).__name__}: {exc}")
        job_logger.error(
            "Batch failed; job marked as failed.",
            event_code="job_failed",
            reason=str(exc),
            reason_code=type(exc).__name__,
            page=page,
            exc_info=True,
        )
        self.broadcaster(progress, f"Failed: {exc}")

    def _summary(self, progress, counters, is_complete):
        if is_complete:
            return (
                f"Completed: {progress.items_imported} imported, "
                f"{progress.items_skipped} skipped, {progress.failed_count} failed"
            )
        batch = f"Batch {progress.current_batch}"
        if progress.total_batches_estimated:
            batch = f"{batch} of {progress.total_batches_estimated}"
        return (
            f"{batch} done: {counters.items_imported} imported, "
            f"{counters.items_skipped} skipped, {counters.records_failed} failed"
        )
