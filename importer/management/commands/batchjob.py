"""
Operate the resumable batch jobs from the command line.

Usage:
    python manage.py batchjob start full_import [--batch-size 100]
        [--min-metacritic 70] [--screenshots-per-game 3] [--page-size 40]
    python manage.py batchjob start sync_new_releases [--months-back 6]
    python manage.py batchjob start recalculate_scores [--dry-run]
        [--start-date 2024-01-01] [--end-date 2024-06-30]
    python manage.py batchjob pause <job id>
    python manage.py batchjob resume <job id>
    python manage.py batchjob cancel <job id>
    python manage.py batchjob status [<job id> | --type full_import]

Starting a job counts the collection and queues the first batch on the
Celery worker; the worker keeps queueing batches until the job completes,
fails or is paused.
"""

from argparse import ArgumentParser

from django.core.management.base import BaseCommand, CommandError

from importer import jobs
from importer.broadcast import progress_snapshot
from importer.exceptions import ImporterError
from importer.models import ImportProgress, ImportType


class Command(BaseCommand):
    help = "Start, pause, resume, cancel or inspect batch jobs"  # NOQA: A003

    def add_arguments(self, parser: ArgumentParser) -> None:
        actions = parser.add_subparsers(dest="action", required=True)

        start = actions.add_parser("start", help="Start a new job")
        start.add_argument("import_type", choices=ImportType.values)
        start.add_argument("--batch-size", type=int)
        start.add_argument("--page-size", type=int)
        start.add_argument("--min-metacritic", type=int)
        start.add_argument("--screenshots-per-game", type=int)
        start.add_argument("--months-back", type=int)
        start.add_argument("--dry-run", action="store_true", default=None)
        start.add_argument("--start-date")
        start.add_argument("--end-date")

        for name, help_text in (
            ("pause", "Pause a running job"),
            ("resume", "Resume a paused job"),
            ("cancel", "Cancel a job which has not finished"),
        ):
            action = actions.add_parser(name, help=help_text)
            action.add_argument("job_id", type=int)

        status = actions.add_parser("status", help="Show job progress")
        status.add_argument("job_id", type=int, nargs="?")
        status.add_argument("--type", dest="status_type", choices=ImportType.values)

    def handle(self, *, action: str, **options) -> None:
        try:
            if action == "start":
                job = self.start(options)
                self.stdout.write(
                    self.style.SUCCESS(
                        f"Started {job.import_type} job {job.pk}: "
                        f"{job.total_available} records, "
                        f"about {job.total_batches_estimated} batches"
                    )
                )
            elif action == "pause":
                job = jobs.pause_job(options["job_id"])
                self.stdout.write(self.style.SUCCESS(f"Paused job {job.pk}"))
            elif action == "resume":
                job = jobs.resume_job(options["job_id"])
                self.stdout.write(
                    self.style.SUCCESS(
                        f"Resumed job {job.pk} at batch {job.current_batch + 1}"
                    )
                )
            elif action == "cancel":
                job = jobs.cancel_job(options["job_id"])
                self.stdout.write(self.style.WARNING(f"Cancelled job {job.pk}"))
            else:
                self.status(options.get("job_id"), options.get("status_type"))
        except ImporterError as exc:
            raise CommandError(str(exc)) from exc

    def start(self, options):
        job_options = {
            "page_size": options.get("page_size"),
            "min_metacritic": options.get("min_metacritic"),
            "screenshots_per_game": options.get("screenshots_per_game"),
            "months_back": options.get("months_back"),
            "dry_run": options.get("dry_run"),
            "start_date": options.get("start_date"),
            "end_date": options.get("end_date"),
        }
        return jobs.start_job(
            options["import_type"],
            batch_size=options.get("batch_size"),
            **job_options,
        )

    def status(self, job_id, import_type):
        if job_id is not None:
            found = [jobs.get_job(job_id)]
            if found[0] is None:
                raise CommandError(f"Job {job_id} does not exist")
        elif import_type:
            found = [jobs.get_active_job(import_type)]
            if found[0] is None:
                self.stdout.write(f"No active {import_type} job")
                return
        else:
            found = list(ImportProgress.objects.active())
            if not found:
                self.stdout.write("No active jobs")
                return

        for job in found:
            snapshot = progress_snapshot(job)
            self.stdout.write(
                "Job {job_id} ({import_type}): {status}, {percent_complete}% "
                "complete, batch {current_batch} of {total_batches}, "
                "page {current_page} (offset {page_offset})".format(**snapshot)
            )
            self.stdout.write(
                "  processed {items_processed}, imported {items_imported}, "
                "skipped {items_skipped}, failed {failed_count}, "
                "assets {assets_downloaded}".format(**snapshot)
            )
            if job.failure_reason:
                self.stdout.write(f"  failure: {job.failure_reason}")
