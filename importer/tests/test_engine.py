from unittest import mock

from django.test import TestCase

from gamebox.models import Game, Screenshot
from importer import jobs
from importer.engine import BatchEngine, PauseToken
from importer.exceptions import RateLimitExceeded, UpstreamError
from importer.models import ImportProgress, ImportStatus, ImportType

from .utils import catalog_source, create_game, create_progress


class WorkerKilled(BaseException):
    """Stands in for a worker process dying in the middle of a batch"""


def assert_counter_identity(testcase, progress):
    progress.refresh_from_db()
    testcase.assertEqual(
        progress.items_processed,
        progress.items_imported + progress.items_skipped + progress.records_failed,
    )


class BatchEngineTests(TestCase):
    def setUp(self):
        self.broadcaster = mock.MagicMock()

    def run_batch(self, source, progress, **kwargs):
        engine = BatchEngine(source, broadcaster=self.broadcaster, **kwargs)
        return engine.run(progress.pk)

    def test_single_batch_imports_games_and_screenshots(self):
        source = catalog_source(total=5)
        progress = create_progress(batch_size=10, total_available=5)

        result = self.run_batch(source, progress)

        self.assertTrue(result.is_complete)
        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.COMPLETED)
        self.assertIsNotNone(progress.completed_at)
        self.assertEqual(progress.items_processed, 5)
        self.assertEqual(progress.items_imported, 5)
        self.assertEqual(progress.assets_downloaded, 15)
        self.assertEqual(progress.current_batch, 1)
        self.assertEqual(Game.objects.count(), 5)
        self.assertEqual(Screenshot.objects.count(), 15)

        game = Game.objects.get(slug="game-1")
        self.assertEqual(game.publisher, "Electronic Arts")
        self.assertEqual(game.release_year, 2015)
        self.assertEqual(
            list(game.screenshots.order_by("pk").values_list("difficulty", flat=True)),
            [1, 2, 3],
        )
        self.broadcaster.assert_called_once()
        self.assertIn("Completed", self.broadcaster.call_args.args[1])

    def test_reingesting_is_idempotent(self):
        first = create_progress(batch_size=40, total_available=40)
        self.run_batch(catalog_source(total=40), first)
        first.refresh_from_db()
        self.assertEqual(first.items_imported, 40)
        self.assertEqual(Game.objects.count(), 40)

        second = create_progress(batch_size=40, total_available=40)
        self.run_batch(catalog_source(total=40), second)

        second.refresh_from_db()
        self.assertEqual(second.status, ImportStatus.COMPLETED)
        self.assertEqual(second.items_imported, 0)
        self.assertEqual(second.items_skipped, 40)
        self.assertEqual(Game.objects.count(), 40)
        self.assertEqual(Screenshot.objects.count(), 120)

    def test_games_without_screenshots_are_skipped(self):
        source = catalog_source(total=4, without_screenshots={2, 3})
        progress = create_progress(batch_size=10, total_available=4)

        self.run_batch(source, progress)

        progress.refresh_from_db()
        self.assertEqual(progress.items_imported, 2)
        self.assertEqual(progress.items_skipped, 2)
        self.assertFalse(Game.objects.filter(slug="game-2").exists())

    def test_checkpoint_granularity(self):
        source = catalog_source(total=40)
        progress = create_progress(batch_size=20, total_available=40)
        process_item = source.process_item
        calls = []

        def dies_on_fifteenth_record(progress, item):
            calls.append(item["slug"])
            if len(calls) == 15:
                raise WorkerKilled()
            return process_item(progress, item)

        with mock.patch.object(
            source, "process_item", side_effect=dies_on_fifteenth_record
        ):
            with self.assertRaises(WorkerKilled):
                self.run_batch(source, progress, checkpoint_every=10)

        # Only the checkpoint after the tenth record reached the store
        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.IN_PROGRESS)
        self.assertEqual(progress.items_processed, 10)
        self.assertEqual(progress.items_imported, 10)
        self.assertEqual(progress.current_page, 1)
        self.assertEqual(progress.page_offset, 10)
        self.assertEqual(progress.current_batch, 0)

        # The next batch starts at record 11 and skips what was committed
        self.run_batch(source, progress, checkpoint_every=10)

        progress.refresh_from_db()
        self.assertEqual(progress.items_processed, 30)
        self.assertEqual(progress.items_imported, 26)
        self.assertEqual(progress.items_skipped, 4)
        self.assertEqual(progress.current_page, 1)
        self.assertEqual(progress.page_offset, 30)
        self.assertEqual(progress.current_batch, 1)
        self.assertEqual(Game.objects.count(), 30)
        assert_counter_identity(self, progress)

    def test_pause_is_seen_before_the_next_record(self):
        source = catalog_source(total=10)
        progress = create_progress(batch_size=10, total_available=10)
        process_item = source.process_item
        processed = []

        def pause_after_second_record(job, item):
            outcome = process_item(job, item)
            processed.append(item["slug"])
            if len(processed) == 2:
                jobs.pause_job(job.pk)
            return outcome

        with mock.patch.object(
            source, "process_item", side_effect=pause_after_second_record
        ):
            result = self.run_batch(source, progress)

        self.assertTrue(result.is_paused)
        self.assertFalse(result.is_complete)
        self.assertEqual(processed, ["game-1", "game-2"])

        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.PAUSED)
        self.assertEqual(progress.items_processed, 2)
        self.assertEqual(progress.current_page, 1)
        self.assertEqual(progress.page_offset, 2)
        self.assertEqual(progress.current_batch, 0)
        self.assertEqual(Game.objects.count(), 2)

    def test_paused_job_does_no_work(self):
        source = catalog_source(total=10)
        progress = create_progress(status=ImportStatus.PAUSED, total_available=10)

        result = self.run_batch(source, progress)

        self.assertTrue(result.is_paused)
        self.assertEqual(source.client.pages_requested, [])
        self.assertEqual(Game.objects.count(), 0)

    def test_finished_job_does_no_work(self):
        source = catalog_source(total=10)
        for status in (ImportStatus.COMPLETED, ImportStatus.FAILED):
            progress = create_progress(status=status, total_available=10)
            result = self.run_batch(source, progress)
            self.assertFalse(result.should_continue)
            progress.refresh_from_db()
            self.assertEqual(progress.status, status)
        self.assertEqual(source.client.pages_requested, [])

    def test_in_process_pause_request(self):
        source = catalog_source(total=10)
        progress = create_progress(batch_size=10, total_available=10)
        token = PauseToken()
        token.request()

        engine = BatchEngine(source, broadcaster=self.broadcaster)
        result = engine.run(progress.pk, pause_token=token)

        self.assertTrue(result.is_paused)
        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.PAUSED)
        self.assertIsNotNone(progress.paused_at)
        self.assertEqual(progress.items_processed, 0)

    def test_cancelled_job_stops_before_the_next_record(self):
        source = catalog_source(total=10)
        progress = create_progress(batch_size=10, total_available=10)
        process_item = source.process_item

        def cancel_on_first_record(job, item):
            outcome = process_item(job, item)
            jobs.cancel_job(job.pk)
            return outcome

        with mock.patch.object(
            source, "process_item", side_effect=cancel_on_first_record
        ):
            result = self.run_batch(source, progress)

        self.assertFalse(result.should_continue)
        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.FAILED)
        self.assertEqual(progress.items_processed, 1)

    def test_cancel_during_the_last_record_is_not_reported_as_completed(self):
        source = catalog_source(total=3)
        progress = create_progress(batch_size=10, total_available=3)
        process_item = source.process_item

        def cancel_on_last_record(job, item):
            outcome = process_item(job, item)
            if item["slug"] == "game-3":
                jobs.cancel_job(job.pk)
            return outcome

        with mock.patch.object(
            source, "process_item", side_effect=cancel_on_last_record
        ):
            result = self.run_batch(source, progress)

        self.assertFalse(result.is_complete)
        self.assertFalse(result.should_continue)
        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.FAILED)
        self.assertEqual(progress.failure_reason, "Cancelled by operator")
        self.assertEqual(progress.items_processed, 3)
        summary = self.broadcaster.call_args.args[1]
        self.assertFalse(summary.startswith("Completed"))

    def test_failed_record_does_not_stop_the_batch(self):
        source = catalog_source(total=5, failing_details={3})
        progress = create_progress(batch_size=5, total_available=5)

        result = self.run_batch(source, progress)

        self.assertTrue(result.is_complete)
        self.assertEqual(result.counters.records_failed, 1)
        progress.refresh_from_db()
        self.assertEqual(progress.items_processed, 5)
        self.assertEqual(progress.items_imported, 4)
        self.assertEqual(progress.records_failed, 1)
        self.assertEqual(progress.failed_count, 1)
        self.assertTrue(Game.objects.filter(slug="game-4").exists())
        self.assertTrue(Game.objects.filter(slug="game-5").exists())
        self.assertFalse(Game.objects.filter(slug="game-3").exists())
        self.assertEqual(len(progress.recent_errors), 1)
        self.assertEqual(progress.recent_errors[0]["key"], "game-3")
        assert_counter_identity(self, progress)

    def test_failed_asset_is_counted_and_the_game_kept(self):
        source = catalog_source(total=1)
        failing_url = source.client.list_screenshots(1)["results"][1]["image"]
        source.fetcher.failing_urls.add(failing_url)
        progress = create_progress(batch_size=5, total_available=1)

        self.run_batch(source, progress)

        progress.refresh_from_db()
        self.assertEqual(progress.items_imported, 1)
        self.assertEqual(progress.records_failed, 0)
        self.assertEqual(progress.failed_count, 1)
        self.assertEqual(progress.assets_downloaded, 2)
        game = Game.objects.get(slug="game-1")
        self.assertEqual(
            sorted(game.screenshots.values_list("image_url", flat=True)),
            [
                "/uploads/screenshots/game-1/screenshot_1.jpg",
                "/uploads/screenshots/game-1/screenshot_3.jpg",
            ],
        )

    def test_page_fetch_failure_fails_the_job(self):
        source = catalog_source(total=50)
        progress = create_progress(batch_size=50, total_available=50)
        error = UpstreamError("RAWG API error: 502 Bad Gateway", status_code=502)

        with mock.patch.object(source.client, "list_games", side_effect=error):
            with self.assertRaises(UpstreamError):
                self.run_batch(source, progress)

        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.FAILED)
        self.assertIn("502 Bad Gateway", progress.failure_reason)
        self.assertIsNotNone(progress.completed_at)

    def test_rate_limit_ceiling_fails_the_job(self):
        source = catalog_source(total=5)
        progress = create_progress(batch_size=5, total_available=5)
        error = RateLimitExceeded("still rate limited", status_code=429)

        with mock.patch.object(source.client, "get_game", side_effect=error):
            with self.assertRaises(RateLimitExceeded):
                self.run_batch(source, progress)

        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.FAILED)
        self.assertEqual(progress.records_failed, 0)

    def test_batch_filled_mid_page_resumes_at_the_next_record(self):
        create_game(name="Game 12", slug="game-12")
        source = catalog_source(total=30)
        progress = create_progress(
            batch_size=15, total_available=30, options={"page_size": 10}
        )

        result = self.run_batch(source, progress)

        self.assertFalse(result.is_complete)
        self.assertTrue(result.should_continue)
        progress.refresh_from_db()
        self.assertEqual(progress.current_page, 2)
        self.assertEqual(progress.page_offset, 5)
        self.assertEqual(progress.current_batch, 1)
        self.assertEqual(progress.items_processed, 15)
        self.assertEqual(progress.items_skipped, 1)

        self.run_batch(source, progress)

        progress.refresh_from_db()
        self.assertEqual(source.client.pages_requested, [1, 2, 2, 3])
        self.assertEqual(progress.current_page, 3)
        self.assertEqual(progress.status, ImportStatus.COMPLETED)
        self.assertEqual(progress.items_processed, 30)
        self.assertEqual(progress.items_skipped, 1)
        self.assertEqual(Game.objects.count(), 30)
        assert_counter_identity(self, progress)


class EndToEndImportTests(TestCase):
    """237 games, batches of 100, pages of 40"""

    def setUp(self):
        self.source = catalog_source(total=237)
        source_patch = mock.patch("importer.jobs.source_for", return_value=self.source)
        source_patch.start()
        self.addCleanup(source_patch.stop)

        enqueue_patch = mock.patch("importer.jobs.enqueue_batch")
        self.enqueue_batch = enqueue_patch.start()
        self.addCleanup(enqueue_patch.stop)

        self.engine = BatchEngine(self.source, broadcaster=mock.MagicMock())

    def test_import(self):
        progress = jobs.start_job(ImportType.FULL_IMPORT, batch_size=100, page_size=40)

        self.assertEqual(progress.status, ImportStatus.IN_PROGRESS)
        self.assertEqual(progress.total_available, 237)
        self.assertEqual(progress.total_batches_estimated, 3)
        self.assertIsNotNone(progress.started_at)
        self.enqueue_batch.assert_called_once_with(progress)

        result = self.engine.run(progress.pk)

        self.assertTrue(result.should_continue)
        progress.refresh_from_db()
        self.assertEqual(progress.current_batch, 1)
        self.assertEqual(progress.items_imported, 100)
        self.assertEqual(progress.status, ImportStatus.IN_PROGRESS)
        self.assertEqual(progress.current_page, 3)
        self.assertEqual(progress.page_offset, 20)

        for _ in range(5):
            result = self.engine.run(progress.pk)
            if not result.should_continue:
                break

        progress.refresh_from_db()
        self.assertEqual(progress.status, ImportStatus.COMPLETED)
        self.assertEqual(progress.current_batch, 3)
        self.assertEqual(progress.items_imported, 237)
        self.assertEqual(progress.items_skipped, 0)
        self.assertEqual(progress.records_failed, 0)
        self.assertEqual(progress.assets_downloaded, 237 * 3)
        self.assertEqual(Game.objects.count(), 237)
        self.assertEqual(
            ImportProgress.objects.find_active(ImportType.FULL_IMPORT), None
        )
        assert_counter_identity(self, progress)
