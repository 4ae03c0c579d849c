from unittest import mock

from django.test import TestCase

from importer.broadcast import (
    IMPORT_PROGRESS_GROUP,
    broadcast_progress,
    progress_snapshot,
)
from importer.models import ImportStatus, ImportType

from .utils import create_progress


class ProgressSnapshotTests(TestCase):
    def test_snapshot(self):
        progress = create_progress(
            import_type=ImportType.RECALCULATE_SCORES,
            batch_size=50,
            options={"dry_run": True},
            total_available=200,
            total_batches_estimated=4,
            current_page=2,
            page_offset=10,
            current_batch=1,
            items_processed=60,
            items_imported=12,
            items_skipped=48,
            score_delta=340,
        )

        snapshot = progress_snapshot(progress, "Batch 1 of 4 done")

        self.assertEqual(snapshot["job_id"], progress.pk)
        self.assertEqual(snapshot["import_type"], ImportType.RECALCULATE_SCORES)
        self.assertEqual(snapshot["status"], ImportStatus.IN_PROGRESS)
        self.assertEqual(snapshot["message"], "Batch 1 of 4 done")
        self.assertEqual(snapshot["percent_complete"], 30)
        self.assertEqual(snapshot["current_page"], 2)
        self.assertEqual(snapshot["page_offset"], 10)
        self.assertEqual(snapshot["total_batches"], 4)
        self.assertEqual(snapshot["score_delta"], 340)
        self.assertTrue(snapshot["dry_run"])


class BroadcastProgressTests(TestCase):
    def setUp(self):
        self.progress = create_progress()

    @mock.patch("importer.broadcast.get_channel_layer")
    def test_snapshot_is_sent_to_the_group(self, get_channel_layer):
        channel_layer = get_channel_layer.return_value
        channel_layer.group_send = mock.AsyncMock()

        broadcast_progress(self.progress, "Resumed")

        channel_layer.group_send.assert_awaited_once()
        group, event = channel_layer.group_send.call_args.args
        self.assertEqual(group, IMPORT_PROGRESS_GROUP)
        self.assertEqual(event["type"], "import_progress")
        self.assertEqual(event["snapshot"]["message"], "Resumed")

    @mock.patch("importer.broadcast.get_channel_layer", return_value=None)
    def test_no_channel_layer(self, get_channel_layer):
        broadcast_progress(self.progress, "Started")
        get_channel_layer.assert_called_once_with()

    @mock.patch("importer.broadcast.get_channel_layer")
    def test_failed_send_does_not_raise(self, get_channel_layer):
        get_channel_layer.return_value.group_send = mock.AsyncMock(
            side_effect=ConnectionError("redis unavailable")
        )

        with self.assertLogs("importer.broadcast", level="ERROR") as log:
            broadcast_progress(self.progress, "Started")

        self.assertIn(
            f"Unable to broadcast progress for job {self.progress.pk}", log.output[0]
        )
