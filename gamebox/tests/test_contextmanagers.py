from unittest import TestCase
from unittest.mock import patch

from gamebox.contextmanagers import DEFAULT_LOCK_DURATION, cache_lock


class CacheLockTests(TestCase):
    def setUp(self):
        cache_patch = patch("gamebox.contextmanagers.cache")
        self.cache = cache_patch.start()
        self.addCleanup(cache_patch.stop)

        time_patch = patch("gamebox.contextmanagers.time.monotonic")
        self.monotonic = time_patch.start()
        self.addCleanup(time_patch.stop)
        self.monotonic.return_value = 500.0

    def test_lock_is_released_by_its_owner(self):
        self.cache.add.return_value = True

        with cache_lock("process_batch_task:1", "celery@worker-1") as acquired:
            self.assertTrue(acquired)
            self.cache.delete.assert_not_called()

        self.cache.add.assert_called_once_with(
            "process_batch_task:1", "celery@worker-1", DEFAULT_LOCK_DURATION
        )
        self.cache.delete.assert_called_once_with("process_batch_task:1")

    def test_lock_held_elsewhere_is_left_alone(self):
        self.cache.add.return_value = False

        with cache_lock("process_batch_task:1", "celery@worker-2", 60) as acquired:
            self.assertFalse(acquired)

        self.cache.add.assert_called_once_with(
            "process_batch_task:1", "celery@worker-2", 60
        )
        self.cache.delete.assert_not_called()

    def test_expired_lock_is_not_deleted(self):
        self.cache.add.return_value = True
        self.monotonic.side_effect = [500.0, 500.0 + 61]

        with cache_lock("process_batch_task:1", "celery@worker-1", 60):
            pass

        self.cache.delete.assert_not_called()

    def test_lock_is_released_when_the_block_raises(self):
        self.cache.add.return_value = True

        with self.assertRaises(RuntimeError):
            with cache_lock("process_batch_task:1", "celery@worker-1"):
                raise RuntimeError("batch failed")

        self.cache.delete.assert_called_once_with("process_batch_task:1")
