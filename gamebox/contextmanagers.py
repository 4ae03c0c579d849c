# Based on code from
# https://docs.celeryq.dev/en/v5.5.0/tutorials/task-cookbook.html#ensuring-a-task-is-only-executed-one-at-a-time

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager

from django.core.cache import cache

logger = logging.getLogger(__name__)

# A batch can spend several minutes waiting on the upstream rate limit
DEFAULT_LOCK_DURATION = 60 * 30


@contextmanager
def cache_lock(
    lock_id: str,
    owner: str,
    lock_duration: int = DEFAULT_LOCK_DURATION,
) -> Generator[bool, None, None]:
    """
    Hold a cache-backed lock for the duration of the block.

    `cache.add` only stores the key when it is absent, so the first caller
    wins and everybody else sees False. The key is deleted on exit only by
    the owner and only while the lock has not expired, so a slow holder
    never removes a lock that has since been taken by another worker.

    Yields:
        bool: whether the lock was acquired
    """
    acquired = False
    expires_at = time.monotonic() + lock_duration
    try:
        acquired = cache.add(lock_id, owner, lock_duration)
        if not acquired:
            logger.debug("Lock %s is held by another worker", lock_id)
        yield acquired
    finally:
        if acquired and time.monotonic() < expires_at:
            cache.delete(lock_id)
