import functools
import threading
import time
from collections import deque
from logging import getLogger

from importer.config import importer_setting

logger = getLogger(__name__)


class RateLimiter:
    """
    Blocking limiter for an upstream quota expressed as "at most
    ``max_requests`` per rolling ``window`` seconds, and no two requests
    closer than ``min_interval`` seconds".

    ``acquire()`` sleeps until both conditions hold and then records the
    grant. It never fails and has no timeout. ``margin`` is added to waits
    caused by a full window so the oldest grant has certainly expired when
    the caller wakes up.

    ``clock`` and ``sleep`` default to the real monotonic clock and
    ``time.sleep``; tests pass a fake clock whose sleep advances it.
    """

    def __init__(
        self,
        max_requests=20,
        window=60.0,
        min_interval=3.0,
        margin=0.1,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")

        self.max_requests = max_requests
        self.window = window
        self.min_interval = min_interval
        self.margin = margin
        self.clock = clock
        self.sleep = sleep

        self._grants = deque()
        self._lock = threading.Lock()

    def __repr__(self):
        return (
            f"<RateLimiter {self.max_requests}/{self.window}s, "
            f"min interval {self.min_interval}s>"
        )

    def _expire(self, now):
        while self._grants and now - self._grants[0] >= self.window:
            self._grants.popleft()

    def _wait_time(self, now):
        self._expire(now)

        wait = 0.0
        if len(self._grants) >= self.max_requests:
            wait = self.window - (now - self._grants[0]) + self.margin
            logger.warning(
                "Rate limit window full (%s requests in %ss), waiting %.1fs",
                len(self._grants),
                self.window,
                wait,
            )

        if self._grants:
            since_last = now - self._grants[-1]
            if since_last < self.min_interval:
                wait = max(wait, self.min_interval - since_last)

        return wait

    def acquire(self):
        """
        Block until a request may be sent, record it and return the grant time
        """
        with self._lock:
            while True:
                wait = self._wait_time(self.clock())
                if wait <= 0:
                    break
                logger.debug("Waiting %.2fs before the next upstream request", wait)
                self.sleep(wait)

            granted_at = self.clock()
            self._grants.append(granted_at)
            return granted_at


@functools.lru_cache(maxsize=None)
def get_rate_limiter():
    """
    The limiter shared by every client in this worker process, so all jobs
    running here draw from the same upstream quota.
    """
    return RateLimiter(
        max_requests=importer_setting("RATE_LIMIT_MAX_REQUESTS"),
        window=importer_setting("RATE_LIMIT_WINDOW"),
        min_interval=importer_setting("RATE_LIMIT_MIN_INTERVAL"),
        margin=importer_setting("RATE_LIMIT_MARGIN"),
    )
