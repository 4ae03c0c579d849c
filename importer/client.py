"""
Client for the RAWG game metadata API, https://api.rawg.io/docs/
"""

import time
from logging import getLogger

import requests

from importer.config import importer_setting
from importer.exceptions import ConfigurationError, RateLimitExceeded, UpstreamError
from importer.ratelimit import get_rate_limiter

logger = getLogger(__name__)


class Page:
    """
    One page of a paginated listing: the records plus whether another page
    follows. ``count`` is the total size of the listing when the API reports
    it.
    """

    def __init__(self, results, count=None, has_next=False):
        self.results = list(results)
        self.count = count
        self.has_next = has_next

    def __len__(self):
        return len(self.results)

    def __iter__(self):
        return iter(self.results)

    def __repr__(self):
        return f"<Page {len(self.results)} results, has_next={self.has_next}>"

    @classmethod
    def from_response(cls, data):
        return cls(
            data.get("results") or [],
            count=data.get("count"),
            has_next=bool(data.get("next")),
        )


def metacritic_filter(min_metacritic):
    if min_metacritic is None:
        return None
    return f"{min_metacritic},100"


class RAWGClient:
    """
    Every request waits on the rate limiter first. A 429 response puts the
    client into a cooldown after which the same request is sent again; with
    ``max_rate_limit_retries`` set, running out of retries raises
    RateLimitExceeded. Any other unsuccessful response or a transport error
    raises UpstreamError straight away.
    """

    def __init__(
        self,
        api_key,
        base_url="https://api.rawg.io/api",
        rate_limiter=None,
        session=None,
        cooldown=60.0,
        max_rate_limit_retries=None,
        timeout=30,
        sleep=time.sleep,
    ):
        if not api_key:
            raise ConfigurationError("A RAWG API key is required")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.session = session or requests.Session()
        self.cooldown = cooldown
        self.max_rate_limit_retries = max_rate_limit_retries
        self.timeout = timeout
        self.sleep = sleep

    @classmethod
    def from_settings(cls, **kwargs):
        api_key = importer_setting("RAWG_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "RAWG_API_KEY is not configured; set it in the environment or in "
                "settings.IMPORTER"
            )
        options = {
            "base_url": importer_setting("RAWG_BASE_URL"),
            "cooldown": importer_setting("RATE_LIMIT_COOLDOWN"),
            "max_rate_limit_retries": importer_setting("RATE_LIMIT_MAX_RETRIES"),
            "timeout": importer_setting("REQUEST_TIMEOUT"),
        }
        options.update(kwargs)
        return cls(api_key, **options)

    def _get(self, endpoint, params=None):
        url = f"{self.base_url}{endpoint}"
        query = {"key": self.api_key}
        query.update({k: v for k, v in (params or {}).items() if v is not None})

        retries = 0
        while True:
            self.rate_limiter.acquire()

            try:
                resp = self.session.get(url, params=query, timeout=self.timeout)
            except requests.RequestException as exc:
                raise UpstreamError(f"Request to {url} failed: {exc}", url=url) from exc

            if resp.status_code == 429:
                retries += 1
                if (
                    self.max_rate_limit_retries is not None
                    and retries > self.max_rate_limit_retries
                ):
                    raise RateLimitExceeded(
                        f"RAWG API still rate limited after {retries - 1} retries",
                        status_code=429,
                        url=url,
                    )
                logger.warning(
                    "RAWG API rate limited %s (retry %s); cooling down for %ss",
                    endpoint,
                    retries,
                    self.cooldown,
                )
                self.sleep(self.cooldown)
                continue

            if not resp.ok:
                raise UpstreamError(
                    f"RAWG API error: {resp.status_code} {resp.reason}",
                    status_code=resp.status_code,
                    url=url,
                )

            return resp.json()

    def list_games(
        self, page=1, page_size=40, ordering="-rating", min_metacritic=None, dates=None
    ):
        return self._get(
            "/games",
            {
                "page": page,
                "page_size": page_size,
                "ordering": ordering,
                "metacritic": metacritic_filter(min_metacritic),
                "dates": dates,
            },
        )

    def get_game(self, game_id):
        return self._get(f"/games/{game_id}")

    def list_screenshots(self, game_id):
        return self._get(f"/games/{game_id}/screenshots")

    def count_games(self, min_metacritic=None, dates=None):
        data = self._get(
            "/games",
            {
                "page": 1,
                "page_size": 1,
                "metacritic": metacritic_filter(min_metacritic),
                "dates": dates,
            },
        )
        return data.get("count") or 0
