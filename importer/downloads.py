import io
import os
import time
from logging import getLogger
from tempfile import NamedTemporaryFile

import requests
from PIL import Image

from importer.config import importer_setting
from importer.exceptions import AssetDownloadFailure

logger = getLogger(__name__)


def screenshot_paths(slug, index, images_root=None, url_prefix=None):
    """
    Return the local path and the public URL for the ``index``-th (1-based)
    screenshot of a game. The same game and index always map to the same
    file, so a repeated download overwrites rather than duplicates.
    """
    images_root = images_root or importer_setting("IMAGES_ROOT")
    url_prefix = (url_prefix or importer_setting("IMAGES_URL_PREFIX")).rstrip("/")
    filename = f"screenshot_{index}.jpg"
    return (
        os.path.join(images_root, slug, filename),
        f"{url_prefix}/{slug}/{filename}",
    )


class AssetFetcher:
    def __init__(
        self, retries=3, base_delay=1.0, timeout=30, session=None, sleep=time.sleep
    ):
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.retries = retries
        self.base_delay = base_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep

    @classmethod
    def from_settings(cls, **kwargs):
        options = {
            "retries": importer_setting("DOWNLOAD_RETRIES"),
            "base_delay": importer_setting("DOWNLOAD_BASE_DELAY"),
            "timeout": importer_setting("REQUEST_TIMEOUT"),
        }
        options.update(kwargs)
        return cls(**options)

    def fetch(self, url, destination):
        """
        Download ``url`` to ``destination``, retrying with exponential backoff.

        Returns True once the file is in place and False when every attempt
        failed. Failures are logged, never raised.
        """
        for attempt in range(self.retries):
            try:
                self._download(url, destination)
                return True
            except AssetDownloadFailure as exc:
                if attempt + 1 >= self.retries:
                    logger.error(
                        "Giving up on %s after %s attempts: %s",
                        url,
                        self.retries,
                        exc.__cause__ or exc,
                    )
                    break
                delay = self.base_delay * 2**attempt
                logger.info(
                    "Download of %s failed (attempt %s of %s), retrying in %ss",
                    url,
                    attempt + 1,
                    self.retries,
                    delay,
                )
                self.sleep(delay)
        return False

    def _download(self, url, destination):
        try:
            resp = self.session.get(url, stream=True, timeout=self.timeout)
            try:
                resp.raise_for_status()
                buffer = io.BytesIO()
                for chunk in resp.iter_content(chunk_size=256 * 1024):
                    if chunk:
                        buffer.write(chunk)
            finally:
                resp.close()

            buffer.seek(0)
            with Image.open(buffer) as image:
                image.verify()

            directory = os.path.dirname(destination)
            os.makedirs(directory, exist_ok=True)
            with NamedTemporaryFile(dir=directory, suffix=".part", delete=False) as tmp:
                tmp.write(buffer.getvalue())
            os.replace(tmp.name, destination)
        except Exception as exc:
            raise AssetDownloadFailure(
                f"Unable to download {url} to {destination}"
            ) from exc

        logger.debug("Downloaded %s to %s", url, destination)
