"""
Importer app level configuration

Deployments override these through the ``IMPORTER`` dict in Django settings.
"""

from django.conf import settings

DEFAULTS = {
    "RAWG_API_KEY": "",
    "RAWG_BASE_URL": "https://api.rawg.io/api",
    "REQUEST_TIMEOUT": 30,
    # Upstream quota: 20 requests per rolling minute, at least 3s apart
    "RATE_LIMIT_MAX_REQUESTS": 20,
    "RATE_LIMIT_WINDOW": 60.0,
    "RATE_LIMIT_MIN_INTERVAL": 3.0,
    "RATE_LIMIT_MARGIN": 0.1,
    "RATE_LIMIT_COOLDOWN": 60.0,
    # None retries a 429 until the API recovers
    "RATE_LIMIT_MAX_RETRIES": None,
    "DOWNLOAD_RETRIES": 3,
    "DOWNLOAD_BASE_DELAY": 1.0,
    "IMAGES_ROOT": "/tmp/gamebox_images/screenshots",
    "IMAGES_URL_PREFIX": "/uploads/screenshots",
    "CHECKPOINT_EVERY": 10,
    "PAGE_SIZE": 40,
    "DEFAULT_BATCH_SIZE": 100,
    "DEFAULT_MIN_METACRITIC": 70,
    "DEFAULT_SCREENSHOTS_PER_GAME": 3,
    "SYNC_MONTHS_BACK": 6,
    # Celery priority for batch tasks; on Redis 9 is the lowest
    "BATCH_TASK_PRIORITY": 9,
    "RECENT_ERRORS_LIMIT": 20,
    # Seconds before a batch which found its job locked is queued again
    "LOCK_RETRY_DELAY": 60,
}


def importer_setting(key):
    """
    Return the configured value for ``key``, falling back to the default.

    Raises KeyError for names which are not importer settings.
    """
    if key not in DEFAULTS:
        raise KeyError(f"Unknown importer setting: {key}")
    return getattr(settings, "IMPORTER", {}).get(key, DEFAULTS[key])
