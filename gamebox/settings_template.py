import os

import sentry_sdk
import structlog
from django.core.management.utils import get_random_secret_key
from sentry_sdk.integrations.django import DjangoIntegration

from gamebox import get_version

DEFAULT_AUTO_FIELD = "django.db.models.AutoField"

# Build paths inside the project like this: os.path.join(SITE_ROOT_DIR, ...)
GAMEBOX_APP_DIR = os.path.abspath(os.path.dirname(__file__))
SITE_ROOT_DIR = os.path.dirname(GAMEBOX_APP_DIR)

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", get_random_secret_key())

GAMEBOX_ENVIRONMENT = os.environ.get("GAMEBOX_ENVIRONMENT", "development")

ALLOWED_HOSTS = ["*"]

DEBUG = False

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("POSTGRESQL_DB", "gamebox"),
        "USER": os.getenv("POSTGRESQL_USER", "gamebox"),
        "PASSWORD": os.getenv("POSTGRESQL_PW"),
        "HOST": os.getenv("POSTGRESQL_HOST", "localhost"),
        "PORT": os.getenv("POSTGRESQL_PORT", "5432"),
        "CONN_MAX_AGE": 0,
    }
}

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "channels",
    "gamebox.apps.GameboxAppConfig",
    "importer",
]

REDIS_ADDRESS = os.environ.get("REDIS_ADDRESS", "localhost")
REDIS_PORT = os.environ.get("REDIS_PORT", "")
if REDIS_PORT.isdigit():
    REDIS_PORT = int(REDIS_PORT)
else:
    REDIS_PORT = 6379

if REDIS_ADDRESS and REDIS_PORT:
    CACHES = {
        "default": {
            "BACKEND": "django_redis.cache.RedisCache",
            "LOCATION": f"redis://{REDIS_ADDRESS}:{REDIS_PORT}/1",
            "OPTIONS": {
                "CLIENT_CLASS": "django_redis.client.DefaultClient",
            },
        },
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        },
    }

CELERY_BROKER_URL = f"redis://{REDIS_ADDRESS}:{REDIS_PORT}/0"
CELERY_RESULT_BACKEND = f"redis://{REDIS_ADDRESS}:{REDIS_PORT}/0"

CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_IMPORTS = ("importer.tasks",)
# A batch lost with its worker is redelivered and waits out the stale lock
CELERY_TASK_ACKS_LATE = True
CELERY_TASK_REJECT_ON_WORKER_LOST = True

CELERY_BROKER_HEARTBEAT = 0
CELERY_BROKER_CONNECTION_RETRY = True
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_BROKER_TRANSPORT_OPTIONS = {
    "confirm_publish": True,
    "max_retries": 3,
    "interval_start": 0,
    "interval_step": 0.2,
    "interval_max": 0.5,
    # Redis only honours task priorities when these are set
    "queue_order_strategy": "priority",
    "priority_steps": list(range(10)),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "long": {
            "format": "[{asctime} {levelname} {name}:{lineno}] {message}",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
            "style": "{",
        },
        "structlog_json": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.processors.JSONRenderer(),
        },
    },
    "handlers": {
        "stream": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "long",
        },
        "file": {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "level": "INFO",
            "formatter": "long",
            "filename": f"{SITE_ROOT_DIR}/logs/gamebox.log",
            "when": "H",
            "interval": 3,
            "backupCount": 16,
        },
        "celery": {
            "level": "INFO",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": f"{SITE_ROOT_DIR}/logs/celery.log",
            "formatter": "long",
            "maxBytes": 1024 * 1024 * 100,  # 100 mb
        },
        "structlog_file": {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "level": "DEBUG",
            "formatter": "structlog_json",
            "filename": f"{SITE_ROOT_DIR}/logs/gamebox-json.log",
            "when": "H",
            "interval": 3,
            "backupCount": 16,
        },
    },
    "loggers": {
        "django": {"handlers": ["file"], "level": "INFO"},
        "celery": {"handlers": ["celery"], "level": "INFO"},
        "gamebox": {"handlers": ["file"], "level": "INFO"},
        "importer": {"handlers": ["file", "stream"], "level": "INFO"},
        "structlog": {
            "handlers": ["structlog_file"],
            "level": "DEBUG",
            "propagate": True,
        },
    },
}

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

SENTRY_BACKEND_DSN = os.environ.get("SENTRY_BACKEND_DSN", "")

APPLICATION_VERSION = get_version()

sentry_sdk.init(
    dsn=SENTRY_BACKEND_DSN,
    environment=GAMEBOX_ENVIRONMENT,
    release=APPLICATION_VERSION,
    integrations=[DjangoIntegration()],
)

ASGI_APPLICATION = "gamebox.routing.application"

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [(REDIS_ADDRESS, REDIS_PORT)],
            "capacity": 1500,
            "expiry": 10,
        },
    }
}

MEDIA_ROOT = os.getenv("MEDIA_ROOT", os.path.join(SITE_ROOT_DIR, "media"))
MEDIA_URL = "/uploads/"

# Batch job settings, read through importer.config.importer_setting. Keys
# which are missing here fall back to the defaults in importer.config.
IMPORTER = {
    "RAWG_API_KEY": os.getenv("RAWG_API_KEY", ""),
    "RAWG_BASE_URL": os.getenv("RAWG_BASE_URL", "https://api.rawg.io/api"),
    "RATE_LIMIT_MAX_REQUESTS": int(os.getenv("RAWG_RATE_LIMIT_MAX_REQUESTS", "20")),
    "RATE_LIMIT_WINDOW": float(os.getenv("RAWG_RATE_LIMIT_WINDOW", "60")),
    "RATE_LIMIT_MIN_INTERVAL": float(os.getenv("RAWG_RATE_LIMIT_MIN_INTERVAL", "3")),
    "RATE_LIMIT_COOLDOWN": float(os.getenv("RAWG_RATE_LIMIT_COOLDOWN", "60")),
    "IMAGES_ROOT": os.path.join(MEDIA_ROOT, "screenshots"),
    "IMAGES_URL_PREFIX": f"{MEDIA_URL}screenshots",
    "CHECKPOINT_EVERY": int(os.getenv("IMPORTER_CHECKPOINT_EVERY", "10")),
    "DEFAULT_BATCH_SIZE": int(os.getenv("IMPORTER_BATCH_SIZE", "100")),
}
