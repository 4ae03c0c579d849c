import os

from channels.routing import ProtocolTypeRouter, URLRouter
from django.core.asgi import get_asgi_application
from django.urls import path

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "gamebox.settings_template")
django_asgi_app = get_asgi_application()

from . import consumers  # NOQA: E402

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": URLRouter(
            [
                path(
                    "ws/import/progress/",
                    consumers.ImportProgressConsumer.as_asgi(),
                )
            ]
        ),
    }
)
