"""
telehealth/asgi.py
"""

import os

from channels.routing import ProtocolTypeRouter, URLRouter
from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "telehealth.settings")

# Initialise Django before importing anything that touches models.
django_asgi_app = get_asgi_application()

import teleconsult.routing  # noqa: E402
from teleconsult.middleware import JWTAuthMiddlewareStack  # noqa: E402

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": JWTAuthMiddlewareStack(
        URLRouter(
            teleconsult.routing.websocket_urlpatterns
        )
    ),
})
