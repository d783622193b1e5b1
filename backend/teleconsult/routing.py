# teleconsult/routing.py

from django.urls import re_path
from . import consumers

websocket_urlpatterns = [

    # ── Consultation events ───────────────────────────────────────────────────
    # Usage: ws/events/?userType=doctor&userId=5
    re_path(r"ws/events/$",     consumers.EventConsumer.as_asgi()),
]
