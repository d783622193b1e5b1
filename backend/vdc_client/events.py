"""
vdc_client/events.py

EventBridge – the client end of ws/events/.

One socket per authenticated session. Frames are read in a single loop and
handed to subscribers one at a time, in arrival order; a handler that raises
is logged and does not stop the loop.

    bridge = EventBridge(settings, "patient", 9, access_token=access)
    await bridge.connect()
    unsubscribe = bridge.on(CONSULTATION_STARTED, handler)
    ...
    unsubscribe()
    await bridge.close()
"""

import asyncio
import inspect
import json
import logging
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from .config import ClientSettings
from .scheduling import Debouncer

logger = logging.getLogger(__name__)

# ── Server → client ───────────────────────────────────────────────────────────
POSITION_UPDATE          = "POSITION_UPDATE"
CONSULTATION_STARTED     = "CONSULTATION_STARTED"
CONSULTATION_ENDED       = "CONSULTATION_ENDED"
PARTICIPANT_REJOINED     = "PARTICIPANT_REJOINED"
QUEUE_CHANGED            = "QUEUE_CHANGED"
PATIENT_JOINED_QUEUE     = "PATIENT_JOINED_QUEUE"
PATIENT_LEFT_QUEUE       = "PATIENT_LEFT_QUEUE"
PARTICIPANT_COUNT_UPDATE = "PARTICIPANT_COUNT_UPDATE"
ERROR                    = "ERROR"

# ── Client → server ───────────────────────────────────────────────────────────
SWITCH_DOCTOR_AVAILABILITY = "SWITCH_DOCTOR_AVAILABILITY"
GET_PARTICIPANT_COUNT      = "GET_PARTICIPANT_COUNT"
PARTICIPANT_JOINED_ROOM    = "PARTICIPANT_JOINED_ROOM"
PARTICIPANT_LEFT_ROOM      = "PARTICIPANT_LEFT_ROOM"


class EventBridge:

    def __init__(self, settings=None, user_type="patient", user_id=None, connect=None, access_token=None):
        self.settings  = settings or ClientSettings()
        self.user_type = user_type
        self.user_id   = user_id
        self.access_token = access_token
        self._connect  = connect or websockets.connect
        self._ws       = None
        self._reader   = None
        self._handlers = {}
        self._availability = Debouncer(
            self.settings.availability_debounce_seconds,
            self._send_availability,
            name="switch_doctor_availability",
        )

    @property
    def connected(self):
        return self._ws is not None

    @property
    def url(self):
        params = {"userType": self.user_type, "userId": self.user_id}
        if self.access_token:
            params["token"] = self.access_token
        query = urlencode(params)
        return f"{self.settings.events_url}?{query}"

    async def connect(self):
        if self._ws is not None:
            return
        self._ws = await self._connect(self.url)
        self._reader = asyncio.ensure_future(self._read_loop())
        logger.info("[Bridge] connected as %s %s", self.user_type, self.user_id)

    async def _read_loop(self):
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("[Bridge] dropping malformed frame: %r", raw)
                    continue
                if not isinstance(frame, dict):
                    logger.warning("[Bridge] dropping frame that is not an object: %r", raw)
                    continue
                await self.dispatch(frame.get("event"), frame.get("data") or {})
        except ConnectionClosed:
            logger.info("[Bridge] connection closed")
        finally:
            self._ws = None

    # ── Subscriptions ────────────────────────────────────────────────────────
    def on(self, event, handler):
        """Subscribe; returns a callable that removes the subscription."""
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe():
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def handler_count(self, event=None):
        if event is not None:
            return len(self._handlers.get(event, []))
        return sum(len(h) for h in self._handlers.values())

    async def dispatch(self, event, data):
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[Bridge] %s handler failed", event)

    # ── Outbound ─────────────────────────────────────────────────────────────
    async def emit(self, event, data):
        """Fire-and-forget. Dropped (and logged) when the socket is down."""
        if self._ws is None:
            logger.warning("[Bridge] not connected, dropping %s", event)
            return False
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed:
            logger.warning("[Bridge] connection closed, dropping %s", event)
            return False
        return True

    def switch_doctor_availability(self, doctor_id, is_available):
        """Debounced: a burst of toggles sends only the last value."""
        self._availability.push({"doctorId": doctor_id, "isAvailable": bool(is_available)})

    async def _send_availability(self, data):
        await self.emit(SWITCH_DOCTOR_AVAILABILITY, data)

    async def close(self):
        self._availability.stop()
        ws, self._ws = self._ws, None
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None
        if ws is not None:
            await ws.close()
        self._handlers.clear()
