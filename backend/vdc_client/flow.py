"""
vdc_client/flow.py

ConsultationFlow – the consultation view of one doctor/patient pair as a
state machine.

    idle ──→ waiting ──→ connecting ──→ connected ──→ ended
      │         │            │              │
      └─────────┴────────────┴──────────────┴──→ error ──→ idle

Every state change goes through transition(), which refuses edges not in
TRANSITIONS (connected → waiting, anything out of ended, ...).

The flow is driven two ways: the user (join / end / leave_queue / close) and
the event bridge (CONSULTATION_STARTED / CONSULTATION_ENDED / ...). Both end
up in the same _connect / _finish paths. Public coroutines never raise
ClientError; failures become `banner`.
"""

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass

from . import events
from .config import ClientSettings
from .errors import (
    ClientError,
    ConflictError,
    MediaPermissionError,
    MediaTransportError,
    TransientError,
)
from .models import (
    ACTION_CONFLICT,
    ACTION_ENDED,
    ACTION_IN_CONSULTATION,
    ACTION_JOINED,
    ACTION_REJOIN,
    ACTION_WAIT,
    PositionInfo,
    participant_identity,
)
from .scheduling import PeriodicTask

logger = logging.getLogger(__name__)


class FlowState(enum.Enum):
    IDLE       = "idle"
    WAITING    = "waiting"
    CONNECTING = "connecting"
    CONNECTED  = "connected"
    ENDED      = "ended"
    ERROR      = "error"


TRANSITIONS = {
    FlowState.IDLE:       {FlowState.WAITING, FlowState.CONNECTING, FlowState.ENDED, FlowState.ERROR},
    FlowState.WAITING:    {FlowState.CONNECTING, FlowState.ENDED, FlowState.ERROR, FlowState.IDLE},
    FlowState.CONNECTING: {FlowState.CONNECTED, FlowState.ENDED, FlowState.ERROR},
    FlowState.CONNECTED:  {FlowState.ENDED, FlowState.ERROR},
    FlowState.ERROR:      {FlowState.IDLE, FlowState.ENDED},
    FlowState.ENDED:      set(),
}

BANNER_TRANSIENT = "transient"
BANNER_CONFLICT  = "conflict"
BANNER_MEDIA     = "media"
BANNER_ERROR     = "error"


class IllegalTransition(Exception):
    pass


@dataclass
class ErrorBanner:
    message: str
    kind: str = BANNER_ERROR


class ConsultationFlow:

    def __init__(self, user_type, doctor_id, patient_id, api, resolver, queue, bridge, media,
                 settings=None, on_redirect=None):
        self.user_type  = user_type
        self.doctor_id  = doctor_id
        self.patient_id = patient_id
        self.user_id    = doctor_id if user_type == "doctor" else patient_id
        self.identity   = participant_identity(user_type, self.user_id)

        self.api      = api
        self.resolver = resolver
        self.queue    = queue
        self.bridge   = bridge
        self.media    = media
        self.settings = settings or ClientSettings()
        self._on_redirect = on_redirect

        self.state             = FlowState.IDLE
        self.pending           = False
        self.banner            = None
        self.consultation_id   = None
        self.room_name         = None
        self.position          = None
        self.participant_count = 0
        self.duration_seconds  = 0.0
        self.completed         = False
        self.redirected        = False
        self.history           = []

        self._ended_ids     = set()
        self._subscriptions = []
        self._ticker        = None
        self._poller        = None
        self._redirect_task = None
        self._closed        = False

    @property
    def is_doctor(self):
        return self.user_type == "doctor"

    @property
    def duration_label(self):
        total = int(self.duration_seconds)
        return f"{total // 60:02d}:{total % 60:02d}"

    # =========================================================================
    # State
    # =========================================================================

    def transition(self, new_state):
        if new_state not in TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} → {new_state.value}")
        logger.info("[Flow] %s: %s → %s", self.identity, self.state.value, new_state.value)
        self.state = new_state

    def show_banner(self, message, kind=BANNER_ERROR):
        self.banner = ErrorBanner(message, kind)

    def dismiss_banner(self):
        self.banner = None

    def attach(self):
        """Subscribe to the event bridge. Undone by close()."""
        if not self._subscriptions:
            self._subscriptions = [
                self.bridge.on(events.CONSULTATION_STARTED, self._on_started),
                self.bridge.on(events.CONSULTATION_ENDED, self._on_ended),
                self.bridge.on(events.POSITION_UPDATE, self._on_position),
                self.bridge.on(events.PARTICIPANT_REJOINED, self._on_rejoined),
                self.bridge.on(events.PARTICIPANT_COUNT_UPDATE, self._on_count),
            ]
        return self

    # =========================================================================
    # User actions
    # =========================================================================

    async def join(self):
        """Open the consultation: resolve status, then wait, rejoin or start."""
        if self.pending or self.state in (FlowState.CONNECTING, FlowState.CONNECTED, FlowState.ENDED):
            return self.state

        self.pending = True
        try:
            if self.state is FlowState.ERROR:
                self.transition(FlowState.IDLE)
            self.dismiss_banner()

            result = await self.resolver.check_status(
                self.doctor_id, self.patient_id, auto_join=not self.is_doctor,
            )
            if result is None:
                return self.state
            if result.fallback:
                self.show_banner(result.error, BANNER_TRANSIENT)
            await self._apply_status(result)
        except ConflictError as exc:
            self.show_banner(exc.message, BANNER_CONFLICT)
            await self._refresh_after_conflict()
        except TransientError as exc:
            self.show_banner(exc.message, BANNER_TRANSIENT)
        except ClientError as exc:
            self.show_banner(exc.message, BANNER_ERROR)
        finally:
            self.pending = False
        return self.state

    async def end(self, notes=None):
        """
        Doctor: end the consultation for both sides. Patient: leave the call;
        the consultation stays ongoing and can be rejoined.
        """
        if self.pending or self.state not in (FlowState.CONNECTING, FlowState.CONNECTED):
            return self.state

        consultation_id = self.consultation_id
        self.pending = True
        try:
            if self.is_doctor:
                await self.api.end_consultation_by_doctor(consultation_id, self.doctor_id, notes)
                self._ended_ids.add(consultation_id)
            await self._finish(completed=False)
        except ConflictError as exc:
            # Already ended elsewhere
            self.show_banner(exc.message, BANNER_CONFLICT)
            self._ended_ids.add(consultation_id)
            await self._finish(completed=False)
            await self._refresh_after_conflict()
        except TransientError as exc:
            self.show_banner(exc.message, BANNER_TRANSIENT)
        except ClientError as exc:
            self.show_banner(exc.message, BANNER_ERROR)
        finally:
            self.pending = False
        return self.state

    async def leave_queue(self):
        if self.pending or self.state is not FlowState.WAITING:
            return self.state

        self.pending = True
        try:
            await self.queue.leave(self.patient_id, self.doctor_id)
            self.position = None
            self.transition(FlowState.IDLE)
        except TransientError as exc:
            self.show_banner(exc.message, BANNER_TRANSIENT)
        except ClientError as exc:
            self.show_banner(exc.message, BANNER_ERROR)
        finally:
            self.pending = False
        return self.state

    def toggle_mic(self):
        return self.media.toggle_mic()

    def toggle_video(self):
        return self.media.toggle_video()

    async def refresh_participant_count(self):
        """Backend enumeration first, the room's own count if that fails."""
        room = self.media.room
        if room is None:
            return self.participant_count
        try:
            payload = await self.api.room_participants(room.sid)
            count = int(payload["participantCount"])
        except (ClientError, KeyError, TypeError, ValueError) as exc:
            logger.debug("[Flow] participant enumeration failed, using room count: %s", exc)
            count = self.media.local_participant_count()
        self.participant_count = count
        return count

    async def close(self):
        """Leave the view: stop timers, drop subscriptions, release media."""
        if self._closed:
            return
        self._closed = True

        self._stop_timers()
        if self._redirect_task is not None and not self._redirect_task.done():
            self._redirect_task.cancel()
        self._redirect_task = None

        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []

        if self.state is FlowState.CONNECTED:
            await self._announce_room(events.PARTICIPANT_LEFT_ROOM)
        self.media.disconnect()
        logger.info("[Flow] %s closed in %s", self.identity, self.state.value)

    # =========================================================================
    # Status → state
    # =========================================================================

    async def _apply_status(self, result):
        if self.state not in (FlowState.IDLE, FlowState.WAITING):
            # An event moved the flow on while checkStatus was in flight
            return

        action = result.action

        if action == ACTION_REJOIN:
            await self.api.rejoin(result.consultation_id, self.user_id, self.user_type)
            await self._connect(result.consultation_id, result.room_name)
            return

        if action == ACTION_CONFLICT:
            self.show_banner("Already in another consultation", BANNER_CONFLICT)
            return

        if self.is_doctor:
            if result.fallback:
                return
            payload = await self.api.start_consultation(self.doctor_id, self.patient_id, room_name=result.room_name)
            await self._connect(payload["consultationId"], payload["roomName"])
            return

        if action == ACTION_ENDED:
            self.consultation_id = result.consultation_id
            self._ended_ids.add(result.consultation_id)
            self.completed = True
            self.transition(FlowState.ENDED)
            return

        if action in (ACTION_WAIT, ACTION_JOINED, ACTION_IN_CONSULTATION):
            self.room_name = result.room_name
            self.position = PositionInfo(
                position=result.position,
                estimated_wait=result.estimated_wait,
                queue_length=result.queue_length,
                status=result.status,
                room_name=result.room_name,
            )
            if self.state is not FlowState.WAITING:
                self.transition(FlowState.WAITING)

    # =========================================================================
    # Connect / finish
    # =========================================================================

    def _superseded(self, consultation_id):
        """True once close() ran, the call ended, or another path moved the flow on."""
        return (
            self._closed
            or consultation_id in self._ended_ids
            or self.state is not FlowState.CONNECTING
        )

    async def _connect(self, consultation_id, room_name):
        if self._closed or consultation_id in self._ended_ids:
            return
        if self.state not in (FlowState.IDLE, FlowState.WAITING, FlowState.ERROR):
            # join() and CONSULTATION_STARTED can both get here; the first one wins
            logger.info("[Flow] %s already %s, not connecting again", self.identity, self.state.value)
            return

        self.consultation_id = consultation_id
        self.room_name = room_name
        if self.state is FlowState.ERROR:
            self.transition(FlowState.IDLE)
        self.transition(FlowState.CONNECTING)

        try:
            token = await self.api.video_token(self.identity, room_name)
            if self._superseded(consultation_id):
                return
            tracks = await self.media.acquire_local_tracks()
            await self.media.connect(token["token"], room_name, tracks)
        except (MediaPermissionError, MediaTransportError) as exc:
            self._fail(exc.message, BANNER_MEDIA, consultation_id)
            return
        except ConflictError as exc:
            self._fail(exc.message, BANNER_CONFLICT, consultation_id)
            return
        except TransientError as exc:
            self._fail(exc.message, BANNER_TRANSIENT, consultation_id)
            return
        except ClientError as exc:
            self._fail(exc.message, BANNER_ERROR, consultation_id)
            return

        if self._superseded(consultation_id):
            # Ended or closed while the media session was coming up
            self.media.disconnect()
            return

        self.transition(FlowState.CONNECTED)
        self.position = None
        self._start_timers()
        await self._announce_room(events.PARTICIPANT_JOINED_ROOM)

    def _fail(self, message, kind, consultation_id):
        self.media.disconnect()
        if self._superseded(consultation_id):
            return
        self.show_banner(message, kind)
        if FlowState.ERROR in TRANSITIONS[self.state]:
            self.transition(FlowState.ERROR)

    async def _finish(self, completed):
        if self.state is FlowState.ENDED:
            return
        was_connected = self.state is FlowState.CONNECTED
        self._stop_timers()
        self.media.disconnect()
        if was_connected:
            await self._announce_room(events.PARTICIPANT_LEFT_ROOM)
        self.transition(FlowState.ENDED)

        if self.is_doctor:
            self._redirect_task = asyncio.ensure_future(self._redirect_later())
        elif completed:
            self.completed = True

    async def _redirect_later(self):
        await asyncio.sleep(self.settings.end_redirect_delay_seconds)
        self.redirected = True
        if self._on_redirect is not None:
            result = self._on_redirect()
            if inspect.isawaitable(result):
                await result

    async def _announce_room(self, event):
        await self.bridge.emit(event, {
            "roomName"           : self.room_name,
            "participantIdentity": self.identity,
            "consultationId"     : self.consultation_id,
        })

    async def _refresh_after_conflict(self):
        try:
            if self.is_doctor:
                await self.queue.fetch(self.doctor_id)
            else:
                payload = await self.api.history(patient_id=self.patient_id)
                self.history = payload.get("consultations", [])
        except ClientError as exc:
            logger.warning("[Flow] refresh after conflict failed: %s", exc.message)

    # =========================================================================
    # Timers
    # =========================================================================

    def _tick(self):
        self.duration_seconds += self.settings.duration_tick_seconds

    def _start_timers(self):
        self._stop_timers()
        self.duration_seconds = 0.0
        self._ticker = PeriodicTask(
            self.settings.duration_tick_seconds, self._tick, name="call-duration",
        ).start()
        self._poller = PeriodicTask(
            self.settings.participant_poll_seconds, self.refresh_participant_count,
            run_immediately=True, name="participant-count",
        ).start()

    def _stop_timers(self):
        for task in (self._ticker, self._poller):
            if task is not None:
                task.stop()
        self._ticker = None
        self._poller = None

    # =========================================================================
    # Events
    # =========================================================================

    async def _on_started(self, data):
        consultation_id = data.get("consultationId")
        if consultation_id in self._ended_ids:
            logger.info("[Flow] ignoring stale CONSULTATION_STARTED for ended %s", consultation_id)
            return
        if data.get("doctorId") != self.doctor_id or data.get("patientId") != self.patient_id:
            return
        if self.state not in (FlowState.IDLE, FlowState.WAITING, FlowState.ERROR):
            return

        # join() may own the pending flag while its own connect is in flight
        owns_pending = not self.pending
        self.pending = True
        try:
            await self._connect(consultation_id, data.get("roomName"))
        finally:
            if owns_pending:
                self.pending = False

    async def _on_ended(self, data):
        consultation_id = data.get("consultationId")
        if consultation_id:
            self._ended_ids.add(consultation_id)
        if consultation_id != self.consultation_id:
            logger.debug("[Flow] ignoring CONSULTATION_ENDED for inactive %s", consultation_id)
            return
        await self._finish(completed=True)

    def _on_position(self, data):
        if self.state is not FlowState.WAITING:
            return
        if data.get("doctorId") not in (None, self.doctor_id):
            return
        self.position = PositionInfo.from_payload(data)

    async def _on_rejoined(self, data):
        if data.get("consultationId") != self.consultation_id:
            return
        logger.info("[Flow] %s %s rejoined", data.get("userType"), data.get("userId"))
        if self.state is FlowState.CONNECTED:
            await self.refresh_participant_count()

    def _on_count(self, data):
        if data.get("roomName") == self.room_name and "participantCount" in data:
            self.participant_count = data["participantCount"]
