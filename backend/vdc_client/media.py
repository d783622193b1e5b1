"""
vdc_client/media.py

MediaSessionController – owns one media session: local tracks, the connected
room and the remote participant's identity.

    idle → acquiring-media → connecting → connected → ended
                    └──────────────┴────────────┴──→ errored

The video SDK is injected as a MediaTransport, so the controller runs
against a fake in tests. disconnect() is safe from any state and releases
everything it holds every time.
"""

import enum
import logging
from typing import Any, Iterable, Optional, Protocol

from .errors import MediaPermissionError, MediaTransportError

logger = logging.getLogger(__name__)


class MediaState(enum.Enum):
    IDLE            = "idle"
    ACQUIRING_MEDIA = "acquiring-media"
    CONNECTING      = "connecting"
    CONNECTED       = "connected"
    ENDED           = "ended"
    ERRORED         = "errored"


class LocalTrack(Protocol):
    kind: str

    def enable(self) -> None: ...

    def disable(self) -> None: ...

    def stop(self) -> None: ...


class RemoteTrack(Protocol):
    def attach(self) -> Any: ...

    def detach(self) -> Any: ...


class Room(Protocol):
    sid: str
    name: str
    participants: dict

    def disconnect(self) -> None: ...


class MediaTransport(Protocol):
    async def create_local_tracks(self, audio: bool = True, video: bool = True) -> list: ...

    async def connect(self, token: str, room_name: str, tracks: Iterable[LocalTrack]) -> Room: ...


class MediaSessionController:

    def __init__(self, transport, identity):
        self._transport = transport
        self.identity = identity
        self.state = MediaState.IDLE
        self.tracks: Optional[list] = None
        self.room: Optional[Room] = None
        self.remote_identity: Optional[str] = None
        self.mic_enabled = True
        self.video_enabled = True
        # Bumped by disconnect(); an await that spans a bump must not revive the session
        self._generation = 0

    @property
    def room_name(self):
        return self.room.name if self.room is not None else None

    async def acquire_local_tracks(self):
        if self.state not in (MediaState.IDLE, MediaState.ENDED, MediaState.ERRORED):
            raise MediaTransportError(f"Cannot acquire media while {self.state.value}")

        self.state = MediaState.ACQUIRING_MEDIA
        generation = self._generation
        try:
            tracks = await self._transport.create_local_tracks(audio=True, video=True)
        except (MediaPermissionError, PermissionError) as exc:
            self._fail_unless_closed(generation)
            logger.warning("[Media] %s: camera/microphone permission denied", self.identity)
            raise MediaPermissionError() from exc
        except Exception as exc:
            self._fail_unless_closed(generation)
            logger.warning("[Media] %s: no usable camera/microphone: %s", self.identity, exc)
            raise MediaPermissionError() from exc

        if generation != self._generation:
            _stop_tracks(tracks)
            logger.info("[Media] %s: closed while acquiring media", self.identity)
            raise MediaTransportError("Media session was closed")

        self.tracks = list(tracks)
        self.mic_enabled = True
        self.video_enabled = True
        return self.tracks

    async def connect(self, token, room_name, tracks=None):
        """Join the room. Failures are surfaced, never retried."""
        tracks = self.tracks if tracks is None else list(tracks)
        self.tracks = tracks
        self.state = MediaState.CONNECTING
        generation = self._generation
        try:
            room = await self._transport.connect(token, room_name, tracks or [])
        except Exception as exc:
            logger.warning("[Media] %s: connect to %s failed: %s", self.identity, room_name, exc)
            if generation == self._generation:
                self._release()
                self.state = MediaState.ERRORED
            raise MediaTransportError() from exc

        if generation != self._generation:
            # disconnect() ran while the room was being joined
            _leave_room(room)
            logger.info("[Media] %s: closed while connecting to %s", self.identity, room_name)
            raise MediaTransportError("Media session was closed")

        self.room = room
        self.state = MediaState.CONNECTED
        remote = [p for p in (getattr(room, "participants", None) or {}) if p != self.identity]
        self.remote_identity = remote[0] if remote else None
        logger.info("[Media] %s connected to %s", self.identity, room_name)
        return room

    # ── Remote participants ──────────────────────────────────────────────────
    def participant_connected(self, identity):
        if identity != self.identity:
            self.remote_identity = identity

    def participant_disconnected(self, identity):
        if identity == self.remote_identity:
            self.remote_identity = None

    def local_participant_count(self):
        """Participants as seen by the room itself, this device included."""
        if self.room is None:
            return 0
        return 1 + len(getattr(self.room, "participants", None) or {})

    def attach_remote(self, track):
        try:
            track.attach()
            return True
        except Exception as exc:
            logger.warning("[Media] attach failed: %s", exc)
            return False

    def detach_remote(self, track):
        try:
            track.detach()
            return True
        except Exception as exc:
            logger.warning("[Media] detach failed: %s", exc)
            return False

    # ── Local controls ───────────────────────────────────────────────────────
    def _set_enabled(self, kind, enabled):
        for track in self.tracks or []:
            if getattr(track, "kind", None) != kind:
                continue
            if enabled:
                track.enable()
            else:
                track.disable()

    def toggle_mic(self):
        self.mic_enabled = not self.mic_enabled
        self._set_enabled("audio", self.mic_enabled)
        return self.mic_enabled

    def toggle_video(self):
        self.video_enabled = not self.video_enabled
        self._set_enabled("video", self.video_enabled)
        return self.video_enabled

    # ── Teardown ─────────────────────────────────────────────────────────────
    def _fail_unless_closed(self, generation):
        if generation == self._generation:
            self.state = MediaState.ERRORED

    def _release(self):
        _stop_tracks(self.tracks or [])
        self.tracks = None

        if self.room is not None:
            _leave_room(self.room)
        self.room = None
        self.remote_identity = None

    def disconnect(self):
        was = self.state
        self._generation += 1
        self._release()
        self.state = MediaState.ENDED
        if was is not MediaState.ENDED:
            logger.info("[Media] %s disconnected (was %s)", self.identity, was.value)


def _stop_tracks(tracks):
    for track in tracks:
        try:
            track.stop()
        except Exception as exc:
            logger.debug("[Media] track stop failed: %s", exc)


def _leave_room(room):
    try:
        room.disconnect()
    except Exception as exc:
        logger.debug("[Media] room disconnect failed: %s", exc)
