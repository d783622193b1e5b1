"""
teleconsult/consumers.py

EventConsumer – one per authenticated browser session  →  ws/events/?token=&userType=&userId=

The socket speaks for the authenticated user only: userType / userId come
from the user's profile, and query values that disagree are refused.

Every frame, both directions, is { "event": "<NAME>", "data": { ... } }.
Server pushes arrive through the channel layer as "push.event" messages
(see events.publish); client frames handled here:

  SWITCH_DOCTOR_AVAILABILITY  {doctorId, isAvailable}
  GET_PARTICIPANT_COUNT       {roomName}
  PARTICIPANT_JOINED_ROOM     {roomName, participantIdentity, consultationId}
  PARTICIPANT_LEFT_ROOM       {roomName, participantIdentity, consultationId}
"""

import json
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings

from . import events, services, video
from .exceptions import ConsultationError
from .models import QueueEntry, UserProfile

logger = logging.getLogger(__name__)

USER_TYPES = ("doctor", "patient")


class EventConsumer(AsyncWebsocketConsumer):

    async def connect(self):
        qs = parse_qs(self.scope.get("query_string", b"").decode())
        claimed_type = (qs.get("userType") or [""])[0]
        claimed_id   = (qs.get("userId") or [""])[0]
        self.rooms      = {}
        self.user_group = None

        identity = await self._socket_identity(self.scope.get("user"))
        if identity is None:
            logger.warning("[Events] rejected unauthenticated socket  userType=%r userId=%r", claimed_type, claimed_id)
            await self.close(code=4401)
            return

        self.user_type, self.user_id = identity
        if (claimed_type and claimed_type != self.user_type) or (claimed_id and claimed_id != str(self.user_id)):
            logger.warning(
                "[Events] %s %s tried to connect as %r %r",
                self.user_type, self.user_id, claimed_type, claimed_id,
            )
            await self.close(code=4403)
            return

        self.identity   = video.participant_identity(self.user_type, self.user_id)
        self.user_group = events.user_group(self.user_type, self.user_id)

        await self.channel_layer.group_add(self.user_group, self.channel_name)
        await self.accept()
        logger.info("[Events] %s %s connected", self.user_type, self.user_id)

    async def disconnect(self, close_code):
        if self.user_group is None:
            return

        for room_name, identity in list(self.rooms.items()):
            await self._leave_room(room_name, identity)
        await self.channel_layer.group_discard(self.user_group, self.channel_name)

        if self.user_type == "patient" and settings.QUEUE_LEAVE_ON_DISCONNECT:
            await self._leave_queues()

        logger.info("[Events] %s %s disconnected  code=%s", self.user_type, self.user_id, close_code)

    async def receive(self, text_data=None, bytes_data=None):
        try:
            frame = json.loads(text_data or "")
        except ValueError:
            await self.send_event(events.ERROR, {"message": "Malformed frame"})
            return
        if not isinstance(frame, dict):
            await self.send_event(events.ERROR, {"message": "Malformed frame"})
            return

        name = frame.get("event")
        data = frame.get("data") or {}
        logger.debug("[Events] %s %s → %s", self.user_type, self.user_id, name)

        # ── Doctor availability toggle (fire-and-forget) ──────────────────────
        if name == events.SWITCH_DOCTOR_AVAILABILITY:
            doctor_id = data.get("doctorId")
            if self.user_type != "doctor" or str(doctor_id) != str(self.user_id):
                await self.send_event(events.ERROR, {"message": "Only the doctor can change their availability"})
                return
            await self._set_availability(self.user_id, bool(data.get("isAvailable")))
            return

        # ── Room presence ─────────────────────────────────────────────────────
        room_name = data.get("roomName")
        if name in (events.GET_PARTICIPANT_COUNT, events.PARTICIPANT_JOINED_ROOM, events.PARTICIPANT_LEFT_ROOM):
            if not room_name:
                await self.send_event(events.ERROR, {"message": "roomName is required"})
                return
            if data.get("participantIdentity") not in (None, "", self.identity):
                await self.send_event(events.ERROR, {"message": "Cannot report presence for another participant"})
                return

        if name == events.GET_PARTICIPANT_COUNT:
            count = await self._connected_count(room_name)
            await self.send_event(events.PARTICIPANT_COUNT_UPDATE, {
                "roomName": room_name, "participantCount": count,
            })
            return

        if name == events.PARTICIPANT_JOINED_ROOM:
            identity = self.identity
            await self.channel_layer.group_add(events.room_group(room_name), self.channel_name)
            self.rooms[room_name] = identity
            await self._join_room(room_name, identity)
            return

        if name == events.PARTICIPANT_LEFT_ROOM:
            identity = self.rooms.get(room_name) or self.identity
            await self._leave_room(room_name, identity)
            return

        await self.send_event(events.ERROR, {"message": f"Unknown event: {name}"})

    # ── Channel layer handler ────────────────────────────────────────────────
    async def push_event(self, message):
        await self.send_event(message["event"], message["data"])

    async def send_event(self, name, data):
        await self.send(text_data=json.dumps({"event": name, "data": data}))

    # ── Helpers ──────────────────────────────────────────────────────────────
    @database_sync_to_async
    def _socket_identity(self, user):
        if user is None or not user.is_authenticated:
            return None
        profile = UserProfile.objects.filter(user_id=user.pk).first()
        if profile is None or profile.role not in USER_TYPES:
            return None
        return profile.role, user.pk

    async def _leave_room(self, room_name, identity):
        self.rooms.pop(room_name, None)
        await self._unregister(room_name, identity)
        await self.channel_layer.group_discard(events.room_group(room_name), self.channel_name)

    @database_sync_to_async
    def _set_availability(self, doctor_id, is_available):
        services.set_doctor_availability(doctor_id, is_available)

    @database_sync_to_async
    def _connected_count(self, room_name):
        return video.connected_count(room_name)

    @database_sync_to_async
    def _join_room(self, room_name, identity):
        video.register_participant(room_name, identity)
        events.participant_count(room_name, video.connected_count(room_name), joined=identity)
        logger.info("[Events] %s joined room %s", identity, room_name)

    @database_sync_to_async
    def _unregister(self, room_name, identity):
        video.unregister_participant(room_name, identity)
        events.participant_count(room_name, video.connected_count(room_name), left=identity)
        logger.info("[Events] %s left room %s", identity, room_name)

    @database_sync_to_async
    def _leave_queues(self):
        doctor_ids = list(
            QueueEntry.objects.filter(patient_id=self.user_id, status=QueueEntry.STATUS_WAITING)
            .values_list("doctor_id", flat=True)
        )
        for doctor_id in doctor_ids:
            try:
                services.leave_queue(self.user_id, doctor_id)
            except ConsultationError as exc:
                logger.info("[Events] patient %s kept in doctor %s queue: %s", self.user_id, doctor_id, exc.message)
