# teleconsult/video.py
#
# Video access tokens and the room / participant registry.
#
# A token authorises one identity (D-<doctorId> / P-<patientId>) to join one
# room. It is a signed JWT built on SimpleJWT's token machinery, so it shares
# the signing key and algorithm of the API's access tokens but carries its own
# token_type and lifetime.

import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework_simplejwt.tokens import Token

from .exceptions import ForbiddenError, InvalidRequestError, NotFoundError
from .models import ConsultationSession, RoomParticipant, VideoRoom

logger = logging.getLogger(__name__)

DOCTOR_IDENTITY_PREFIX  = "D-"
PATIENT_IDENTITY_PREFIX = "P-"


class VideoAccessToken(Token):
    token_type = "video"
    lifetime   = settings.VIDEO_TOKEN_LIFETIME

    @classmethod
    def for_participant(cls, identity, room_name):
        token = cls()
        token["identity"] = identity
        token["grants"]   = {"video": {"room": room_name}}
        return token


# =============================================================================
# IDENTITIES
# =============================================================================

def participant_identity(user_type, user_id):
    prefix = DOCTOR_IDENTITY_PREFIX if user_type == "doctor" else PATIENT_IDENTITY_PREFIX
    return f"{prefix}{user_id}"


def parse_identity(identity):
    """'D-5' → ('doctor', 5). Raises InvalidRequestError for anything else."""
    identity = str(identity or "")
    if identity.startswith(DOCTOR_IDENTITY_PREFIX):
        user_type = "doctor"
    elif identity.startswith(PATIENT_IDENTITY_PREFIX):
        user_type = "patient"
    else:
        raise InvalidRequestError(f"Invalid participant identity: {identity!r}")

    raw_id = identity[2:]
    if not raw_id.isdigit() or int(raw_id) <= 0:
        raise InvalidRequestError(f"Invalid participant identity: {identity!r}")
    return user_type, int(raw_id)


def issue_token(identity, room_name):
    """
    Return (token, consultation) for a participant. The consultation is the
    ongoing one in that room, if any.
    """
    if not room_name:
        raise InvalidRequestError("roomName is required")
    user_type, user_id = parse_identity(identity)

    consultation = ConsultationSession.objects.filter(
        room_name=room_name, status=ConsultationSession.STATUS_ONGOING,
    ).first()
    if consultation is not None:
        owner = consultation.doctor_id if user_type == "doctor" else consultation.patient_id
        if owner != user_id:
            raise ForbiddenError("Identity is not a participant of this room")

    token = VideoAccessToken.for_participant(identity, room_name)
    logger.info("[Video] token issued identity=%s room=%s", identity, room_name)
    return str(token), consultation


# =============================================================================
# ROOMS
# =============================================================================

def create_room(room_name):
    """Return the in-progress room with that name, creating it if needed."""
    if not room_name:
        raise InvalidRequestError("roomName is required")
    room = VideoRoom.objects.filter(unique_name=room_name, status=VideoRoom.STATUS_IN_PROGRESS).first()
    if room is None:
        room = VideoRoom.objects.create(unique_name=room_name)
        logger.info("[Video] room created %s (%s)", room_name, room.sid)
    return room


def list_rooms(status=None):
    rooms = VideoRoom.objects.all()
    if status:
        rooms = rooms.filter(status=status)
    return rooms


def get_room(sid):
    room = VideoRoom.objects.filter(sid=sid).first()
    if room is None:
        raise NotFoundError("Room not found")
    return room


@transaction.atomic
def complete_room(sid):
    room = get_room(sid)
    room.status = VideoRoom.STATUS_COMPLETED
    room.save(update_fields=["status", "date_updated"])
    room.participants.filter(status=RoomParticipant.STATUS_CONNECTED).update(
        status=RoomParticipant.STATUS_DISCONNECTED, date_updated=timezone.now(),
    )
    logger.info("[Video] room completed %s", sid)
    return room


# =============================================================================
# PARTICIPANTS
# =============================================================================

def connected_participants(room):
    return room.participants.filter(status=RoomParticipant.STATUS_CONNECTED)


def connected_count(room_name):
    return RoomParticipant.objects.filter(
        room__unique_name=room_name,
        room__status=VideoRoom.STATUS_IN_PROGRESS,
        status=RoomParticipant.STATUS_CONNECTED,
    ).count()


@transaction.atomic
def register_participant(room_name, identity):
    room = create_room(room_name)
    participant, created = RoomParticipant.objects.get_or_create(room=room, identity=identity)
    if not created and participant.status != RoomParticipant.STATUS_CONNECTED:
        participant.status = RoomParticipant.STATUS_CONNECTED
        participant.save(update_fields=["status", "date_updated"])
    return participant


def unregister_participant(room_name, identity):
    """Mark the identity disconnected in every in-progress room of that name."""
    return RoomParticipant.objects.filter(
        room__unique_name=room_name,
        room__status=VideoRoom.STATUS_IN_PROGRESS,
        identity=identity,
        status=RoomParticipant.STATUS_CONNECTED,
    ).update(status=RoomParticipant.STATUS_DISCONNECTED, date_updated=timezone.now())


def disconnect_participant(sid, participant_sid):
    room = get_room(sid)
    participant = room.participants.filter(sid=participant_sid).first()
    if participant is None:
        raise NotFoundError("Participant not found")
    participant.status = RoomParticipant.STATUS_DISCONNECTED
    participant.save(update_fields=["status", "date_updated"])
    logger.info("[Video] participant %s disconnected from %s", participant.identity, room.unique_name)
    return participant
