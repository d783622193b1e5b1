"""
teleconsult/events.py

Server side of the real-time event channel.

Every event socket joins one personal group (doctor_<id> / patient_<id>) and,
while it sits in a media room, the room_<name> group. Services publish here
after their transaction commits; EventConsumer.push_event writes the frame:

    { "event": "<NAME>", "data": { ... } }
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

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


def doctor_group(doctor_id):
    return f"doctor_{doctor_id}"


def patient_group(patient_id):
    return f"patient_{patient_id}"


def room_group(room_name):
    return f"room_{room_name}"


def user_group(user_type, user_id):
    return doctor_group(user_id) if user_type == "doctor" else patient_group(user_id)


def publish(group, event, data):
    layer = get_channel_layer()
    if layer is None:
        logger.warning("[Events] no channel layer configured, dropping %s for %s", event, group)
        return
    async_to_sync(layer.group_send)(
        group,
        {"type": "push.event", "event": event, "data": data},
    )
    logger.debug("[Events] %s → %s", event, group)


def publish_on_commit(group, event, data):
    transaction.on_commit(lambda: publish(group, event, data))


# =============================================================================
# Consultation lifecycle
# =============================================================================

def consultation_started(session):
    publish_on_commit(patient_group(session.patient_id), CONSULTATION_STARTED, {
        "consultationId": session.consultation_id,
        "roomName"      : session.room_name,
        "doctorId"      : session.doctor_id,
        "patientId"     : session.patient_id,
    })


def consultation_ended(session):
    payload = {
        "consultationId": session.consultation_id,
        "doctorId"      : session.doctor_id,
        "patientId"     : session.patient_id,
        "status"        : session.status,
    }
    publish_on_commit(patient_group(session.patient_id), CONSULTATION_ENDED, payload)
    publish_on_commit(doctor_group(session.doctor_id), CONSULTATION_ENDED, payload)


def participant_rejoined(session, user_type, user_id):
    other = (
        patient_group(session.patient_id) if user_type == "doctor"
        else doctor_group(session.doctor_id)
    )
    publish_on_commit(other, PARTICIPANT_REJOINED, {
        "consultationId": session.consultation_id,
        "roomName"      : session.room_name,
        "userType"      : user_type,
        "userId"        : user_id,
    })


# =============================================================================
# Queue
# =============================================================================

def queue_changed(doctor_id, patient_id=None, joined=None):
    """
    Tell the doctor's dashboards to re-fetch. joined=True/False adds the
    specific join/leave signal; the payload is informational only.
    """
    group = doctor_group(doctor_id)
    if joined is True:
        publish_on_commit(group, PATIENT_JOINED_QUEUE, {"doctorId": doctor_id, "patientId": patient_id})
    elif joined is False:
        publish_on_commit(group, PATIENT_LEFT_QUEUE, {"doctorId": doctor_id, "patientId": patient_id})
    publish_on_commit(group, QUEUE_CHANGED, {"doctorId": doctor_id})


def position_update(patient_id, info):
    publish(patient_group(patient_id), POSITION_UPDATE, info)


# =============================================================================
# Rooms
# =============================================================================

def participant_count(room_name, count, joined=None, left=None):
    data = {"roomName": room_name, "participantCount": count}
    if joined:
        data["participantJoined"] = joined
    if left:
        data["participantLeft"] = left
    publish(room_group(room_name), PARTICIPANT_COUNT_UPDATE, data)
