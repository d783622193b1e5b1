# vdc_client/models.py
#
# Plain values decoded from backend JSON. The backend speaks camelCase; these
# are the snake_case views the client works with.

from dataclasses import dataclass, field
from typing import Optional

ACTION_REJOIN          = "rejoin"
ACTION_ENDED           = "ended"
ACTION_NONE            = "none"
ACTION_WAIT            = "wait"
ACTION_JOINED          = "joined"
ACTION_IN_CONSULTATION = "in_consultation"
ACTION_CONFLICT        = "conflict"

USER_TYPES = ("doctor", "patient")


def participant_identity(user_type, user_id):
    return f"{'D' if user_type == 'doctor' else 'P'}-{user_id}"


@dataclass
class SessionStatusResult:
    action: str
    consultation_id: Optional[str] = None
    room_name: Optional[str] = None
    position: Optional[int] = None
    estimated_wait: Optional[str] = None
    queue_length: Optional[int] = None
    status: Optional[str] = None
    # Set when the backend could not be reached and `none` is a stand-in
    fallback: bool = False
    error: Optional[str] = None

    @classmethod
    def from_payload(cls, payload):
        return cls(
            action=payload["action"],
            consultation_id=payload.get("consultationId"),
            room_name=payload.get("roomName"),
            position=payload.get("position"),
            estimated_wait=payload.get("estimatedWait"),
            queue_length=payload.get("queueLength"),
            status=payload.get("status"),
        )

    @classmethod
    def fallback_none(cls, error):
        return cls(action=ACTION_NONE, fallback=True, error=error)


@dataclass
class PositionInfo:
    position: Optional[int] = None
    estimated_wait: Optional[str] = None
    queue_length: Optional[int] = None
    status: Optional[str] = None
    room_name: Optional[str] = None

    @classmethod
    def from_payload(cls, payload):
        return cls(
            position=payload.get("position"),
            estimated_wait=payload.get("estimatedWait"),
            queue_length=payload.get("queueLength"),
            status=payload.get("status"),
            room_name=payload.get("roomName"),
        )


@dataclass
class QueueEntry:
    id: int
    doctor_id: int
    patient_id: int
    position: int
    status: str
    room_name: str = ""
    joined_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload):
        return cls(
            id=payload["id"],
            doctor_id=payload["doctorId"],
            patient_id=payload["patientId"],
            position=payload.get("position", 0),
            status=payload["status"],
            room_name=payload.get("roomName") or "",
            joined_at=payload.get("joinedAt"),
        )


@dataclass
class QueueJoinResult:
    action: str
    position: Optional[int] = None
    estimated_wait: Optional[str] = None
    queue_length: Optional[int] = None
    room_name: Optional[str] = None
    consultation_id: Optional[str] = None
    message: str = ""

    @classmethod
    def from_payload(cls, payload):
        return cls(
            action=payload["action"],
            position=payload.get("position"),
            estimated_wait=payload.get("estimatedWait"),
            queue_length=payload.get("queueLength"),
            room_name=payload.get("roomName"),
            consultation_id=payload.get("consultationId"),
            message=payload.get("message", ""),
        )


@dataclass
class Consultation:
    consultation_id: str
    room_name: str
    doctor_id: int
    patient_id: int
    status: str = "ongoing"
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload):
        known = {"consultationId", "roomName", "doctorId", "patientId", "status"}
        return cls(
            consultation_id=payload["consultationId"],
            room_name=payload["roomName"],
            doctor_id=payload["doctorId"],
            patient_id=payload["patientId"],
            status=payload.get("status", "ongoing"),
            extra={k: v for k, v in payload.items() if k not in known},
        )
