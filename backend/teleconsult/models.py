# teleconsult/models.py
#
# Tables for the video-consultation flow:
#   1. UserProfile          : role of every user (doctor / patient / admin)
#   2. ConsultationSession  : one video consultation between a doctor and a patient
#   3. QueueEntry           : a patient waiting for a doctor
#   4. DoctorPresence       : the doctor's availability toggle
#   5. VideoRoom            : media rooms handed out to clients
#   6. RoomParticipant      : who is connected to which room
#
# Doctor and patient ids are plain integers: a user's id is their doctorId or
# patientId, and a patient may also be a family member the backend does not
# model here.

import uuid

from django.contrib.auth.models import User
from django.db import models
from django.db.models import Q


# =============================================================================
# 1. USER PROFILE
# =============================================================================

class UserProfile(models.Model):
    ROLE_DOCTOR  = "doctor"
    ROLE_PATIENT = "patient"
    ROLE_ADMIN   = "admin"

    ROLE_CHOICES = [
        (ROLE_DOCTOR,  "Doctor"),
        (ROLE_PATIENT, "Patient"),
        (ROLE_ADMIN,   "Admin"),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="profile")
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_PATIENT)

    def __str__(self):
        return f"{self.user.get_full_name() or self.user.username} ({self.role})"


# =============================================================================
# 2. CONSULTATION SESSION
# =============================================================================

def _new_consultation_id():
    return str(uuid.uuid4())


class ConsultationSession(models.Model):
    """
    One video consultation.

    Flow:
      Doctor starts          →  status = 'ongoing'
      Doctor ends            →  status = 'completed'
      Cancelled by a party   →  status = 'cancelled'
    """

    STATUS_ONGOING   = "ongoing"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_ONGOING,   "Ongoing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    FINISHED_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

    consultation_id   = models.CharField(max_length=64, unique=True, default=_new_consultation_id, editable=False)
    doctor_id         = models.PositiveIntegerField(db_index=True)
    patient_id        = models.PositiveIntegerField(db_index=True)
    status            = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ONGOING)

    # Media room name, fixed for the lifetime of the consultation
    room_name         = models.CharField(max_length=120)
    consultation_type = models.CharField(max_length=20, default="video")

    notes             = models.TextField(blank=True)
    cancel_reason     = models.TextField(blank=True)

    start_time        = models.DateTimeField(auto_now_add=True)
    end_time          = models.DateTimeField(null=True, blank=True)
    updated_at        = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_time", "-id"]
        indexes = [
            models.Index(fields=["doctor_id", "patient_id", "status"], name="consult_pair_status_idx"),
        ]
        constraints = [
            # One ongoing consultation per doctor/patient pair
            models.UniqueConstraint(
                fields=["doctor_id", "patient_id"],
                condition=Q(status="ongoing"),
                name="unique_ongoing_consultation",
            ),
        ]

    @property
    def is_ongoing(self):
        return self.status == self.STATUS_ONGOING

    def __str__(self):
        return f"Consultation {self.consultation_id}: doctor={self.doctor_id} patient={self.patient_id} ({self.status})"


# =============================================================================
# 3. QUEUE ENTRY
# =============================================================================

class QueueEntry(models.Model):
    """
    A patient waiting for (or currently seeing) a doctor.

    waiting → in_consultation → left, or waiting → left. An entry never goes
    back to waiting; a returning patient gets a new row.
    """

    STATUS_WAITING         = "waiting"
    STATUS_IN_CONSULTATION = "in_consultation"
    STATUS_LEFT            = "left"

    STATUS_CHOICES = [
        (STATUS_WAITING,         "Waiting"),
        (STATUS_IN_CONSULTATION, "In consultation"),
        (STATUS_LEFT,            "Left"),
    ]

    ACTIVE_STATUSES = (STATUS_WAITING, STATUS_IN_CONSULTATION)

    doctor_id  = models.PositiveIntegerField(db_index=True)
    patient_id = models.PositiveIntegerField(db_index=True)
    status     = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_WAITING)

    # Assigned right after insert: "room-<id>"
    room_name  = models.CharField(max_length=120, blank=True)

    joined_at  = models.DateTimeField(auto_now_add=True)
    left_at    = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["joined_at", "id"]
        constraints = [
            # At most one active entry per doctor/patient pair
            models.UniqueConstraint(
                fields=["doctor_id", "patient_id"],
                condition=Q(status__in=["waiting", "in_consultation"]),
                name="unique_active_queue_entry",
            ),
        ]

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    def __str__(self):
        return f"Queue entry {self.id}: patient={self.patient_id} for doctor={self.doctor_id} ({self.status})"


# =============================================================================
# 4. DOCTOR PRESENCE
# =============================================================================

class DoctorPresence(models.Model):
    doctor_id    = models.PositiveIntegerField(unique=True)
    is_available = models.BooleanField(default=True)
    updated_at   = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Doctor {self.doctor_id} ({'available' if self.is_available else 'away'})"


# =============================================================================
# 5. VIDEO ROOM  +  6. ROOM PARTICIPANT
# =============================================================================

def _new_room_sid():
    return f"RM{uuid.uuid4().hex}"


def _new_participant_sid():
    return f"PA{uuid.uuid4().hex}"


class VideoRoom(models.Model):
    STATUS_IN_PROGRESS = "in-progress"
    STATUS_COMPLETED   = "completed"

    STATUS_CHOICES = [
        (STATUS_IN_PROGRESS, "In progress"),
        (STATUS_COMPLETED,   "Completed"),
    ]

    sid          = models.CharField(max_length=64, unique=True, default=_new_room_sid, editable=False)
    unique_name  = models.CharField(max_length=120, db_index=True)
    status       = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_IN_PROGRESS)
    date_created = models.DateTimeField(auto_now_add=True)
    date_updated = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date_created", "-id"]

    def __str__(self):
        return f"{self.unique_name} ({self.sid}, {self.status})"


class RoomParticipant(models.Model):
    STATUS_CONNECTED    = "connected"
    STATUS_DISCONNECTED = "disconnected"

    STATUS_CHOICES = [
        (STATUS_CONNECTED,    "Connected"),
        (STATUS_DISCONNECTED, "Disconnected"),
    ]

    sid          = models.CharField(max_length=64, unique=True, default=_new_participant_sid, editable=False)
    room         = models.ForeignKey(VideoRoom, on_delete=models.CASCADE, related_name="participants")
    identity     = models.CharField(max_length=64)
    status       = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_CONNECTED)
    date_created = models.DateTimeField(auto_now_add=True)
    date_updated = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["date_created", "id"]
        constraints = [
            models.UniqueConstraint(fields=["room", "identity"], name="unique_room_identity"),
        ]

    def __str__(self):
        return f"{self.identity} in {self.room.unique_name} ({self.status})"
