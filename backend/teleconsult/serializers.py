# teleconsult/serializers.py
#
# Request validation + camelCase response shapes for the consultation API.

from django.contrib.auth.models import User
from rest_framework import serializers

from .models import ConsultationSession, QueueEntry, RoomParticipant, UserProfile, VideoRoom


# =============================================================================
# USER
# =============================================================================

class UserSerializer(serializers.ModelSerializer):
    role     = serializers.SerializerMethodField()
    fullName = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "username", "fullName", "email", "role"]

    def get_role(self, obj):
        profile = getattr(obj, "profile", None)
        if profile is not None:
            return profile.role
        return UserProfile.ROLE_ADMIN if obj.is_superuser else UserProfile.ROLE_PATIENT

    def get_fullName(self, obj):
        return obj.get_full_name() or obj.username


# =============================================================================
# REQUESTS
# =============================================================================

class PairRequestSerializer(serializers.Serializer):
    doctorId  = serializers.IntegerField(min_value=1)
    patientId = serializers.IntegerField(min_value=1)


class StartConsultationSerializer(PairRequestSerializer):
    roomName = serializers.CharField(required=False, allow_blank=True, max_length=120)


class CheckStatusSerializer(PairRequestSerializer):
    autoJoin = serializers.BooleanField(required=False, default=False)


class RejoinSerializer(serializers.Serializer):
    consultationId = serializers.CharField(max_length=64)
    userId         = serializers.IntegerField(min_value=1)
    userType       = serializers.ChoiceField(choices=["doctor", "patient"])


class EndConsultationSerializer(serializers.Serializer):
    consultationId = serializers.CharField(max_length=64)
    doctorId       = serializers.IntegerField(min_value=1)
    notes          = serializers.CharField(required=False, allow_blank=True, default="")


class NotesSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class CancelSerializer(serializers.Serializer):
    cancelReason = serializers.CharField(required=False, allow_blank=True, default="")


class NextConsultationSerializer(serializers.Serializer):
    doctorId = serializers.IntegerField(min_value=1)


class PaginationSerializer(serializers.Serializer):
    page  = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100, default=10)


class VideoTokenSerializer(serializers.Serializer):
    identity = serializers.CharField(max_length=64)
    roomName = serializers.CharField(max_length=120)


class VideoRoomRequestSerializer(serializers.Serializer):
    roomName = serializers.CharField(max_length=120)


# =============================================================================
# RESPONSES
# =============================================================================

class ConsultationSerializer(serializers.ModelSerializer):
    consultationId   = serializers.CharField(source="consultation_id", read_only=True)
    doctorId         = serializers.IntegerField(source="doctor_id", read_only=True)
    patientId        = serializers.IntegerField(source="patient_id", read_only=True)
    roomName         = serializers.CharField(source="room_name", read_only=True)
    consultationType = serializers.CharField(source="consultation_type", read_only=True)
    cancelReason     = serializers.CharField(source="cancel_reason", read_only=True)
    startTime        = serializers.DateTimeField(source="start_time", read_only=True)
    endTime          = serializers.DateTimeField(source="end_time", read_only=True)

    class Meta:
        model = ConsultationSession
        fields = [
            "consultationId", "doctorId", "patientId", "status", "roomName",
            "consultationType", "notes", "cancelReason", "startTime", "endTime",
        ]


class QueueEntrySerializer(serializers.ModelSerializer):
    """Expects entries from services.queue_snapshot(), which sets `position`."""
    doctorId  = serializers.IntegerField(source="doctor_id", read_only=True)
    patientId = serializers.IntegerField(source="patient_id", read_only=True)
    roomName  = serializers.CharField(source="room_name", read_only=True)
    joinedAt  = serializers.DateTimeField(source="joined_at", read_only=True)
    position  = serializers.IntegerField(read_only=True)

    class Meta:
        model = QueueEntry
        fields = ["id", "doctorId", "patientId", "position", "status", "roomName", "joinedAt"]


class RoomParticipantSerializer(serializers.ModelSerializer):
    dateCreated = serializers.DateTimeField(source="date_created", read_only=True)

    class Meta:
        model = RoomParticipant
        fields = ["sid", "identity", "status", "dateCreated"]


class VideoRoomSerializer(serializers.ModelSerializer):
    uniqueName  = serializers.CharField(source="unique_name", read_only=True)
    dateCreated = serializers.DateTimeField(source="date_created", read_only=True)
    dateUpdated = serializers.DateTimeField(source="date_updated", read_only=True)

    class Meta:
        model = VideoRoom
        fields = ["sid", "uniqueName", "status", "dateCreated", "dateUpdated"]
