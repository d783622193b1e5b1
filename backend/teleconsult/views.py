# teleconsult/views.py
#
# REST surface of the consultation flow. Views validate input, call
# services / video and shape the JSON; all state changes live in services.

import logging

from django.contrib.auth import authenticate
from django.core.paginator import Paginator

from rest_framework import serializers as drf_serializers
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from . import events, services, video
from .exceptions import ConsultationError, ForbiddenError
from .models import UserProfile
from .serializers import (
    CancelSerializer,
    CheckStatusSerializer,
    ConsultationSerializer,
    EndConsultationSerializer,
    NextConsultationSerializer,
    NotesSerializer,
    PaginationSerializer,
    PairRequestSerializer,
    QueueEntrySerializer,
    RejoinSerializer,
    RoomParticipantSerializer,
    StartConsultationSerializer,
    UserSerializer,
    VideoRoomRequestSerializer,
    VideoRoomSerializer,
    VideoTokenSerializer,
)

logger = logging.getLogger(__name__)


class ConsultationAPIView(APIView):
    """
    Base view: service errors become {success: false, message} with the
    error's status code, request validation errors a 400, anything else is
    logged and answered with a 500.
    """

    def handle_exception(self, exc):
        if isinstance(exc, ConsultationError):
            return Response({"success": False, "message": exc.message}, status=exc.status_code)

        if isinstance(exc, drf_serializers.ValidationError):
            return Response(
                {"success": False, "message": "Invalid request", "errors": exc.detail},
                status=status.HTTP_400_BAD_REQUEST,
            )

        if isinstance(exc, APIException):
            return super().handle_exception(exc)

        logger.exception("[API] %s %s failed", self.request.method, self.request.path)
        return Response(
            {"success": False, "message": "Internal server error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @staticmethod
    def validated(serializer_class, data):
        serializer = serializer_class(data=data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    @staticmethod
    def caller_role(request):
        profile = getattr(request.user, "profile", None)
        if profile is not None:
            return profile.role
        return UserProfile.ROLE_ADMIN if request.user.is_superuser else UserProfile.ROLE_PATIENT

    def act_as(self, request, user_type, user_id):
        """Callers act as themselves only; admins may act for anyone."""
        role = self.caller_role(request)
        if role == UserProfile.ROLE_ADMIN:
            return role
        if role != user_type or request.user.pk != user_id:
            logger.warning("[API] %s %s tried to act as %s %s", role, request.user.pk, user_type, user_id)
            raise ForbiddenError("Not allowed to act for this user")
        return role

    def act_as_party(self, request, doctor_id, patient_id):
        """Doctor callers must be doctor_id, patient callers patient_id."""
        role = self.caller_role(request)
        own_id = doctor_id if role == UserProfile.ROLE_DOCTOR else patient_id
        return self.act_as(request, role, own_id)


def _consultation_payload(session):
    return {
        "consultationId": session.consultation_id,
        "roomName"      : session.room_name,
        "doctorId"      : session.doctor_id,
        "patientId"     : session.patient_id,
        "status"        : session.status,
    }


def _page_payload(items, paginator, page, key, serializer_class):
    return {
        "success"    : True,
        "count"      : paginator.count,
        "totalPages" : paginator.num_pages,
        "currentPage": page,
        key          : serializer_class(items, many=True).data,
    }


# =============================================================================
# AUTHENTICATION
# =============================================================================

class LoginView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        username = request.data.get("username")
        password = request.data.get("password")
        user = authenticate(username=username, password=password)
        if user is None:
            return Response({"success": False, "message": "Invalid credentials"},
                            status=status.HTTP_401_UNAUTHORIZED)

        refresh = RefreshToken.for_user(user)
        return Response({
            "success": True,
            "access" : str(refresh.access_token),
            "refresh": str(refresh),
            "user"   : UserSerializer(user).data,
        })


class ProfileView(APIView):
    def get(self, request):
        return Response(UserSerializer(request.user).data)


# =============================================================================
# CONSULTATION LIFECYCLE
# =============================================================================

class StartConsultationView(ConsultationAPIView):
    """POST /api/consultation/startConsultation  {doctorId, patientId, roomName?}"""

    def post(self, request):
        data = self.validated(StartConsultationSerializer, request.data)
        self.act_as(request, UserProfile.ROLE_DOCTOR, data["doctorId"])
        session, created = services.start_consultation(
            data["doctorId"], data["patientId"], room_name=data.get("roomName") or None,
        )
        body = {"success": True, **_consultation_payload(session)}
        if created:
            body["message"] = "Consultation started"
            return Response(body, status=status.HTTP_201_CREATED)
        body["message"] = "Consultation already exists"
        return Response(body)


class NextConsultationView(ConsultationAPIView):
    """POST /api/consultation/nextConsultation  {doctorId}"""

    def post(self, request):
        data = self.validated(NextConsultationSerializer, request.data)
        self.act_as(request, UserProfile.ROLE_DOCTOR, data["doctorId"])
        session, created = services.next_consultation(data["doctorId"])
        return Response(
            {"success": True, "message": "Consultation started", **_consultation_payload(session)},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class CheckStatusView(ConsultationAPIView):
    """
    POST /api/consultation/checkStatus  {doctorId, patientId, autoJoin}

    autoJoin is honoured for patient callers only.
    """

    def post(self, request):
        data = self.validated(CheckStatusSerializer, request.data)
        role = self.act_as_party(request, data["doctorId"], data["patientId"])
        auto_join = data["autoJoin"] and role == UserProfile.ROLE_PATIENT
        result = services.check_status(data["doctorId"], data["patientId"], auto_join)
        return Response(result)


class RejoinView(ConsultationAPIView):
    """POST /api/consultation/rejoin  {consultationId, userId, userType}"""

    def post(self, request):
        data = self.validated(RejoinSerializer, request.data)
        self.act_as(request, data["userType"], data["userId"])
        session = services.rejoin_consultation(data["consultationId"], data["userId"], data["userType"])
        return Response({"success": True, "message": "Rejoined consultation", **_consultation_payload(session)})


class EndConsultationView(ConsultationAPIView):
    """POST /api/consultation/<consultation_id>/end  {notes?}"""

    def post(self, request, consultation_id):
        data = self.validated(NotesSerializer, request.data)
        role = self.caller_role(request)
        if role == UserProfile.ROLE_PATIENT:
            raise ForbiddenError("Only the consulting doctor can end this consultation")
        doctor_id = request.user.pk if role == UserProfile.ROLE_DOCTOR else None
        session = services.end_consultation(consultation_id, notes=data["notes"], doctor_id=doctor_id)
        return Response({"success": True, "message": "Consultation ended", **_consultation_payload(session)})


class EndConsultationByDoctorView(ConsultationAPIView):
    """POST /api/consultation/endConsultation  {consultationId, doctorId, notes?}"""

    def post(self, request):
        data = self.validated(EndConsultationSerializer, request.data)
        self.act_as(request, UserProfile.ROLE_DOCTOR, data["doctorId"])
        session = services.end_consultation(
            data["consultationId"], notes=data["notes"], doctor_id=data["doctorId"],
        )
        return Response({"success": True, "message": "Consultation ended", **_consultation_payload(session)})


class CancelConsultationView(ConsultationAPIView):
    """POST /api/consultation/<consultation_id>/cancel  {cancelReason?}"""

    def post(self, request, consultation_id):
        data = self.validated(CancelSerializer, request.data)
        role = self.caller_role(request)
        if role == UserProfile.ROLE_ADMIN:
            session = services.cancel_consultation(consultation_id, cancel_reason=data["cancelReason"])
        else:
            session = services.cancel_consultation(
                consultation_id, cancel_reason=data["cancelReason"],
                user_id=request.user.pk, user_type=role,
            )
        return Response({"success": True, "message": "Consultation cancelled", **_consultation_payload(session)})


class ConsultationDetailView(ConsultationAPIView):
    def get(self, request, consultation_id):
        session = services.get_consultation(consultation_id)
        return Response({"success": True, "consultation": ConsultationSerializer(session).data})


class ConsultationHistoryView(ConsultationAPIView):
    """
    GET /api/consultation/history
    GET /api/consultation/doctor/<doctor_id>/history
    GET /api/consultation/patient/<patient_id>/history
    """

    def get(self, request, doctor_id=None, patient_id=None):
        paging = self.validated(PaginationSerializer, request.query_params)
        items, paginator, page = services.consultation_history(
            doctor_id=doctor_id, patient_id=patient_id,
            page=paging["page"], limit=paging["limit"],
        )
        return Response(_page_payload(items, paginator, page, "consultations", ConsultationSerializer))


# =============================================================================
# PATIENT QUEUE
# =============================================================================

class PatientQueueView(ConsultationAPIView):
    """GET /api/patientQueue/<doctor_id>?page&limit: active entries by position."""

    def get(self, request, doctor_id):
        paging = self.validated(PaginationSerializer, request.query_params)
        paginator = Paginator(services.fetch_queue(doctor_id), paging["limit"])
        page = paging["page"]
        items = paginator.page(page).object_list if page <= paginator.num_pages else []

        body = _page_payload(items, paginator, page, "queue", QueueEntrySerializer)
        body["doctorId"] = doctor_id
        return Response(body)


class JoinQueueView(ConsultationAPIView):
    """POST /api/patientQueue/join  {patientId, doctorId}"""

    def post(self, request):
        data = self.validated(PairRequestSerializer, request.data)
        self.act_as_party(request, data["doctorId"], data["patientId"])
        return Response(services.join_queue(data["patientId"], data["doctorId"]))


class LeaveQueueView(ConsultationAPIView):
    """POST /api/patientQueue/leave  {patientId, doctorId}"""

    def post(self, request):
        data = self.validated(PairRequestSerializer, request.data)
        self.act_as_party(request, data["doctorId"], data["patientId"])
        queue = services.leave_queue(data["patientId"], data["doctorId"])
        return Response({
            "success" : True,
            "message" : "Left queue",
            "doctorId": data["doctorId"],
            "queue"   : QueueEntrySerializer(queue, many=True).data,
        })


# =============================================================================
# VIDEO
# =============================================================================

class VideoTokenView(ConsultationAPIView):
    """POST /api/video/token  {identity, roomName}"""

    def post(self, request):
        data = self.validated(VideoTokenSerializer, request.data)
        user_type, user_id = video.parse_identity(data["identity"])
        self.act_as(request, user_type, user_id)
        token, consultation = video.issue_token(data["identity"], data["roomName"])
        body = {
            "success" : True,
            "token"   : token,
            "identity": data["identity"],
            "roomName": data["roomName"],
        }
        if consultation is not None:
            body["consultationData"] = _consultation_payload(consultation)
        return Response(body)


class VideoRoomCreateView(ConsultationAPIView):
    """POST /api/video/room  {roomName}"""

    def post(self, request):
        data = self.validated(VideoRoomRequestSerializer, request.data)
        room = video.create_room(data["roomName"])
        return Response({"success": True, "room": VideoRoomSerializer(room).data})


class VideoRoomListView(ConsultationAPIView):
    """GET /api/video/rooms?status=in-progress|completed"""

    def get(self, request):
        rooms = video.list_rooms(request.query_params.get("status"))
        return Response({"success": True, "rooms": VideoRoomSerializer(rooms, many=True).data})


class VideoRoomDetailView(ConsultationAPIView):
    def get(self, request, sid):
        room = video.get_room(sid)
        return Response({"success": True, "room": VideoRoomSerializer(room).data})


class VideoRoomCompleteView(ConsultationAPIView):
    def post(self, request, sid):
        room = video.complete_room(sid)
        return Response({"success": True, "room": VideoRoomSerializer(room).data})


class VideoRoomParticipantsView(ConsultationAPIView):
    """GET /api/video/room/<sid>/participants: connected participants only."""

    def get(self, request, sid):
        room = video.get_room(sid)
        participants = video.connected_participants(room)
        return Response({
            "success"         : True,
            "roomName"        : room.unique_name,
            "participantCount": participants.count(),
            "participants"    : RoomParticipantSerializer(participants, many=True).data,
        })


class VideoParticipantDisconnectView(ConsultationAPIView):
    def post(self, request, sid, participant_sid):
        participant = video.disconnect_participant(sid, participant_sid)
        room_name = participant.room.unique_name
        events.participant_count(
            room_name, video.connected_count(room_name), left=participant.identity,
        )
        return Response({"success": True, "participant": RoomParticipantSerializer(participant).data})
