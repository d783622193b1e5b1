# teleconsult/services.py
#
# Consultation + queue operations. Views and the event consumer call these;
# they raise teleconsult.exceptions errors and publish events after commit.

import logging
import uuid

from django.conf import settings
from django.core.paginator import EmptyPage, Paginator
from django.db import IntegrityError, transaction
from django.utils import timezone

from . import events
from .exceptions import ConflictError, ForbiddenError, NotFoundError
from .models import ConsultationSession, DoctorPresence, QueueEntry, VideoRoom
from .policy import (
    ACTION_CONFLICT,
    ACTION_ENDED,
    ACTION_IN_CONSULTATION,
    ACTION_JOIN,
    ACTION_REJOIN,
    ACTION_WAIT,
    format_estimated_wait,
    resolve_action,
)

logger = logging.getLogger(__name__)


# =============================================================================
# LOOKUPS
# =============================================================================

def _ongoing_session(doctor_id, patient_id):
    return ConsultationSession.objects.filter(
        doctor_id=doctor_id, patient_id=patient_id,
        status=ConsultationSession.STATUS_ONGOING,
    ).first()


def _latest_session(doctor_id, patient_id):
    return ConsultationSession.objects.filter(
        doctor_id=doctor_id, patient_id=patient_id,
    ).order_by("-start_time", "-id").first()


def _active_entry(doctor_id, patient_id):
    return QueueEntry.objects.filter(
        doctor_id=doctor_id, patient_id=patient_id,
        status__in=QueueEntry.ACTIVE_STATUSES,
    ).first()


def _doctor_busy(doctor_id):
    return ConsultationSession.objects.filter(
        doctor_id=doctor_id, status=ConsultationSession.STATUS_ONGOING,
    ).exists()


def get_consultation(consultation_id):
    session = ConsultationSession.objects.filter(consultation_id=consultation_id).first()
    if session is None:
        raise NotFoundError("Consultation not found")
    return session


# =============================================================================
# QUEUE
# =============================================================================

def _average_minutes():
    return settings.QUEUE_AVERAGE_CONSULTATION_MINUTES


def queue_snapshot(doctor_id):
    """
    Active entries for a doctor, ordered by position: entries in consultation
    first (position 0), then waiting entries numbered 1..n by arrival.
    Each returned entry carries a `position` attribute.
    """
    entries = list(
        QueueEntry.objects.filter(doctor_id=doctor_id, status__in=QueueEntry.ACTIVE_STATUSES)
        .order_by("id")
    )
    in_consultation = [e for e in entries if e.status == QueueEntry.STATUS_IN_CONSULTATION]
    waiting         = [e for e in entries if e.status == QueueEntry.STATUS_WAITING]

    for entry in in_consultation:
        entry.position = 0
    for index, entry in enumerate(waiting, start=1):
        entry.position = index
    return in_consultation + waiting


def position_info(entry):
    """Position, estimated wait and queue length for one active entry."""
    queue_length = QueueEntry.objects.filter(
        doctor_id=entry.doctor_id, status=QueueEntry.STATUS_WAITING,
    ).count()

    if entry.status == QueueEntry.STATUS_IN_CONSULTATION:
        position = 0
        wait_minutes = 0
    else:
        ahead = QueueEntry.objects.filter(
            doctor_id=entry.doctor_id, status=QueueEntry.STATUS_WAITING, id__lt=entry.id,
        ).count()
        position = ahead + 1
        if _doctor_busy(entry.doctor_id):
            ahead += 1
        wait_minutes = ahead * _average_minutes()

    return {
        "position"     : position,
        "estimatedWait": format_estimated_wait(wait_minutes),
        "queueLength"  : queue_length,
        "status"       : entry.status,
        "roomName"     : entry.room_name,
        "doctorId"     : entry.doctor_id,
    }


def announce_positions(doctor_id):
    """Push POSITION_UPDATE to every patient still waiting for the doctor."""
    for entry in queue_snapshot(doctor_id):
        if entry.status == QueueEntry.STATUS_WAITING:
            events.position_update(entry.patient_id, position_info(entry))


def _announce_positions_on_commit(doctor_id):
    transaction.on_commit(lambda: announce_positions(doctor_id))


def _enqueue(doctor_id, patient_id):
    """
    Return (entry, created). Safe under concurrent calls for the same pair:
    the unique_active_queue_entry constraint rejects the second insert and
    the existing entry is returned instead.
    """
    entry = _active_entry(doctor_id, patient_id)
    if entry is not None:
        return entry, False

    try:
        with transaction.atomic():
            entry = QueueEntry.objects.create(doctor_id=doctor_id, patient_id=patient_id)
            entry.room_name = f"room-{entry.id}"
            entry.save(update_fields=["room_name"])
    except IntegrityError:
        entry = _active_entry(doctor_id, patient_id)
        if entry is None:
            raise
        logger.info("[Queue] patient=%s already queued for doctor=%s", patient_id, doctor_id)
        return entry, False

    logger.info("[Queue] patient=%s joined doctor=%s queue  entry=%s", patient_id, doctor_id, entry.id)
    events.queue_changed(doctor_id, patient_id, joined=True)
    _announce_positions_on_commit(doctor_id)
    return entry, True


def _retire_entry(entry):
    entry.status  = QueueEntry.STATUS_LEFT
    entry.left_at = timezone.now()
    entry.save(update_fields=["status", "left_at"])


@transaction.atomic
def join_queue(patient_id, doctor_id):
    session = _ongoing_session(doctor_id, patient_id)
    if session is not None:
        return {
            "success"       : True,
            "message"       : "Consultation in progress",
            "action"        : "rejoin",
            "position"      : 0,
            "estimatedWait" : format_estimated_wait(0),
            "roomName"      : session.room_name,
            "consultationId": session.consultation_id,
        }

    entry, created = _enqueue(doctor_id, patient_id)
    info = position_info(entry)

    if entry.status == QueueEntry.STATUS_IN_CONSULTATION:
        action, message = "in_consultation", "Consultation in progress"
    elif created:
        action, message = "joined", "Joined queue"
    else:
        action, message = "waiting", "Already in queue"

    return {
        "success"      : True,
        "message"      : message,
        "action"       : action,
        "position"     : info["position"],
        "estimatedWait": info["estimatedWait"],
        "queueLength"  : info["queueLength"],
        "roomName"     : entry.room_name,
    }


@transaction.atomic
def leave_queue(patient_id, doctor_id):
    entry = (
        QueueEntry.objects.select_for_update()
        .filter(doctor_id=doctor_id, patient_id=patient_id, status__in=QueueEntry.ACTIVE_STATUSES)
        .first()
    )
    if entry is None:
        logger.info("[Queue] leave: patient=%s not queued for doctor=%s", patient_id, doctor_id)
        return queue_snapshot(doctor_id)

    if entry.status == QueueEntry.STATUS_IN_CONSULTATION:
        raise ConflictError("Patient is in consultation; end the consultation instead")

    _retire_entry(entry)
    logger.info("[Queue] patient=%s left doctor=%s queue", patient_id, doctor_id)
    events.queue_changed(doctor_id, patient_id, joined=False)
    _announce_positions_on_commit(doctor_id)
    return queue_snapshot(doctor_id)


def fetch_queue(doctor_id):
    return queue_snapshot(doctor_id)


# =============================================================================
# STATUS CHECK
# =============================================================================

@transaction.atomic
def check_status(doctor_id, patient_id, auto_join):
    active = _ongoing_session(doctor_id, patient_id)
    latest = _latest_session(doctor_id, patient_id)
    entry  = _active_entry(doctor_id, patient_id)
    busy_elsewhere = ConsultationSession.objects.filter(
        patient_id=patient_id, status=ConsultationSession.STATUS_ONGOING,
    ).exclude(doctor_id=doctor_id).exists()

    action = resolve_action(active, latest, entry, auto_join, busy_elsewhere=busy_elsewhere)

    if action == ACTION_JOIN:
        # A concurrent call may have queued the pair first
        entry, created = _enqueue(doctor_id, patient_id)
        if not created:
            in_consultation = entry.status == QueueEntry.STATUS_IN_CONSULTATION
            action = ACTION_IN_CONSULTATION if in_consultation else ACTION_WAIT

    result = {"success": True, "action": action}

    if action == ACTION_REJOIN:
        result.update({
            "status"        : active.status,
            "consultationId": active.consultation_id,
            "roomName"      : active.room_name,
        })
    elif action == ACTION_ENDED:
        result.update({
            "status"        : latest.status,
            "consultationId": latest.consultation_id,
            "roomName"      : latest.room_name,
        })
    elif action == ACTION_IN_CONSULTATION:
        result.update(position_info(entry))
        if latest is not None:
            result["consultationId"] = latest.consultation_id
    elif action in (ACTION_WAIT, ACTION_JOIN):
        result.update(position_info(entry))
    elif action == ACTION_CONFLICT:
        result["message"] = "Patient is already in another consultation"

    logger.info(
        "[Status] doctor=%s patient=%s autoJoin=%s → %s",
        doctor_id, patient_id, auto_join, action,
    )
    return result


# =============================================================================
# CONSULTATION LIFECYCLE
# =============================================================================

def start_consultation(doctor_id, patient_id, room_name=None):
    """
    Return (session, created). An ongoing consultation for the pair is
    returned as is.
    """
    try:
        with transaction.atomic():
            return _start_consultation(doctor_id, patient_id, room_name)
    except IntegrityError:
        # Lost the race against a concurrent start for the same pair
        session = _ongoing_session(doctor_id, patient_id)
        if session is None:
            raise
        return session, False


def _start_consultation(doctor_id, patient_id, room_name=None):
    existing = _ongoing_session(doctor_id, patient_id)
    if existing is not None:
        return existing, False

    if _doctor_busy(doctor_id):
        raise ConflictError("Doctor is already in another consultation")
    if ConsultationSession.objects.filter(
        patient_id=patient_id, status=ConsultationSession.STATUS_ONGOING,
    ).exists():
        raise ConflictError("Patient is already in another consultation")

    entry = (
        QueueEntry.objects.select_for_update()
        .filter(doctor_id=doctor_id, patient_id=patient_id, status__in=QueueEntry.ACTIVE_STATUSES)
        .first()
    )
    if entry is not None:
        room_name = entry.room_name
    elif not room_name:
        room_name = f"room-{uuid.uuid4().hex[:12]}"

    session = ConsultationSession.objects.create(
        doctor_id=doctor_id, patient_id=patient_id, room_name=room_name,
    )
    if entry is not None and entry.status == QueueEntry.STATUS_WAITING:
        entry.status = QueueEntry.STATUS_IN_CONSULTATION
        entry.save(update_fields=["status"])

    logger.info(
        "[Consultation] started %s doctor=%s patient=%s room=%s",
        session.consultation_id, doctor_id, patient_id, room_name,
    )
    events.consultation_started(session)
    events.queue_changed(doctor_id)
    _announce_positions_on_commit(doctor_id)
    return session, True


def next_consultation(doctor_id):
    entry = (
        QueueEntry.objects.filter(doctor_id=doctor_id, status=QueueEntry.STATUS_WAITING)
        .order_by("id")
        .first()
    )
    if entry is None:
        raise NotFoundError("No patients waiting in queue")
    return start_consultation(doctor_id, entry.patient_id)


def _is_participant(session, user_id, user_type):
    if user_type == "doctor":
        return session.doctor_id == user_id
    return session.patient_id == user_id


@transaction.atomic
def rejoin_consultation(consultation_id, user_id, user_type):
    session = get_consultation(consultation_id)
    if not _is_participant(session, user_id, user_type):
        raise ForbiddenError()
    if not session.is_ongoing:
        raise ConflictError("Consultation has already ended")

    logger.info("[Consultation] %s %s rejoined %s", user_type, user_id, consultation_id)
    events.participant_rejoined(session, user_type, user_id)
    return session


def _finish(session, status, notes="", cancel_reason=""):
    if not session.is_ongoing:
        raise ConflictError("Consultation has already ended")

    session.status   = status
    session.end_time = timezone.now()
    if notes:
        session.notes = notes
    if cancel_reason:
        session.cancel_reason = cancel_reason
    session.save(update_fields=["status", "end_time", "notes", "cancel_reason", "updated_at"])

    entry = (
        QueueEntry.objects.select_for_update()
        .filter(doctor_id=session.doctor_id, patient_id=session.patient_id,
                status__in=QueueEntry.ACTIVE_STATUSES)
        .first()
    )
    if entry is not None:
        _retire_entry(entry)

    VideoRoom.objects.filter(
        unique_name=session.room_name, status=VideoRoom.STATUS_IN_PROGRESS,
    ).update(status=VideoRoom.STATUS_COMPLETED, date_updated=timezone.now())

    events.consultation_ended(session)
    events.queue_changed(session.doctor_id)
    _announce_positions_on_commit(session.doctor_id)


@transaction.atomic
def end_consultation(consultation_id, notes="", doctor_id=None):
    """
    Complete an ongoing consultation. With doctor_id, only that doctor may
    end it.
    """
    session = (
        ConsultationSession.objects.select_for_update()
        .filter(consultation_id=consultation_id)
        .first()
    )
    if session is None:
        raise NotFoundError("Consultation not found")
    if doctor_id is not None and session.doctor_id != doctor_id:
        raise ForbiddenError("Only the consulting doctor can end this consultation")

    _finish(session, ConsultationSession.STATUS_COMPLETED, notes=notes or "")
    logger.info("[Consultation] ended %s", consultation_id)
    return session


@transaction.atomic
def cancel_consultation(consultation_id, cancel_reason="", user_id=None, user_type=None):
    session = (
        ConsultationSession.objects.select_for_update()
        .filter(consultation_id=consultation_id)
        .first()
    )
    if session is None:
        raise NotFoundError("Consultation not found")
    if user_type is not None and not _is_participant(session, user_id, user_type):
        raise ForbiddenError()

    _finish(session, ConsultationSession.STATUS_CANCELLED, cancel_reason=cancel_reason or "")
    logger.info("[Consultation] cancelled %s", consultation_id)
    return session


def consultation_history(doctor_id=None, patient_id=None, page=1, limit=10):
    """Return (page_items, paginator, page_number), newest first."""
    sessions = ConsultationSession.objects.all().order_by("-start_time", "-id")
    if doctor_id is not None:
        sessions = sessions.filter(doctor_id=doctor_id)
    if patient_id is not None:
        sessions = sessions.filter(patient_id=patient_id)

    paginator = Paginator(sessions, limit)
    try:
        current = paginator.page(page)
    except EmptyPage:
        return [], paginator, page
    return list(current.object_list), paginator, page


# =============================================================================
# DOCTOR PRESENCE
# =============================================================================

def set_doctor_availability(doctor_id, is_available):
    presence, _ = DoctorPresence.objects.update_or_create(
        doctor_id=doctor_id, defaults={"is_available": bool(is_available)},
    )
    logger.info("[Presence] doctor=%s available=%s", doctor_id, presence.is_available)
    return presence
