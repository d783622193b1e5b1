"""
Consultation lifecycle endpoints: start / next / rejoin / end / cancel /
history, and the events they push.
"""

import pytest
from django.db import IntegrityError, transaction
from rest_framework import status

from teleconsult.models import ConsultationSession, QueueEntry, VideoRoom

START = "/api/consultation/startConsultation"
NEXT = "/api/consultation/nextConsultation"
REJOIN = "/api/consultation/rejoin"
END_BY_DOCTOR = "/api/consultation/endConsultation"


def start(client, doctor_id=5, patient_id=9):
    return client.post(START, {"doctorId": doctor_id, "patientId": patient_id}, format="json")


@pytest.mark.django_db
class TestStartConsultation:

    def test_creates_ongoing_session(self, doctor_client):
        response = start(doctor_client)

        assert response.status_code == status.HTTP_201_CREATED
        session = ConsultationSession.objects.get(consultation_id=response.data["consultationId"])
        assert session.status == "ongoing"
        assert response.data["doctorId"] == 5
        assert response.data["patientId"] == 9

    def test_second_start_returns_existing(self, doctor_client):
        first = start(doctor_client)
        second = start(doctor_client)

        assert second.status_code == status.HTTP_200_OK
        assert second.data["message"] == "Consultation already exists"
        assert second.data["consultationId"] == first.data["consultationId"]
        assert ConsultationSession.objects.count() == 1

    def test_promotes_waiting_entry_and_reuses_its_room(self, doctor_client):
        entry = QueueEntry.objects.create(doctor_id=5, patient_id=9, room_name="room-41")

        response = start(doctor_client)

        entry.refresh_from_db()
        assert entry.status == QueueEntry.STATUS_IN_CONSULTATION
        assert response.data["roomName"] == "room-41"

    def test_doctor_busy_with_another_patient_conflicts(self, doctor_client):
        start(doctor_client, patient_id=3)

        response = start(doctor_client, patient_id=9)

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["success"] is False

    def test_one_ongoing_session_per_pair_in_database(self):
        ConsultationSession.objects.create(doctor_id=5, patient_id=9, room_name="a")

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                ConsultationSession.objects.create(doctor_id=5, patient_id=9, room_name="b")

    def test_pushes_started_to_patient(self, doctor_client, published, django_capture_on_commit_callbacks):
        QueueEntry.objects.create(doctor_id=5, patient_id=2, room_name="room-2")
        QueueEntry.objects.create(doctor_id=5, patient_id=9, room_name="room-9")

        with django_capture_on_commit_callbacks(execute=True):
            response = start(doctor_client, patient_id=2)

        started = [(g, d) for g, n, d in published if n == "CONSULTATION_STARTED"]
        assert started == [("patient_2", {
            "consultationId": response.data["consultationId"],
            "roomName": "room-2",
            "doctorId": 5,
            "patientId": 2,
        })]
        assert ("doctor_5", "QUEUE_CHANGED") in [(g, n) for g, n, _ in published]
        # Patient 9 is still waiting; their estimate now includes the running consultation
        updates = [d for g, n, d in published if g == "patient_9" and n == "POSITION_UPDATE"]
        assert updates[-1]["position"] == 1


@pytest.mark.django_db
class TestNextConsultation:

    def test_starts_first_waiting_patient(self, doctor_client):
        QueueEntry.objects.create(doctor_id=5, patient_id=7)
        QueueEntry.objects.create(doctor_id=5, patient_id=3)

        response = doctor_client.post(NEXT, {"doctorId": 5}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["patientId"] == 7

    def test_empty_queue_is_not_found(self, doctor_client):
        response = doctor_client.post(NEXT, {"doctorId": 5}, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["message"] == "No patients waiting in queue"


@pytest.mark.django_db
class TestRejoin:

    def test_participant_can_rejoin(self, patient_client, published, django_capture_on_commit_callbacks):
        session = ConsultationSession.objects.create(doctor_id=5, patient_id=9, room_name="room-9")

        with django_capture_on_commit_callbacks(execute=True):
            response = patient_client.post(REJOIN, {
                "consultationId": session.consultation_id, "userId": 9, "userType": "patient",
            }, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["roomName"] == "room-9"
        assert [(g, n) for g, n, _ in published] == [("doctor_5", "PARTICIPANT_REJOINED")]

    def test_non_participant_is_forbidden(self, patient_client):
        session = ConsultationSession.objects.create(doctor_id=5, patient_id=9, room_name="room-9")

        response = patient_client.post(REJOIN, {
            "consultationId": session.consultation_id, "userId": 10, "userType": "patient",
        }, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_ended_consultation_conflicts(self, patient_client):
        session = ConsultationSession.objects.create(
            doctor_id=5, patient_id=9, room_name="room-9", status=ConsultationSession.STATUS_COMPLETED,
        )

        response = patient_client.post(REJOIN, {
            "consultationId": session.consultation_id, "userId": 9, "userType": "patient",
        }, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["message"] == "Consultation has already ended"

    def test_unknown_consultation(self, patient_client):
        response = patient_client.post(REJOIN, {
            "consultationId": "nope", "userId": 9, "userType": "patient",
        }, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestEndConsultation:

    def test_end_by_doctor(self, doctor_client, published, django_capture_on_commit_callbacks):
        QueueEntry.objects.create(doctor_id=5, patient_id=9, room_name="room-1")
        consultation_id = start(doctor_client).data["consultationId"]
        VideoRoom.objects.create(unique_name="room-1")

        with django_capture_on_commit_callbacks(execute=True):
            response = doctor_client.post(END_BY_DOCTOR, {
                "consultationId": consultation_id, "doctorId": 5, "notes": "Follow up in 2 weeks",
            }, format="json")

        assert response.status_code == status.HTTP_200_OK
        session = ConsultationSession.objects.get(consultation_id=consultation_id)
        assert session.status == "completed"
        assert session.end_time is not None
        assert session.notes == "Follow up in 2 weeks"
        assert QueueEntry.objects.get(patient_id=9).status == QueueEntry.STATUS_LEFT
        assert VideoRoom.objects.get(unique_name="room-1").status == VideoRoom.STATUS_COMPLETED

        ended_groups = {g for g, n, _ in published if n == "CONSULTATION_ENDED"}
        assert ended_groups == {"patient_9", "doctor_5"}

    def test_end_by_path(self, doctor_client):
        consultation_id = start(doctor_client).data["consultationId"]

        response = doctor_client.post(f"/api/consultation/{consultation_id}/end", {"notes": ""}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == "completed"

    def test_ending_twice_conflicts(self, doctor_client):
        consultation_id = start(doctor_client).data["consultationId"]
        doctor_client.post(f"/api/consultation/{consultation_id}/end", {}, format="json")

        response = doctor_client.post(f"/api/consultation/{consultation_id}/end", {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_only_the_consulting_doctor_can_end(self, doctor_client):
        consultation_id = start(doctor_client).data["consultationId"]

        response = doctor_client.post(END_BY_DOCTOR, {"consultationId": consultation_id, "doctorId": 6}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert ConsultationSession.objects.get(consultation_id=consultation_id).is_ongoing

    def test_cancel(self, doctor_client):
        consultation_id = start(doctor_client).data["consultationId"]

        response = doctor_client.post(
            f"/api/consultation/{consultation_id}/cancel", {"cancelReason": "Patient unreachable"}, format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        session = ConsultationSession.objects.get(consultation_id=consultation_id)
        assert session.status == "cancelled"
        assert session.cancel_reason == "Patient unreachable"

    def test_new_consultation_after_end(self, doctor_client):
        first = start(doctor_client).data["consultationId"]
        doctor_client.post(f"/api/consultation/{first}/end", {}, format="json")

        second = start(doctor_client)

        assert second.status_code == status.HTTP_201_CREATED
        assert second.data["consultationId"] != first


@pytest.mark.django_db
class TestHistory:

    @pytest.fixture
    def sessions(self):
        rows = []
        for patient_id in (1, 2, 3):
            rows.append(ConsultationSession.objects.create(
                doctor_id=5, patient_id=patient_id, room_name=f"room-{patient_id}",
                status=ConsultationSession.STATUS_COMPLETED,
            ))
        rows.append(ConsultationSession.objects.create(doctor_id=6, patient_id=1, room_name="room-x"))
        return rows

    def test_doctor_history(self, doctor_client, sessions):
        response = doctor_client.get("/api/consultation/doctor/5/history")

        assert response.data["success"] is True
        assert response.data["count"] == 3
        assert [c["patientId"] for c in response.data["consultations"]] == [3, 2, 1]

    def test_patient_history(self, patient_client, sessions):
        response = patient_client.get("/api/consultation/patient/1/history")

        assert response.data["count"] == 2
        assert {c["doctorId"] for c in response.data["consultations"]} == {5, 6}

    def test_all_history_paginated(self, doctor_client, sessions):
        response = doctor_client.get("/api/consultation/history", {"page": 2, "limit": 3})

        assert response.data["count"] == 4
        assert response.data["totalPages"] == 2
        assert response.data["currentPage"] == 2
        assert len(response.data["consultations"]) == 1

    def test_invalid_limit(self, doctor_client):
        response = doctor_client.get("/api/consultation/history", {"limit": 0})

        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestCallerIdentity:

    def test_patient_cannot_start(self, patient_client):
        response = start(patient_client)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not ConsultationSession.objects.exists()

    def test_doctor_cannot_start_for_another_doctor(self, doctor_client):
        response = start(doctor_client, doctor_id=6)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not ConsultationSession.objects.exists()

    def test_doctor_cannot_pull_another_doctors_queue(self, doctor_client):
        QueueEntry.objects.create(doctor_id=6, patient_id=9)

        response = doctor_client.post(NEXT, {"doctorId": 6}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert QueueEntry.objects.get(doctor_id=6).status == QueueEntry.STATUS_WAITING

    def test_patient_cannot_rejoin_as_the_doctor(self, patient_client, published, django_capture_on_commit_callbacks):
        session = ConsultationSession.objects.create(doctor_id=5, patient_id=9, room_name="room-9")

        with django_capture_on_commit_callbacks(execute=True):
            response = patient_client.post(REJOIN, {
                "consultationId": session.consultation_id, "userId": 5, "userType": "doctor",
            }, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert published == []

    def test_patient_cannot_check_another_patients_status(self, patient_client):
        response = patient_client.post(
            "/api/consultation/checkStatus", {"doctorId": 5, "patientId": 10, "autoJoin": True}, format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not QueueEntry.objects.exists()

    def test_patient_cannot_end(self, doctor_client, patient_client):
        consultation_id = start(doctor_client).data["consultationId"]

        by_path = patient_client.post(f"/api/consultation/{consultation_id}/end", {}, format="json")
        by_body = patient_client.post(END_BY_DOCTOR, {"consultationId": consultation_id, "doctorId": 5}, format="json")

        assert by_path.status_code == by_body.status_code == status.HTTP_403_FORBIDDEN
        assert ConsultationSession.objects.get(consultation_id=consultation_id).is_ongoing

    def test_other_doctor_cannot_end_by_path(self, doctor_client):
        session = ConsultationSession.objects.create(doctor_id=6, patient_id=9, room_name="room-9")

        response = doctor_client.post(f"/api/consultation/{session.consultation_id}/end", {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_outsider_cannot_cancel(self, patient_client):
        session = ConsultationSession.objects.create(doctor_id=5, patient_id=3, room_name="room-3")

        response = patient_client.post(f"/api/consultation/{session.consultation_id}/cancel", {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_video_token_only_for_own_identity(self, patient_client):
        response = patient_client.post("/api/video/token", {"identity": "D-5", "roomName": "room-9"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_may_act_for_anyone(self, admin_client):
        started = start(admin_client)
        ended = admin_client.post(f"/api/consultation/{started.data['consultationId']}/end", {}, format="json")

        assert started.status_code == status.HTTP_201_CREATED
        assert ended.status_code == status.HTTP_200_OK
