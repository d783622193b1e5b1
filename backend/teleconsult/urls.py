# teleconsult/urls.py
#
# All URLs here are prefixed with /api/ (set in telehealth/urls.py).

from django.urls import path
from . import views

urlpatterns = [

    # ── Auth ──────────────────────────────────────────────────────────────────
    path("login/",                                          views.LoginView.as_view()),
    path("profile/",                                        views.ProfileView.as_view()),

    # ── Consultation lifecycle ────────────────────────────────────────────────
    path("consultation/startConsultation",                  views.StartConsultationView.as_view()),
    path("consultation/nextConsultation",                   views.NextConsultationView.as_view()),
    path("consultation/checkStatus",                        views.CheckStatusView.as_view()),
    path("consultation/rejoin",                             views.RejoinView.as_view()),
    path("consultation/endConsultation",                    views.EndConsultationByDoctorView.as_view()),

    # ── History ───────────────────────────────────────────────────────────────
    path("consultation/history",                            views.ConsultationHistoryView.as_view()),
    path("consultation/doctor/<int:doctor_id>/history",     views.ConsultationHistoryView.as_view()),
    path("consultation/patient/<int:patient_id>/history",   views.ConsultationHistoryView.as_view()),

    # ── Single consultation ───────────────────────────────────────────────────
    path("consultation/<str:consultation_id>/end",          views.EndConsultationView.as_view()),
    path("consultation/<str:consultation_id>/cancel",       views.CancelConsultationView.as_view()),
    path("consultation/<str:consultation_id>",              views.ConsultationDetailView.as_view()),

    # ── Patient queue ─────────────────────────────────────────────────────────
    path("patientQueue/join",                               views.JoinQueueView.as_view()),
    path("patientQueue/leave",                              views.LeaveQueueView.as_view()),
    path("patientQueue/<int:doctor_id>",                    views.PatientQueueView.as_view()),

    # ── Video ─────────────────────────────────────────────────────────────────
    path("video/token",                                     views.VideoTokenView.as_view()),
    path("video/room",                                      views.VideoRoomCreateView.as_view()),
    path("video/rooms",                                     views.VideoRoomListView.as_view()),
    path("video/room/<str:sid>",                            views.VideoRoomDetailView.as_view()),
    path("video/room/<str:sid>/complete",                   views.VideoRoomCompleteView.as_view()),
    path("video/room/<str:sid>/participants",               views.VideoRoomParticipantsView.as_view()),
    path("video/room/<str:sid>/participant/<str:participant_sid>/disconnect",
                                                            views.VideoParticipantDisconnectView.as_view()),
]
