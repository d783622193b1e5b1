"""
EventConsumer over a real channel layer (in-memory) with WebsocketCommunicator.
Sockets authenticate with a SimpleJWT access token in the query string.
"""

import pytest
import pytest_asyncio
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import User
from rest_framework_simplejwt.tokens import AccessToken

from teleconsult.middleware import JWTQueryAuthMiddleware
from teleconsult.models import DoctorPresence, QueueEntry, RoomParticipant, UserProfile
from teleconsult.routing import websocket_urlpatterns

application = JWTQueryAuthMiddleware(URLRouter(websocket_urlpatterns))


@database_sync_to_async
def token_for(user_type, user_id):
    user, created = User.objects.get_or_create(id=user_id, defaults={"username": f"{user_type}-{user_id}"})
    if created:
        UserProfile.objects.create(user=user, role=user_type)
    return str(AccessToken.for_user(user))


async def connect(path):
    communicator = WebsocketCommunicator(application, path)
    connected, code = await communicator.connect()
    return communicator, connected, code


async def open_socket(user_type, user_id):
    token = await token_for(user_type, user_id)
    communicator, connected, _ = await connect(f"/ws/events/?token={token}&userType={user_type}&userId={user_id}")
    assert connected
    return communicator


@pytest_asyncio.fixture
async def layer():
    channel_layer = get_channel_layer()
    await channel_layer.flush()
    return channel_layer


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
class TestEventConsumer:

    async def test_rejects_socket_without_token(self, layer):
        _, connected, code = await connect("/ws/events/?userType=patient&userId=9")

        assert connected is False
        assert code == 4401

    async def test_rejects_invalid_token(self, layer):
        _, connected, code = await connect("/ws/events/?token=not-a-jwt&userType=patient&userId=9")

        assert connected is False
        assert code == 4401

    async def test_rejects_claiming_another_user(self, layer):
        token = await token_for("patient", 9)

        _, connected, code = await connect(f"/ws/events/?token={token}&userType=patient&userId=10")

        assert connected is False
        assert code == 4403

    async def test_rejects_claiming_another_role(self, layer):
        token = await token_for("patient", 9)

        _, connected, code = await connect(f"/ws/events/?token={token}&userType=doctor&userId=9")

        assert connected is False
        assert code == 4403

    async def test_identity_comes_from_the_token(self, layer):
        token = await token_for("doctor", 5)
        doctor, connected, _ = await connect(f"/ws/events/?token={token}")
        assert connected

        await layer.group_send("doctor_5", {"type": "push.event", "event": "QUEUE_CHANGED", "data": {"doctorId": 5}})

        assert await doctor.receive_json_from() == {"event": "QUEUE_CHANGED", "data": {"doctorId": 5}}
        await doctor.disconnect()

    async def test_presence_for_another_participant_is_refused(self, layer):
        patient = await open_socket("patient", 9)

        await patient.send_json_to({"event": "PARTICIPANT_JOINED_ROOM", "data": {
            "roomName": "room-9", "participantIdentity": "D-5", "consultationId": "c1",
        }})

        frame = await patient.receive_json_from()
        assert frame["event"] == "ERROR"
        assert await database_sync_to_async(RoomParticipant.objects.count)() == 0
        await patient.disconnect()

    async def test_receives_pushes_for_own_group(self, layer):
        patient = await open_socket("patient", 9)

        await layer.group_send("patient_9", {
            "type": "push.event", "event": "CONSULTATION_STARTED",
            "data": {"consultationId": "c1", "roomName": "room-9"},
        })

        assert await patient.receive_json_from() == {
            "event": "CONSULTATION_STARTED",
            "data": {"consultationId": "c1", "roomName": "room-9"},
        }
        await patient.disconnect()

    async def test_does_not_receive_other_users_pushes(self, layer):
        patient = await open_socket("patient", 9)

        await layer.group_send("patient_10", {"type": "push.event", "event": "POSITION_UPDATE", "data": {}})

        assert await patient.receive_nothing()
        await patient.disconnect()

    async def test_switch_doctor_availability(self, layer):
        doctor = await open_socket("doctor", 5)

        await doctor.send_json_to({"event": "SWITCH_DOCTOR_AVAILABILITY", "data": {"doctorId": 5, "isAvailable": False}})
        # No reply to the toggle; the count reply proves it has been handled
        await doctor.send_json_to({"event": "GET_PARTICIPANT_COUNT", "data": {"roomName": "room-5"}})
        assert (await doctor.receive_json_from())["data"]["participantCount"] == 0

        presence = await database_sync_to_async(DoctorPresence.objects.get)(doctor_id=5)
        assert presence.is_available is False
        await doctor.disconnect()

    async def test_patients_cannot_switch_availability(self, layer):
        patient = await open_socket("patient", 9)

        await patient.send_json_to({"event": "SWITCH_DOCTOR_AVAILABILITY", "data": {"doctorId": 9, "isAvailable": True}})

        frame = await patient.receive_json_from()
        assert frame["event"] == "ERROR"
        await patient.disconnect()

    async def test_room_presence_and_counts(self, layer):
        doctor = await open_socket("doctor", 5)
        patient = await open_socket("patient", 9)

        await doctor.send_json_to({"event": "PARTICIPANT_JOINED_ROOM", "data": {
            "roomName": "room-9", "participantIdentity": "D-5", "consultationId": "c1",
        }})
        first = await doctor.receive_json_from()
        assert first == {"event": "PARTICIPANT_COUNT_UPDATE", "data": {
            "roomName": "room-9", "participantCount": 1, "participantJoined": "D-5",
        }}

        await patient.send_json_to({"event": "PARTICIPANT_JOINED_ROOM", "data": {
            "roomName": "room-9", "participantIdentity": "P-9", "consultationId": "c1",
        }})
        assert (await doctor.receive_json_from())["data"]["participantCount"] == 2
        assert (await patient.receive_json_from())["data"]["participantCount"] == 2

        await patient.send_json_to({"event": "GET_PARTICIPANT_COUNT", "data": {"roomName": "room-9"}})
        assert await patient.receive_json_from() == {"event": "PARTICIPANT_COUNT_UPDATE", "data": {
            "roomName": "room-9", "participantCount": 2,
        }}

        await patient.disconnect()
        left = await doctor.receive_json_from()
        assert left["data"] == {"roomName": "room-9", "participantCount": 1, "participantLeft": "P-9"}

        connected = await database_sync_to_async(
            lambda: list(RoomParticipant.objects.filter(status="connected").values_list("identity", flat=True))
        )()
        assert connected == ["D-5"]
        await doctor.disconnect()

    async def test_unknown_event(self, layer):
        patient = await open_socket("patient", 9)

        await patient.send_json_to({"event": "DANCE", "data": {}})

        frame = await patient.receive_json_from()
        assert frame == {"event": "ERROR", "data": {"message": "Unknown event: DANCE"}}
        await patient.disconnect()

    async def test_queue_kept_on_disconnect_by_default(self, layer):
        await database_sync_to_async(QueueEntry.objects.create)(doctor_id=5, patient_id=9)
        patient = await open_socket("patient", 9)

        await patient.disconnect()

        entry = await database_sync_to_async(QueueEntry.objects.get)(doctor_id=5, patient_id=9)
        assert entry.status == QueueEntry.STATUS_WAITING

    async def test_queue_left_on_disconnect_when_enabled(self, layer, settings):
        settings.QUEUE_LEAVE_ON_DISCONNECT = True
        await database_sync_to_async(QueueEntry.objects.create)(doctor_id=5, patient_id=9)
        patient = await open_socket("patient", 9)

        await patient.disconnect()

        entry = await database_sync_to_async(QueueEntry.objects.get)(doctor_id=5, patient_id=9)
        assert entry.status == QueueEntry.STATUS_LEFT
