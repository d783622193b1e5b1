"""
Shared fixtures: authenticated API clients per role, a recorder for
real-time events published by the services, and client-side fakes.
"""

import asyncio
import json

import pytest
import pytest_asyncio
from django.contrib.auth.models import User
from rest_framework.test import APIClient

from teleconsult import events
from teleconsult.models import UserProfile
from vdc_client.config import ClientSettings
from vdc_client.events import EventBridge


def _make_user(user_id, username, role):
    user = User.objects.create_user(id=user_id, username=username, password="secret-pass-123")
    UserProfile.objects.create(user=user, role=role)
    return user


# Ids match the doctor 5 / patient 9 pair the API tests act on
@pytest.fixture
def doctor_user(db):
    return _make_user(5, "dr_mehta", UserProfile.ROLE_DOCTOR)


@pytest.fixture
def patient_user(db):
    return _make_user(9, "asha", UserProfile.ROLE_PATIENT)


@pytest.fixture
def admin_user(db):
    return User.objects.create_superuser(id=1, username="ops", password="secret-pass-123")


@pytest.fixture
def anon_client():
    return APIClient()


@pytest.fixture
def doctor_client(doctor_user):
    client = APIClient()
    client.force_authenticate(user=doctor_user)
    return client


@pytest.fixture
def patient_client(patient_user):
    client = APIClient()
    client.force_authenticate(user=patient_user)
    return client


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


@pytest.fixture
def published(monkeypatch):
    """Every (group, event, data) handed to the channel layer."""
    sent = []
    monkeypatch.setattr(events, "publish", lambda group, event, data: sent.append((group, event, data)))
    return sent


class FakeSocket:
    """Stands in for a websockets connection: frames in via `incoming`, out via `sent`."""

    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self.incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    def push(self, event, data):
        self.incoming.put_nowait(json.dumps({"event": event, "data": data}))

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)

    def sent_events(self):
        return [frame["event"] for frame in self.sent]


@pytest.fixture
def client_settings():
    return ClientSettings(
        availability_debounce_seconds=0.01,
        participant_poll_seconds=60,
        duration_tick_seconds=0.01,
        end_redirect_delay_seconds=0.01,
    )


@pytest.fixture
def socket():
    return FakeSocket()


@pytest_asyncio.fixture
async def bridge_factory(client_settings, socket):
    """Connected EventBridge for a given user, closed on teardown."""
    opened = []

    async def factory(user_type, user_id):
        async def connect(url):
            return socket

        bridge = EventBridge(client_settings, user_type, user_id, connect=connect)
        await bridge.connect()
        opened.append(bridge)
        return bridge

    yield factory
    for bridge in opened:
        await bridge.close()
