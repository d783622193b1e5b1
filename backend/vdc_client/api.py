"""
vdc_client/api.py

Thin async wrapper over the backend REST contracts. Each method returns the
decoded JSON body; failures come out as vdc_client.errors:

  transport failure / timeout / 5xx  →  TransientError
  409                                →  ConflictError
  other 4xx                          →  ApiError
"""

import logging

import httpx

from .config import ClientSettings
from .errors import ApiError, ConflictError, TransientError

logger = logging.getLogger(__name__)


def create_http_client(settings=None, access_token=None, transport=None):
    """AsyncClient bound to the API root, with the bearer token when given."""
    settings = settings or ClientSettings()
    headers = {"Accept": "application/json"}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    return httpx.AsyncClient(
        base_url=settings.api_url,
        headers=headers,
        timeout=httpx.Timeout(settings.request_timeout, connect=5.0),
        transport=transport,
    )


def _error_message(response):
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("detail") or payload.get("error")
        if message:
            return str(message), payload
    return response.text.strip() or f"HTTP {response.status_code}", payload


class ConsultationApi:

    def __init__(self, client):
        self._client = client

    async def _request(self, method, path, json=None, params=None):
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("[API] %s %s timed out", method, path)
            raise TransientError("The server took too long to respond") from exc
        except httpx.TransportError as exc:
            logger.warning("[API] %s %s failed: %s", method, path, exc)
            raise TransientError() from exc

        if response.status_code >= 500:
            message, _ = _error_message(response)
            logger.warning("[API] %s %s → %s %s", method, path, response.status_code, message)
            raise TransientError()

        if response.status_code >= 400:
            message, payload = _error_message(response)
            logger.info("[API] %s %s → %s %s", method, path, response.status_code, message)
            if response.status_code == 409:
                raise ConflictError(message, status_code=409, payload=payload)
            raise ApiError(message, status_code=response.status_code, payload=payload)

        try:
            return response.json()
        except ValueError as exc:
            logger.warning("[API] %s %s → %s with a body that is not JSON", method, path, response.status_code)
            raise ApiError("Invalid response from server", status_code=response.status_code) from exc

    # ── Auth ──────────────────────────────────────────────────────────────────
    async def login(self, username, password):
        return await self._request("POST", "login/", json={"username": username, "password": password})

    # ── Consultation ─────────────────────────────────────────────────────────
    async def check_status(self, doctor_id, patient_id, auto_join=False):
        return await self._request("POST", "consultation/checkStatus", json={
            "doctorId": doctor_id, "patientId": patient_id, "autoJoin": auto_join,
        })

    async def start_consultation(self, doctor_id, patient_id, room_name=None):
        body = {"doctorId": doctor_id, "patientId": patient_id}
        if room_name:
            body["roomName"] = room_name
        return await self._request("POST", "consultation/startConsultation", json=body)

    async def next_consultation(self, doctor_id):
        return await self._request("POST", "consultation/nextConsultation", json={"doctorId": doctor_id})

    async def rejoin(self, consultation_id, user_id, user_type):
        return await self._request("POST", "consultation/rejoin", json={
            "consultationId": consultation_id, "userId": user_id, "userType": user_type,
        })

    async def end_consultation(self, consultation_id, notes=None):
        return await self._request("POST", f"consultation/{consultation_id}/end", json={"notes": notes or ""})

    async def end_consultation_by_doctor(self, consultation_id, doctor_id, notes=None):
        return await self._request("POST", "consultation/endConsultation", json={
            "consultationId": consultation_id, "doctorId": doctor_id, "notes": notes or "",
        })

    async def cancel_consultation(self, consultation_id, cancel_reason=""):
        return await self._request(
            "POST", f"consultation/{consultation_id}/cancel", json={"cancelReason": cancel_reason},
        )

    async def history(self, doctor_id=None, patient_id=None, page=1, limit=10):
        if doctor_id is not None:
            path = f"consultation/doctor/{doctor_id}/history"
        elif patient_id is not None:
            path = f"consultation/patient/{patient_id}/history"
        else:
            path = "consultation/history"
        return await self._request("GET", path, params={"page": page, "limit": limit})

    # ── Queue ─────────────────────────────────────────────────────────────────
    async def fetch_queue(self, doctor_id, page=1, limit=100):
        return await self._request("GET", f"patientQueue/{doctor_id}", params={"page": page, "limit": limit})

    async def join_queue(self, patient_id, doctor_id):
        return await self._request("POST", "patientQueue/join", json={"patientId": patient_id, "doctorId": doctor_id})

    async def leave_queue(self, patient_id, doctor_id):
        return await self._request("POST", "patientQueue/leave", json={"patientId": patient_id, "doctorId": doctor_id})

    # ── Video ─────────────────────────────────────────────────────────────────
    async def video_token(self, identity, room_name):
        return await self._request("POST", "video/token", json={"identity": identity, "roomName": room_name})

    async def create_room(self, room_name):
        return await self._request("POST", "video/room", json={"roomName": room_name})

    async def room_participants(self, sid):
        return await self._request("GET", f"video/room/{sid}/participants")
