"""
vdc_client/queue.py

QueueMembershipManager – join / leave / fetch a doctor's waiting queue and
keep the last snapshot current.

The backend is the source of truth: queue signals (QUEUE_CHANGED,
PATIENT_JOINED_QUEUE, PATIENT_LEFT_QUEUE) trigger a re-fetch, never a local
patch from the event payload. Signals that arrive while a fetch is running
collapse into one more fetch.
"""

import asyncio
import inspect
import logging

from . import events
from .errors import ClientError
from .models import PositionInfo, QueueEntry, QueueJoinResult
from .resolver import validate_id

logger = logging.getLogger(__name__)

QUEUE_SIGNALS = (events.QUEUE_CHANGED, events.PATIENT_JOINED_QUEUE, events.PATIENT_LEFT_QUEUE)


def diff_snapshots(previous, current):
    """
    (joined, left) waiting entries between two snapshots, by patient id.

    Display heuristic only: two fetches can straddle several changes, so this
    may miss a join+leave that happened in between.
    """
    before = {e.patient_id: e for e in previous if e.status == "waiting"}
    after  = {e.patient_id: e for e in current if e.status == "waiting"}
    joined = [e for pid, e in after.items() if pid not in before]
    left   = [e for pid, e in before.items() if pid not in after]
    return joined, left


class QueueMembershipManager:

    def __init__(self, api, doctor_id=None):
        self._api = api
        self.doctor_id = doctor_id
        self.snapshot = []
        self.position_info = None
        self._listeners = []
        self._subscriptions = []
        self._refresh_task = None
        self._dirty = False

    # ── Operations ───────────────────────────────────────────────────────────
    async def join(self, patient_id, doctor_id):
        validate_id(patient_id, "patientId")
        validate_id(doctor_id, "doctorId")
        payload = await self._api.join_queue(patient_id, doctor_id)
        result = QueueJoinResult.from_payload(payload)
        self.position_info = PositionInfo.from_payload(payload)
        logger.info("[Queue] patient %s → doctor %s queue: %s", patient_id, doctor_id, result.action)
        return result

    async def leave(self, patient_id, doctor_id):
        validate_id(patient_id, "patientId")
        validate_id(doctor_id, "doctorId")
        payload = await self._api.leave_queue(patient_id, doctor_id)
        entries = [QueueEntry.from_payload(e) for e in payload.get("queue", [])]
        self.position_info = None
        if doctor_id == self.doctor_id:
            await self._replace_snapshot(entries)
        logger.info("[Queue] patient %s left doctor %s queue", patient_id, doctor_id)
        return entries

    async def fetch(self, doctor_id=None):
        doctor_id = validate_id(doctor_id or self.doctor_id, "doctorId")
        payload = await self._api.fetch_queue(doctor_id)
        entries = sorted(
            (QueueEntry.from_payload(e) for e in payload.get("queue", [])),
            key=lambda e: (e.position, e.id),
        )
        if doctor_id == self.doctor_id:
            await self._replace_snapshot(entries)
        return entries

    # ── Event-driven refresh ─────────────────────────────────────────────────
    def request_refresh(self, data=None):
        """Queue-signal handler: start a fetch, or mark one more if running."""
        if self._refresh_task is not None and not self._refresh_task.done():
            self._dirty = True
            return
        self._refresh_task = asyncio.ensure_future(self.refresh())

    async def refresh(self):
        while True:
            self._dirty = False
            try:
                await self.fetch()
            except ClientError as exc:
                logger.warning("[Queue] refresh failed, keeping last snapshot: %s", exc.message)
                return
            if not self._dirty:
                return

    def apply_position_update(self, data):
        self.position_info = PositionInfo.from_payload(data)
        logger.debug("[Queue] position update: %s", self.position_info)

    # ── Listeners ────────────────────────────────────────────────────────────
    def on_change(self, listener):
        """listener(previous, current); returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _replace_snapshot(self, entries):
        previous, self.snapshot = self.snapshot, entries
        for listener in list(self._listeners):
            try:
                result = listener(previous, entries)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[Queue] change listener failed")

    # ── Wiring ───────────────────────────────────────────────────────────────
    def attach(self, bridge):
        self.detach()
        if self.doctor_id is not None:
            for signal in QUEUE_SIGNALS:
                self._subscriptions.append(bridge.on(signal, self.request_refresh))
        self._subscriptions.append(bridge.on(events.POSITION_UPDATE, self.apply_position_update))
        return self

    def detach(self):
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []

    async def close(self):
        self.detach()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None
        self._listeners = []
