# vdc_client/resolver.py
#
# Client half of checkStatus. Calls for the same doctor/patient pair can
# overlap (page reload, event-driven re-checks); only the newest answer is
# acted on.

import logging

from .errors import InvalidArgumentError, TransientError
from .models import SessionStatusResult

logger = logging.getLogger(__name__)


def validate_id(value, name):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgumentError(f"{name} must be a positive integer, got {value!r}")
    return value


class SessionStatusResolver:

    def __init__(self, api):
        self._api = api
        self._issued = {}
        self._resolved = {}

    async def check_status(self, doctor_id, patient_id, auto_join=False):
        """
        Returns a SessionStatusResult, or None when a newer call for the same
        pair resolved first.

        A TransientError does not propagate: the result is `none` with
        fallback=True and the error message, so the caller can show a
        dismissable banner and stay where it is.
        """
        validate_id(doctor_id, "doctorId")
        validate_id(patient_id, "patientId")

        key = (doctor_id, patient_id)
        seq = self._issued.get(key, 0) + 1
        self._issued[key] = seq

        try:
            payload = await self._api.check_status(doctor_id, patient_id, auto_join)
            result = SessionStatusResult.from_payload(payload)
        except TransientError as exc:
            logger.warning("[Resolver] checkStatus %s/%s failed, falling back to none: %s",
                           doctor_id, patient_id, exc.message)
            result = SessionStatusResult.fallback_none(exc.message)

        if seq <= self._resolved.get(key, 0):
            logger.debug("[Resolver] dropping superseded result #%s for %s/%s", seq, doctor_id, patient_id)
            return None
        self._resolved[key] = seq

        logger.info("[Resolver] %s/%s → %s", doctor_id, patient_id, result.action)
        return result
