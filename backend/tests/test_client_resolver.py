"""
SessionStatusResolver: id validation, stale-result dropping, fallback policy.
"""

import asyncio

import pytest

from vdc_client.errors import ConflictError, InvalidArgumentError, TransientError
from vdc_client.resolver import SessionStatusResolver


class ScriptedApi:
    """check_status answers come from per-call futures the test resolves."""

    def __init__(self):
        self.calls = []

    async def check_status(self, doctor_id, patient_id, auto_join=False):
        future = asyncio.get_running_loop().create_future()
        self.calls.append(((doctor_id, patient_id, auto_join), future))
        return await future


class StaticApi:

    def __init__(self, result):
        self.result = result

    async def check_status(self, doctor_id, patient_id, auto_join=False):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.mark.asyncio
class TestSessionStatusResolver:

    @pytest.mark.parametrize("doctor_id, patient_id", [(0, 9), (5, -1), ("5", 9), (5, True), (None, 9)])
    async def test_rejects_invalid_ids(self, doctor_id, patient_id):
        resolver = SessionStatusResolver(StaticApi({"action": "none"}))

        with pytest.raises(InvalidArgumentError):
            await resolver.check_status(doctor_id, patient_id)

    async def test_maps_payload(self):
        resolver = SessionStatusResolver(StaticApi({
            "success": True, "action": "wait", "position": 2,
            "estimatedWait": "10 minutes", "queueLength": 3, "roomName": "room-4",
        }))

        result = await resolver.check_status(5, 9, auto_join=True)

        assert result.action == "wait"
        assert result.position == 2
        assert result.estimated_wait == "10 minutes"
        assert result.room_name == "room-4"
        assert result.fallback is False

    async def test_transient_error_falls_back_to_none(self):
        resolver = SessionStatusResolver(StaticApi(TransientError("Network error")))

        result = await resolver.check_status(5, 9)

        assert result.action == "none"
        assert result.fallback is True
        assert result.error == "Network error"

    async def test_conflict_propagates(self):
        resolver = SessionStatusResolver(StaticApi(ConflictError("busy")))

        with pytest.raises(ConflictError):
            await resolver.check_status(5, 9)

    async def test_older_result_arriving_late_is_dropped(self):
        api = ScriptedApi()
        resolver = SessionStatusResolver(api)

        older = asyncio.ensure_future(resolver.check_status(5, 9))
        newer = asyncio.ensure_future(resolver.check_status(5, 9))
        await asyncio.sleep(0)

        api.calls[1][1].set_result({"action": "rejoin", "consultationId": "c2"})
        assert (await newer).consultation_id == "c2"

        api.calls[0][1].set_result({"action": "wait"})
        assert await older is None

    async def test_older_result_arriving_first_is_kept(self):
        api = ScriptedApi()
        resolver = SessionStatusResolver(api)

        older = asyncio.ensure_future(resolver.check_status(5, 9))
        newer = asyncio.ensure_future(resolver.check_status(5, 9))
        await asyncio.sleep(0)

        api.calls[0][1].set_result({"action": "wait"})
        api.calls[1][1].set_result({"action": "rejoin", "consultationId": "c2"})

        assert (await older).action == "wait"
        assert (await newer).action == "rejoin"

    async def test_pairs_are_independent(self):
        api = ScriptedApi()
        resolver = SessionStatusResolver(api)

        first = asyncio.ensure_future(resolver.check_status(5, 9))
        other = asyncio.ensure_future(resolver.check_status(5, 10))
        await asyncio.sleep(0)

        api.calls[1][1].set_result({"action": "none"})
        api.calls[0][1].set_result({"action": "wait"})

        assert (await other).action == "none"
        assert (await first).action == "wait"
