"""
EventBridge over a fake socket: ordering, subscriptions, outbound frames.
"""

import asyncio

import pytest

from vdc_client import events
from vdc_client.events import EventBridge


async def settle():
    await asyncio.sleep(0.02)


@pytest.mark.asyncio
class TestEventBridge:

    async def test_url_carries_identity(self, client_settings):
        bridge = EventBridge(client_settings, "doctor", 5)

        assert bridge.url == "ws://127.0.0.1:8000/ws/events/?userType=doctor&userId=5"

    async def test_url_carries_access_token(self, client_settings):
        bridge = EventBridge(client_settings, "patient", 9, access_token="abc.def")

        assert bridge.url.endswith("?userType=patient&userId=9&token=abc.def")

    async def test_handlers_run_one_at_a_time_in_order(self, bridge_factory, socket):
        bridge = await bridge_factory("patient", 9)
        log = []

        async def slow(data):
            log.append(("start", data["n"]))
            await asyncio.sleep(0.01)
            log.append(("end", data["n"]))

        bridge.on(events.POSITION_UPDATE, slow)
        socket.push(events.POSITION_UPDATE, {"n": 1})
        socket.push(events.POSITION_UPDATE, {"n": 2})
        await asyncio.sleep(0.05)

        assert log == [("start", 1), ("end", 1), ("start", 2), ("end", 2)]

    async def test_unsubscribe(self, bridge_factory, socket):
        bridge = await bridge_factory("patient", 9)
        seen = []

        unsubscribe = bridge.on(events.CONSULTATION_STARTED, seen.append)
        assert bridge.handler_count(events.CONSULTATION_STARTED) == 1
        unsubscribe()
        unsubscribe()

        socket.push(events.CONSULTATION_STARTED, {"consultationId": "c1"})
        await settle()

        assert seen == []
        assert bridge.handler_count() == 0

    async def test_failing_handler_does_not_stop_the_loop(self, bridge_factory, socket):
        bridge = await bridge_factory("patient", 9)
        seen = []

        def broken(data):
            raise RuntimeError("boom")

        bridge.on(events.POSITION_UPDATE, broken)
        bridge.on(events.POSITION_UPDATE, seen.append)
        socket.push(events.POSITION_UPDATE, {"position": 1})
        socket.push(events.POSITION_UPDATE, {"position": 2})
        await settle()

        assert [d["position"] for d in seen] == [1, 2]

    async def test_malformed_frame_is_skipped(self, bridge_factory, socket):
        bridge = await bridge_factory("patient", 9)
        seen = []
        bridge.on(events.POSITION_UPDATE, seen.append)

        socket.incoming.put_nowait("not json")
        socket.push(events.POSITION_UPDATE, {"position": 3})
        await settle()

        assert seen == [{"position": 3}]

    async def test_frame_that_is_not_an_object_is_skipped(self, bridge_factory, socket):
        bridge = await bridge_factory("patient", 9)
        seen = []
        bridge.on(events.POSITION_UPDATE, seen.append)

        socket.incoming.put_nowait("[]")
        socket.incoming.put_nowait("\"POSITION_UPDATE\"")
        socket.push(events.POSITION_UPDATE, {"position": 4})
        await settle()

        assert seen == [{"position": 4}]
        assert bridge.connected

    async def test_emit(self, bridge_factory, socket):
        bridge = await bridge_factory("patient", 9)

        sent = await bridge.emit(events.GET_PARTICIPANT_COUNT, {"roomName": "room-9"})

        assert sent is True
        assert socket.sent == [{"event": "GET_PARTICIPANT_COUNT", "data": {"roomName": "room-9"}}]

    async def test_emit_while_disconnected_is_dropped(self, client_settings):
        bridge = EventBridge(client_settings, "patient", 9)

        assert await bridge.emit(events.GET_PARTICIPANT_COUNT, {"roomName": "room-9"}) is False

    async def test_availability_toggles_are_debounced(self, bridge_factory, socket):
        bridge = await bridge_factory("doctor", 5)

        bridge.switch_doctor_availability(5, True)
        bridge.switch_doctor_availability(5, False)
        bridge.switch_doctor_availability(5, True)
        await asyncio.sleep(0.05)

        assert socket.sent == [{
            "event": "SWITCH_DOCTOR_AVAILABILITY",
            "data": {"doctorId": 5, "isAvailable": True},
        }]

    async def test_close(self, bridge_factory, socket):
        bridge = await bridge_factory("patient", 9)
        bridge.on(events.POSITION_UPDATE, lambda data: None)

        await bridge.close()

        assert socket.closed is True
        assert bridge.connected is False
        assert bridge.handler_count() == 0
