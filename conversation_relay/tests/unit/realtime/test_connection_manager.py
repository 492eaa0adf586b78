"""
Unit tests for ConnectionManager.

Sockets are AsyncMocks; frames are decoded from send_text calls.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import WebSocket, WebSocketDisconnect

from conversation_relay.config.models import RelayConfig
from conversation_relay.exceptions import RelayShuttingDownError
from conversation_relay.realtime.connection_manager import CLOSE_GOING_AWAY, ConnectionManager


def make_websocket():
    websocket = Mock(spec=WebSocket)
    websocket.accept = AsyncMock()
    websocket.close = AsyncMock()
    websocket.send_text = AsyncMock()
    return websocket


def sent_events(websocket) -> list[dict]:
    return [json.loads(call.args[0]) for call in websocket.send_text.call_args_list]


def sent_types(websocket) -> list[str]:
    return [event["event_type"] for event in sent_events(websocket)]


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_connect_accepts_and_announces_connection_id(self, connection_manager):
        websocket = make_websocket()

        connection_id = await connection_manager.connect_websocket(websocket, origin="http://localhost:5173")

        websocket.accept.assert_awaited_once()
        assert connection_manager.active_websockets[connection_id] is websocket
        assert connection_manager.relay.is_open(connection_id)
        assert connection_manager.relay.connections[connection_id].origin == "http://localhost:5173"
        event = sent_events(websocket)[0]
        assert event["event_type"] == "connected"
        assert event["data"] == {"connection_id": connection_id}

    @pytest.mark.asyncio
    async def test_connection_ids_are_unique(self, connection_manager):
        first = await connection_manager.connect_websocket(make_websocket())
        second = await connection_manager.connect_websocket(make_websocket())

        assert first != second

    @pytest.mark.asyncio
    async def test_connect_refused_while_shutting_down(self, connection_manager):
        websocket = make_websocket()
        connection_manager.shutting_down = True

        with pytest.raises(RelayShuttingDownError):
            await connection_manager.connect_websocket(websocket)

        websocket.accept.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sequence_numbers_increase(self, connection_manager):
        websocket = make_websocket()
        connection_id = await connection_manager.connect_websocket(websocket)

        await connection_manager.send_personal_event(connection_id, "ping", {})
        await connection_manager.send_personal_event(connection_id, "ping", {})

        numbers = [event["sequence_number"] for event in sent_events(websocket)]
        assert numbers == sorted(numbers)
        assert len(set(numbers)) == 3

    @pytest.mark.asyncio
    async def test_deliver_skips_failed_recipient(self, connection_manager):
        healthy = make_websocket()
        broken = make_websocket()
        healthy_id = await connection_manager.connect_websocket(healthy)
        broken_id = await connection_manager.connect_websocket(broken)
        broken.send_text.side_effect = WebSocketDisconnect(code=1006)

        report = await connection_manager.deliver(
            [broken_id, healthy_id], connection_manager.make_event("message_received", {"content": "hi"})
        )

        assert report.delivered == [healthy_id]
        assert report.failed == [broken_id]
        assert "message_received" in sent_types(healthy)
        assert broken_id not in connection_manager.active_websockets
        assert not connection_manager.relay.is_open(broken_id)
        assert connection_manager.delivery_stats == {"delivered": 3, "failed": 1}
        broken.close.assert_awaited_once_with(code=1011, reason="Send failed")
        healthy.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deliver_to_unknown_connection_is_skipped(self, connection_manager):
        report = await connection_manager.deliver(["ghost"], connection_manager.make_event("x"))

        assert report.failed == ["ghost"]
        assert report.delivered_count == 0

    @pytest.mark.asyncio
    async def test_broadcast_to_room_defaults_to_members(self, connection_manager):
        member = make_websocket()
        outsider = make_websocket()
        member_id = await connection_manager.connect_websocket(member)
        await connection_manager.connect_websocket(outsider)
        connection_manager.relay.join(member_id, "room1")

        await connection_manager.broadcast_to_room("room1", "announcement", {"text": "x"})

        assert sent_events(member)[-1]["room_id"] == "room1"
        assert "announcement" not in sent_types(outsider)

    @pytest.mark.asyncio
    async def test_disconnect_broadcasts_user_offline(self, connection_manager):
        leaving = make_websocket()
        staying = make_websocket()
        leaving_id = await connection_manager.connect_websocket(leaving)
        await connection_manager.connect_websocket(staying)
        connection_manager.relay.identify(leaving_id, "alice")

        outcome = await connection_manager.disconnect_websocket(leaving_id, reason="client_disconnect")

        assert outcome.went_offline is True
        offline = [event for event in sent_events(staying) if event["event_type"] == "user_offline"]
        assert offline[0]["data"] == {"user_id": "alice"}
        assert "user_offline" not in sent_types(leaving)

    @pytest.mark.asyncio
    async def test_disconnect_without_presence(self, relay):
        manager = ConnectionManager(relay, relay_config=RelayConfig(broadcast_presence=False))
        leaving_id = await manager.connect_websocket(make_websocket())
        staying = make_websocket()
        await manager.connect_websocket(staying)
        relay.identify(leaving_id, "alice")

        await manager.disconnect_websocket(leaving_id)

        assert "user_offline" not in sent_types(staying)

    @pytest.mark.asyncio
    async def test_disconnect_twice_reports_closed(self, connection_manager):
        connection_id = await connection_manager.connect_websocket(make_websocket())

        await connection_manager.disconnect_websocket(connection_id)
        outcome = await connection_manager.disconnect_websocket(connection_id)

        assert outcome.was_open is False

    @pytest.mark.asyncio
    async def test_connection_count_counts_identified_only(self, connection_manager):
        first = await connection_manager.connect_websocket(make_websocket())
        await connection_manager.connect_websocket(make_websocket())
        connection_manager.relay.identify(first, "alice")

        assert connection_manager.connection_count == 1

    @pytest.mark.asyncio
    async def test_shutdown_closes_every_socket(self, connection_manager):
        sockets = [make_websocket() for _ in range(3)]
        for websocket in sockets:
            await connection_manager.connect_websocket(websocket)

        await connection_manager.shutdown(grace_seconds=0.1)

        for websocket in sockets:
            websocket.close.assert_awaited_once_with(code=CLOSE_GOING_AWAY, reason="Server shutting down")
        assert connection_manager.active_websockets == {}
        assert connection_manager.relay.live_connection_ids() == []
        assert connection_manager.shutting_down is True

    @pytest.mark.asyncio
    async def test_shutdown_gives_up_waiting_after_grace(self, connection_manager):
        websocket = make_websocket()
        await connection_manager.connect_websocket(websocket)
        connection_manager._idle.clear()

        await connection_manager.shutdown(grace_seconds=0.01)

        websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_tolerates_already_closed_socket(self, connection_manager):
        websocket = make_websocket()
        websocket.close.side_effect = RuntimeError("Cannot call close once a close message has been sent")
        await connection_manager.connect_websocket(websocket)

        await connection_manager.shutdown(grace_seconds=0)

        assert connection_manager.active_websockets == {}

    @pytest.mark.asyncio
    async def test_get_stats(self, connection_manager):
        await connection_manager.connect_websocket(make_websocket())

        stats = connection_manager.get_stats()

        assert stats["open_sockets"] == 1
        assert stats["connections"] == 1
        assert stats["shutting_down"] is False
        assert stats["uptime_seconds"] >= 0
