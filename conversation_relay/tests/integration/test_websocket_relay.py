"""
Integration tests for the relay running as a FastAPI app.

All sockets of a test are opened inside one TestClient context so they share
the app's event loop and connection manager.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conversation_relay.app.factory import create_app
from conversation_relay.config.models import AppConfig, CORSConfig, RelayConfig

pytestmark = pytest.mark.integration


def receive_until(websocket, event_type: str, limit: int = 20) -> dict:
    """Read frames until one of event_type arrives, skipping presence and other chatter."""
    for _ in range(limit):
        event = websocket.receive_json()
        if event["event_type"] == event_type:
            return event
    raise AssertionError(f"No {event_type} event within {limit} frames")


def open_socket(client, user_id: str | None = None):
    """Open /ws, consume the connected frame and optionally identify."""
    context = client.websocket_connect("/ws")
    websocket = context.__enter__()
    connected = websocket.receive_json()
    assert connected["event_type"] == "connected"
    if user_id is not None:
        websocket.send_json({"event": "join", "data": user_id})
        receive_until(websocket, "user_online")
    return context, websocket


@pytest.fixture
def app_config():
    return AppConfig(cors=CORSConfig(allow_origins=["http://localhost:5173"]))


@pytest.fixture
def client(app_config):
    app = create_app(app_config)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_health_reports_identified_connections(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["connections"] == 0
        assert body["uptime_seconds"] >= 0

        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            assert client.get("/health").json()["connections"] == 0

            websocket.send_json({"event": "join", "data": "alice"})
            receive_until(websocket, "user_online")
            assert client.get("/health").json()["connections"] == 1

    def test_root_and_stats(self, client):
        assert client.get("/").json()["status"] == "running"

        stats = client.get("/monitoring/stats").json()
        assert stats["open_sockets"] == 0
        assert stats["shutting_down"] is False


class TestRelayOverWebSocket:
    def test_members_receive_message_with_sender_identity(self, client):
        ctx_a, alice = open_socket(client, "alice")
        ctx_b, bob = open_socket(client, "bob")
        try:
            alice.send_json({"event": "join_conversation", "data": "room1"})
            assert receive_until(alice, "room_joined")["data"] == {"conversationId": "room1", "roomSize": 1}
            bob.send_json({"event": "join_conversation", "data": {"conversationId": "room1"}})
            assert receive_until(bob, "room_joined")["data"]["roomSize"] == 2

            alice.send_json({"event": "send_message", "data": {"channelId": "room1", "content": "hi"}})

            for websocket in (alice, bob):
                message = receive_until(websocket, "message_received")
                assert message["data"]["content"] == "hi"
                assert message["data"]["sender_id"] == "alice"
                assert message["data"]["message_type"] == "text"
            assert receive_until(alice, "message_sent")["data"]["content"] == "hi"
        finally:
            ctx_b.__exit__(None, None, None)
            ctx_a.__exit__(None, None, None)

    def test_unjoined_sender_gets_echo(self, client):
        with client.websocket_connect("/ws") as websocket:
            connection_id = websocket.receive_json()["data"]["connection_id"]

            websocket.send_json(["send_message", {"conversation_id": "room2", "content": "hello"}])

            message = receive_until(websocket, "message_received")
            assert message["data"]["content"] == "hello"
            assert message["data"]["sender_id"] == connection_id
            assert client.get("/monitoring/stats").json()["rooms"]["total_rooms"] == 1

    def test_room_isolation(self, client):
        ctx_a, alice = open_socket(client, "alice")
        ctx_b, bob = open_socket(client, "bob")
        try:
            alice.send_json({"event": "join_conversation", "data": "room1"})
            receive_until(alice, "room_joined")
            bob.send_json({"event": "join_conversation", "data": "room2"})
            receive_until(bob, "room_joined")

            alice.send_json({"event": "send_message", "data": {"conversation_id": "room1", "content": "for room1"}})
            receive_until(alice, "message_sent")
            bob.send_json({"event": "send_message", "data": {"conversation_id": "room2", "content": "for room2"}})

            assert receive_until(bob, "message_received")["data"]["content"] == "for room2"
        finally:
            ctx_b.__exit__(None, None, None)
            ctx_a.__exit__(None, None, None)

    def test_disconnected_member_is_cleaned_up(self, client):
        ctx_a, alice = open_socket(client, "alice")
        ctx_b, bob = open_socket(client, "bob")
        try:
            alice.send_json({"event": "join_conversation", "data": "room1"})
            receive_until(alice, "room_joined")
            bob.send_json({"event": "join_conversation", "data": "room1"})
            receive_until(bob, "room_joined")

            alice.close(1000)
            assert receive_until(bob, "user_offline")["data"] == {"user_id": "alice"}

            rooms = client.get("/monitoring/stats").json()["rooms"]
            assert rooms["total_subscriptions"] == 1
            assert client.get("/health").json()["connections"] == 1

            bob.send_json({"event": "send_message", "data": {"conversation_id": "room1", "content": "anyone?"}})
            assert receive_until(bob, "message_received")["data"]["content"] == "anyone?"
        finally:
            ctx_b.__exit__(None, None, None)
            ctx_a.__exit__(None, None, None)

    def test_online_status(self, client):
        ctx_a, alice = open_socket(client, "alice")
        try:
            with client.websocket_connect("/ws") as asker:
                asker.receive_json()
                asker.send_json({"event": "request_online_status", "data": {"userIds": ["alice", "zed"]}})

                assert receive_until(asker, "online_status_response")["data"] == {"online_users": ["alice"]}
        finally:
            ctx_a.__exit__(None, None, None)

    def test_permissive_mode_ignores_garbage(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            websocket.send_text("not json")
            websocket.send_json({"event": "send_message", "data": {"content": "no channel"}})
            websocket.send_json({"event": "teleport"})
            websocket.send_json({"event": "join_conversation", "data": "room1"})

            assert websocket.receive_json()["event_type"] == "room_joined"


class TestStrictMode:
    @pytest.fixture
    def app_config(self):
        return AppConfig(relay=RelayConfig(strict_validation=True))

    def test_malformed_event_gets_error_reply(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            websocket.send_json({"event": "send_message", "data": {"content": "no channel"}})

            error = websocket.receive_json()
            assert error["event_type"] == "error"
            assert error["data"]["error_type"] == "missing_required_field"

            websocket.send_json({"event": "join_conversation", "data": "room1"})
            assert websocket.receive_json()["event_type"] == "room_joined"


class TestOriginCheck:
    @pytest.fixture
    def app_config(self):
        return AppConfig(cors=CORSConfig(allow_origins=["https://crm.example.com"]))

    def test_disallowed_origin_is_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws", headers={"origin": "https://evil.example.com"}) as websocket:
                websocket.receive_json()

        assert exc_info.value.code == 1008

    def test_allowed_origin_is_accepted(self, client):
        with client.websocket_connect("/ws", headers={"origin": "https://crm.example.com"}) as websocket:
            assert websocket.receive_json()["event_type"] == "connected"
