"""
Unit tests for RoomSubscriptionManager.
"""

import pytest

from conversation_relay.realtime.room_subscription_manager import RoomSubscriptionManager


class TestRoomSubscriptionManager:
    @pytest.fixture
    def rooms(self):
        return RoomSubscriptionManager()

    def test_subscribe_is_idempotent(self, rooms):
        assert rooms.subscribe_to_room("conn-1", "room1") is True
        assert rooms.subscribe_to_room("conn-1", "room1") is False
        assert rooms.get_member_count("room1") == 1

    def test_unsubscribe_deletes_empty_room(self, rooms):
        rooms.subscribe_to_room("conn-1", "room1")

        assert rooms.unsubscribe_from_room("conn-1", "room1") is True
        assert "room1" not in rooms.room_subscriptions
        assert rooms.get_connection_rooms("conn-1") == set()

    def test_unsubscribe_non_member(self, rooms):
        rooms.subscribe_to_room("conn-1", "room1")

        assert rooms.unsubscribe_from_room("conn-2", "room1") is False
        assert rooms.unsubscribe_from_room("conn-1", "room2") is False

    def test_subscribers_snapshot_is_a_copy(self, rooms):
        rooms.subscribe_to_room("conn-1", "room1")
        snapshot = rooms.get_room_subscribers("room1")

        rooms.subscribe_to_room("conn-2", "room1")

        assert snapshot == {"conn-1"}

    def test_remove_connection_from_all_rooms(self, rooms):
        rooms.subscribe_to_room("conn-1", "room1")
        rooms.subscribe_to_room("conn-1", "room2")
        rooms.subscribe_to_room("conn-2", "room1")

        left = rooms.remove_connection_from_all_rooms("conn-1")

        assert left == {"room1", "room2"}
        assert rooms.get_room_subscribers("room1") == {"conn-2"}
        assert rooms.get_member_count("room2") == 0
        assert rooms.remove_connection_from_all_rooms("conn-1") == set()

    def test_get_stats(self, rooms):
        rooms.subscribe_to_room("conn-1", "room1")
        rooms.subscribe_to_room("conn-2", "room1")
        rooms.subscribe_to_room("conn-1", "room2")

        stats = rooms.get_stats()

        assert stats["total_rooms"] == 2
        assert stats["total_subscriptions"] == 3
        assert stats["average_subscriptions_per_room"] == 1.5
