"""
Room subscription management for the conversation relay.

Tracks which connections are members of which conversation rooms. A room is
created by its first member and removed as soon as its last member leaves, so
an absent room and an empty room are the same thing.
"""

from __future__ import annotations

from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class RoomSubscriptionManager:
    """
    Manages room membership for connections.

    Keeps a forward table (room -> connections) for fan-out and a reverse
    table (connection -> rooms) so disconnect cleanup does not scan every room.
    """

    def __init__(self) -> None:
        # Room memberships (room_id -> set of connection_ids)
        self.room_subscriptions: dict[str, set[str]] = {}
        # Reverse index (connection_id -> set of room_ids)
        self.connection_rooms: dict[str, set[str]] = {}

    def subscribe_to_room(self, connection_id: str, room_id: str) -> bool:
        """
        Add a connection to a room.

        Args:
            connection_id: The connection's ID
            room_id: The room's ID

        Returns:
            bool: True if the connection was not already a member
        """
        members = self.room_subscriptions.setdefault(room_id, set())
        if connection_id in members:
            return False

        members.add(connection_id)
        self.connection_rooms.setdefault(connection_id, set()).add(room_id)
        logger.debug("Connection subscribed to room", connection_id=connection_id, room_id=room_id)
        return True

    def unsubscribe_from_room(self, connection_id: str, room_id: str) -> bool:
        """
        Remove a connection from a room.

        Returns:
            bool: True if the connection was a member
        """
        members = self.room_subscriptions.get(room_id)
        if not members or connection_id not in members:
            return False

        members.discard(connection_id)
        if not members:
            del self.room_subscriptions[room_id]

        rooms = self.connection_rooms.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self.connection_rooms[connection_id]

        logger.debug("Connection unsubscribed from room", connection_id=connection_id, room_id=room_id)
        return True

    def is_subscribed(self, connection_id: str, room_id: str) -> bool:
        return connection_id in self.room_subscriptions.get(room_id, ())

    def get_room_subscribers(self, room_id: str) -> set[str]:
        """
        Get a snapshot of the connections subscribed to a room.

        The copy is safe to iterate while sends are awaited and membership changes.
        """
        return set(self.room_subscriptions.get(room_id, ()))

    def get_member_count(self, room_id: str) -> int:
        return len(self.room_subscriptions.get(room_id, ()))

    def get_connection_rooms(self, connection_id: str) -> set[str]:
        return set(self.connection_rooms.get(connection_id, ()))

    def remove_connection_from_all_rooms(self, connection_id: str) -> set[str]:
        """
        Remove a connection from every room it joined.

        Args:
            connection_id: The connection's ID

        Returns:
            Set of room ids the connection was removed from
        """
        rooms = self.connection_rooms.pop(connection_id, set())
        for room_id in rooms:
            members = self.room_subscriptions.get(room_id)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self.room_subscriptions[room_id]

        if rooms:
            logger.debug("Connection removed from all rooms", connection_id=connection_id, room_count=len(rooms))
        return rooms

    def get_stats(self) -> dict[str, Any]:
        """
        Get room subscription statistics.

        Returns:
            Dict[str, Any]: Statistics about rooms and memberships
        """
        total_subscriptions = sum(len(members) for members in self.room_subscriptions.values())
        return {
            "total_rooms": len(self.room_subscriptions),
            "total_subscriptions": total_subscriptions,
            "average_subscriptions_per_room": total_subscriptions / len(self.room_subscriptions)
            if self.room_subscriptions
            else 0,
        }
