"""
Connection registry for the conversation relay.

Maps each live connection id to the application user identity it announced
with a "join" event. A user may hold several connections at once (one per
browser tab); each is tracked independently.
"""

from collections.abc import Iterable

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """Connection id -> user id mapping with a reverse index for presence."""

    def __init__(self) -> None:
        # connection_id -> user_id
        self._identities: dict[str, str] = {}
        # user_id -> set of connection_ids
        self._user_connections: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._identities

    def register(self, connection_id: str, user_id: str) -> str | None:
        """
        Record the identity for a connection, overwriting any previous one.

        Args:
            connection_id: Live connection id supplied by the transport
            user_id: Opaque client-supplied identity, not validated

        Returns:
            The identity previously bound to the connection, if any
        """
        previous = self._identities.get(connection_id)
        if previous is not None and previous != user_id:
            self._drop_reverse(connection_id, previous)

        self._identities[connection_id] = user_id
        self._user_connections.setdefault(user_id, set()).add(connection_id)
        logger.debug("Connection identity registered", connection_id=connection_id, user_id=user_id)
        return previous

    def unregister(self, connection_id: str) -> str | None:
        """
        Remove the identity for a connection.

        Returns:
            The removed user id, or None when the connection never identified
        """
        user_id = self._identities.pop(connection_id, None)
        if user_id is not None:
            self._drop_reverse(connection_id, user_id)
            logger.debug("Connection identity removed", connection_id=connection_id, user_id=user_id)
        return user_id

    def lookup(self, connection_id: str) -> str | None:
        return self._identities.get(connection_id)

    def display_identity(self, connection_id: str) -> str:
        """Identity used in envelopes: the registered user id, else the raw connection id."""
        return self._identities.get(connection_id, connection_id)

    def connections_for(self, user_id: str) -> set[str]:
        return set(self._user_connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_connections.get(user_id))

    def online_users(self, candidates: Iterable[str] | None = None) -> list[str]:
        """
        Return the user ids with at least one live connection.

        Args:
            candidates: Restrict the answer to these ids (order preserved, duplicates removed)
        """
        if candidates is None:
            return sorted(self._user_connections)
        seen: set[str] = set()
        online: list[str] = []
        for user_id in candidates:
            if user_id in seen:
                continue
            seen.add(user_id)
            if self.is_online(user_id):
                online.append(user_id)
        return online

    def _drop_reverse(self, connection_id: str, user_id: str) -> None:
        connections = self._user_connections.get(user_id)
        if connections is None:
            return
        connections.discard(connection_id)
        if not connections:
            del self._user_connections[user_id]
