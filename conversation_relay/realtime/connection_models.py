"""
Data models for connection management.

This module defines data structures used by the relay for tracking
connection state and metadata.
"""

import time
from dataclasses import dataclass, field
from enum import Enum


class ConnectionState(str, Enum):
    """Per-connection lifecycle: connected -> identified (optional) -> disconnected."""

    CONNECTED = "connected"
    IDENTIFIED = "identified"
    DISCONNECTED = "disconnected"


@dataclass
class ConnectionMetadata:
    """
    Metadata for one live transport connection.

    The connection id is assigned by the relay when the socket is accepted and
    is never reused, so a reconnecting client always starts from CONNECTED.
    """

    connection_id: str
    established_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    state: ConnectionState = ConnectionState.CONNECTED
    user_id: str | None = None
    origin: str | None = None

    def touch(self) -> None:
        self.last_seen = time.time()

    @property
    def is_identified(self) -> bool:
        return self.state is ConnectionState.IDENTIFIED
