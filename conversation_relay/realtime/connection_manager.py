"""
WebSocket connection manager for the conversation relay.

Owns the live sockets of one relay and performs every send. Routing decisions
come from RelayService; this class turns them into frames and delivers them,
skipping and cleaning up recipients whose socket has gone away.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from ..config.models import RelayConfig
from ..exceptions import RelayShuttingDownError
from ..structured_logging.enhanced_logging_config import get_logger
from .envelope import build_event, encode_event
from .relay_service import DisconnectOutcome, RelayService

logger = get_logger(__name__)

# Close code for "going away" (server shutdown)
CLOSE_GOING_AWAY = 1001
# Close code for a socket dropped after a failed send
CLOSE_INTERNAL_ERROR = 1011

_SEND_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


@dataclass
class DeliveryReport:
    """What happened to one fan-out."""

    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return len(self.delivered)


class ConnectionManager:
    """
    Manages the relay's WebSocket connections.

    One instance per application, created in the lifespan and stored on
    app.state. All state is instance-owned.
    """

    def __init__(self, relay: RelayService | None = None, relay_config: RelayConfig | None = None) -> None:
        self.relay = relay or RelayService()
        self.config = relay_config or RelayConfig()
        # Active WebSocket connections (connection_id -> WebSocket)
        self.active_websockets: dict[str, WebSocket] = {}
        # Outbound event sequence counter
        self.sequence_counter = 0
        self.started_at = time.monotonic()
        self.shutting_down = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self.delivery_stats = {"delivered": 0, "failed": 0}

    def _get_next_sequence(self) -> int:
        self.sequence_counter += 1
        return self.sequence_counter

    def make_event(self, event_type: str, data: dict[str, Any] | None = None, room_id: str | None = None) -> dict:
        return build_event(event_type, data, sequence_number=self._get_next_sequence(), room_id=room_id)

    @property
    def connection_count(self) -> int:
        """Number of identified connections, as reported by /health."""
        return len(self.relay.registry)

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    # Connection lifecycle

    async def connect_websocket(self, websocket: WebSocket, origin: str | None = None) -> str:
        """
        Accept a socket and register it with the relay.

        Returns:
            The new connection id

        Raises:
            RelayShuttingDownError: If the relay is draining (the socket is left unaccepted)
        """
        if self.shutting_down:
            raise RelayShuttingDownError("Relay is shutting down")

        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.active_websockets[connection_id] = websocket
        self.relay.open_connection(connection_id, origin=origin)
        await self.send_personal_event(connection_id, "connected", {"connection_id": connection_id})
        return connection_id

    async def disconnect_websocket(self, connection_id: str, reason: str | None = None) -> DisconnectOutcome:
        """
        Forget a connection and clean up its identity and rooms.

        Idempotent: a connection already dropped after a failed send is reported
        with was_open=False and produces no second presence event.
        """
        self.active_websockets.pop(connection_id, None)
        outcome = self.relay.close_connection(connection_id, reason=reason)
        if outcome.went_offline and self.config.broadcast_presence:
            await self.broadcast_global("user_offline", {"user_id": outcome.user_id})
        return outcome

    # Sending

    async def _send(self, connection_id: str, event: dict[str, Any]) -> bool:
        websocket = self.active_websockets.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(encode_event(event))
            return True
        except _SEND_ERRORS as e:
            logger.warning(
                "Failed to send to connection, dropping it",
                connection_id=connection_id,
                event_type=event.get("event_type"),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def deliver(self, recipients: Iterable[str], event: dict[str, Any]) -> DeliveryReport:
        """
        Send one event to each recipient in turn.

        A recipient whose socket fails is skipped, then disconnected and its
        socket closed with 1011 after the loop. Nothing is retried.
        """
        report = DeliveryReport()
        async with self._track_inflight():
            for connection_id in list(recipients):
                if await self._send(connection_id, event):
                    report.delivered.append(connection_id)
                else:
                    report.failed.append(connection_id)

        self.delivery_stats["delivered"] += len(report.delivered)
        self.delivery_stats["failed"] += len(report.failed)

        for connection_id in report.failed:
            if self.relay.is_open(connection_id):
                websocket = self.active_websockets.get(connection_id)
                await self.disconnect_websocket(connection_id, reason="send_failed")
                if websocket is not None:
                    await self._close_socket(connection_id, websocket, CLOSE_INTERNAL_ERROR, "Send failed")
        return report

    async def _close_socket(self, connection_id: str, websocket: WebSocket, code: int, reason: str) -> None:
        try:
            await websocket.close(code=code, reason=reason)
        except _SEND_ERRORS as e:
            logger.debug("Socket already closed", connection_id=connection_id, code=code, error=str(e))

    async def send_personal_event(
        self, connection_id: str, event_type: str, data: dict[str, Any] | None = None, room_id: str | None = None
    ) -> bool:
        report = await self.deliver([connection_id], self.make_event(event_type, data, room_id=room_id))
        return bool(report.delivered)

    async def broadcast_to_room(
        self, room_id: str, event_type: str, data: dict[str, Any], recipients: Iterable[str] | None = None
    ) -> DeliveryReport:
        """
        Broadcast an event to a room.

        Args:
            recipients: Snapshot chosen by the relay; defaults to the current members
        """
        if recipients is None:
            recipients = sorted(self.relay.rooms.get_room_subscribers(room_id))
        return await self.deliver(recipients, self.make_event(event_type, data, room_id=room_id))

    async def broadcast_global(self, event_type: str, data: dict[str, Any]) -> DeliveryReport:
        return await self.deliver(list(self.active_websockets), self.make_event(event_type, data))

    # Shutdown

    @asynccontextmanager
    async def _track_inflight(self) -> AsyncIterator[None]:
        self._inflight += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.set()

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        """
        Stop accepting sockets, let in-flight fan-outs finish, then close everything.

        Args:
            grace_seconds: Upper bound on the wait for in-flight deliveries
        """
        self.shutting_down = True
        grace = self.config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        logger.info("Relay shutting down", connections=len(self.active_websockets), inflight=self._inflight)

        try:
            await asyncio.wait_for(self._idle.wait(), timeout=grace)
        except TimeoutError:
            logger.warning("In-flight deliveries still running after grace period", inflight=self._inflight)

        for connection_id, websocket in list(self.active_websockets.items()):
            await self._close_socket(connection_id, websocket, CLOSE_GOING_AWAY, "Server shutting down")
            self.relay.close_connection(connection_id, reason="server_shutdown")
        self.active_websockets.clear()
        logger.info("Relay shutdown complete")

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.relay.get_stats(),
            "open_sockets": len(self.active_websockets),
            "delivery": dict(self.delivery_stats),
            "uptime_seconds": self.uptime_seconds,
            "shutting_down": self.shutting_down,
        }
