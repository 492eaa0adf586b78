"""
Real-time endpoint for the conversation relay.

Exposes the relay WebSocket at /ws. The connection manager lives on app.state
and is created by the application lifespan.
"""

from fastapi import APIRouter, WebSocket

from ..realtime.connection_manager import ConnectionManager
from ..realtime.websocket_handler import handle_websocket_connection
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

# Policy violation: handshake origin not allowed
CLOSE_POLICY_VIOLATION = 1008
# Try again later: relay not initialized
CLOSE_TRY_AGAIN_LATER = 1013

realtime_router = APIRouter(tags=["realtime"])


def _resolve_connection_manager(websocket: WebSocket) -> ConnectionManager | None:
    state = getattr(websocket.app, "state", None)
    return getattr(state, "connection_manager", None)


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for conversation events."""
    connection_manager = _resolve_connection_manager(websocket)
    if connection_manager is None:
        await websocket.accept()
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Service temporarily unavailable")
        return

    origin = websocket.headers.get("origin")
    cors_config = getattr(websocket.app.state, "cors_config", None)
    if cors_config is not None and not cors_config.is_origin_allowed(origin):
        logger.warning("Rejected WebSocket connection - origin not allowed", origin=origin)
        await websocket.close(code=CLOSE_POLICY_VIOLATION)
        return

    await handle_websocket_connection(websocket, connection_manager, origin=origin)
