"""
WebSocket handler for the conversation relay.

Runs the per-connection message loop: parse a frame, dispatch it to the relay,
deliver whatever the relay decided. Each connection awaits the full fan-out of
one frame before reading the next, so a sender's messages reach every
recipient in the order they were sent.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from ..error_types import ErrorMessages, ErrorType, create_websocket_error_response
from ..exceptions import RelayShuttingDownError
from ..structured_logging.enhanced_logging_config import get_logger
from ..structured_logging.logging_context import (
    bind_connection_context,
    bind_user_context,
    clear_connection_context,
)
from .connection_manager import CLOSE_GOING_AWAY, ConnectionManager
from .message_validator import InboundFrame, MessageValidationError, WebSocketMessageValidator
from .relay_service import RelayErrorKind, RelayFailure

logger = get_logger(__name__)

EventHandler = Callable[[str, Any, ConnectionManager], Awaitable[None]]

_FAILURE_ERROR_TYPES = {
    RelayErrorKind.MISSING_CHANNEL: ErrorType.MISSING_REQUIRED_FIELD,
    RelayErrorKind.MISSING_USER_ID: ErrorType.MISSING_REQUIRED_FIELD,
    RelayErrorKind.INVALID_PAYLOAD: ErrorType.INVALID_FORMAT,
    RelayErrorKind.UNKNOWN_CONNECTION: ErrorType.WEBSOCKET_ERROR,
}


async def _report_error(
    connection_id: str,
    connection_manager: ConnectionManager,
    error_type: ErrorType,
    message: str,
    user_friendly: str,
    details: dict[str, Any] | None = None,
) -> None:
    """Send an error event to the offending connection only, when strict validation is on."""
    if not connection_manager.config.strict_validation:
        return
    payload = create_websocket_error_response(error_type, message, user_friendly, details)
    await connection_manager.send_personal_event(connection_id, "error", payload)


async def _handle_failure(
    connection_id: str, event: str, failure: RelayFailure, connection_manager: ConnectionManager
) -> None:
    logger.warning(
        "Dropping malformed event",
        connection_id=connection_id,
        event_name=event,
        reason=failure.kind.value,
        detail=failure.detail,
    )
    error_type = _FAILURE_ERROR_TYPES[failure.kind]
    user_friendly = (
        ErrorMessages.MISSING_REQUIRED_FIELD
        if error_type is ErrorType.MISSING_REQUIRED_FIELD
        else ErrorMessages.INVALID_FORMAT
    )
    await _report_error(
        connection_id,
        connection_manager,
        error_type,
        f"{event}: {failure.kind.value}",
        user_friendly,
        {"event": event, "reason": failure.kind.value, "detail": failure.detail},
    )


async def _handle_identify(connection_id: str, data: Any, connection_manager: ConnectionManager) -> None:
    outcome = connection_manager.relay.identify(connection_id, data)
    if isinstance(outcome, RelayFailure):
        await _handle_failure(connection_id, "join", outcome, connection_manager)
        return

    bind_user_context(outcome.user_id)
    if not connection_manager.config.broadcast_presence:
        return
    if outcome.previous_went_offline:
        await connection_manager.broadcast_global("user_offline", {"user_id": outcome.previous_user_id})
    if outcome.came_online:
        await connection_manager.broadcast_global("user_online", {"user_id": outcome.user_id})


async def _handle_join_conversation(connection_id: str, data: Any, connection_manager: ConnectionManager) -> None:
    outcome = connection_manager.relay.join(connection_id, data)
    if isinstance(outcome, RelayFailure):
        await _handle_failure(connection_id, "join_conversation", outcome, connection_manager)
        return

    await connection_manager.send_personal_event(
        connection_id,
        "room_joined",
        {"conversationId": outcome.conversation_id, "roomSize": outcome.room_size},
        room_id=outcome.conversation_id,
    )


async def _handle_leave_conversation(connection_id: str, data: Any, connection_manager: ConnectionManager) -> None:
    outcome = connection_manager.relay.leave(connection_id, data)
    if isinstance(outcome, RelayFailure):
        await _handle_failure(connection_id, "leave_conversation", outcome, connection_manager)


async def _handle_send_message(connection_id: str, data: Any, connection_manager: ConnectionManager) -> None:
    outcome = connection_manager.relay.relay(connection_id, data)
    if isinstance(outcome, RelayFailure):
        await _handle_failure(connection_id, "send_message", outcome, connection_manager)
        return

    report = await connection_manager.broadcast_to_room(
        outcome.conversation_id, "message_received", outcome.envelope, recipients=outcome.recipients
    )
    logger.debug(
        "Message delivered",
        conversation_id=outcome.conversation_id,
        delivered=report.delivered_count,
        failed=len(report.failed),
    )

    if connection_manager.config.send_confirmation:
        await connection_manager.send_personal_event(
            connection_id, "message_sent", outcome.envelope, room_id=outcome.conversation_id
        )


async def _handle_mark_as_read(connection_id: str, data: Any, connection_manager: ConnectionManager) -> None:
    outcome = connection_manager.relay.mark_as_read(connection_id, data)
    if isinstance(outcome, RelayFailure):
        await _handle_failure(connection_id, "mark_as_read", outcome, connection_manager)


async def _handle_online_status(connection_id: str, data: Any, connection_manager: ConnectionManager) -> None:
    outcome = connection_manager.relay.online_status(connection_id, data)
    if isinstance(outcome, RelayFailure):
        await _handle_failure(connection_id, "request_online_status", outcome, connection_manager)
        return

    await connection_manager.send_personal_event(
        connection_id, "online_status_response", {"online_users": outcome.online_users}
    )


EVENT_HANDLERS: dict[str, EventHandler] = {
    "join": _handle_identify,
    "join_conversation": _handle_join_conversation,
    "leave_conversation": _handle_leave_conversation,
    "send_message": _handle_send_message,
    "mark_as_read": _handle_mark_as_read,
    "request_online_status": _handle_online_status,
}


async def handle_websocket_message(connection_id: str, frame: InboundFrame, connection_manager: ConnectionManager) -> None:
    """
    Dispatch one parsed frame.

    Unknown events are logged and dropped (or reported in strict mode).
    """
    handler = EVENT_HANDLERS.get(frame.event)
    if handler is None:
        logger.warning("Unknown event", connection_id=connection_id, event_name=frame.event)
        await _report_error(
            connection_id,
            connection_manager,
            ErrorType.UNKNOWN_EVENT,
            f"Unsupported event: {frame.event}",
            ErrorMessages.UNKNOWN_EVENT,
            {"event": frame.event},
        )
        return
    await handler(connection_id, frame.data, connection_manager)


async def _handle_websocket_message_loop(
    websocket: WebSocket, connection_id: str, connection_manager: ConnectionManager
) -> str:
    """Handle the main WebSocket message loop. Returns the disconnect reason."""
    validator = WebSocketMessageValidator(max_message_size=connection_manager.config.max_message_size)

    while True:
        if not connection_manager.relay.is_open(connection_id):
            logger.info("Connection dropped by the relay, leaving message loop", connection_id=connection_id)
            return "send_failed"
        try:
            data = await websocket.receive_text()

            try:
                frame = validator.parse_frame(data)
            except MessageValidationError as e:
                logger.warning(
                    "Message validation failed",
                    connection_id=connection_id,
                    error_type=e.error_type.value,
                    error_message=e.message,
                )
                await _report_error(
                    connection_id,
                    connection_manager,
                    e.error_type,
                    f"Message validation failed: {e.message}",
                    ErrorMessages.INVALID_FORMAT,
                )
                continue

            connection = connection_manager.relay.connections.get(connection_id)
            if connection is not None:
                connection.touch()
            await handle_websocket_message(connection_id, frame, connection_manager)

        except WebSocketDisconnect as e:
            logger.info("WebSocket disconnected", connection_id=connection_id, code=e.code)
            return "client_disconnect"

        except RuntimeError as e:
            error_message = str(e)
            if "WebSocket is not connected" in error_message or 'Need to call "accept" first' in error_message:
                logger.warning("WebSocket connection lost", connection_id=connection_id, error=error_message)
                return "connection_lost"
            raise

        except Exception as e:
            logger.error(
                "Error handling WebSocket message",
                connection_id=connection_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if not connection_manager.relay.is_open(connection_id):
                return "connection_lost"
            await _report_error(
                connection_id,
                connection_manager,
                ErrorType.MESSAGE_PROCESSING_ERROR,
                f"Error processing message: {type(e).__name__}",
                ErrorMessages.INTERNAL_ERROR,
            )


async def handle_websocket_connection(
    websocket: WebSocket, connection_manager: ConnectionManager, origin: str | None = None
) -> None:
    """
    Handle a WebSocket connection from accept to cleanup.

    Args:
        websocket: The WebSocket connection
        connection_manager: ConnectionManager instance (injected from endpoint)
        origin: Origin header of the handshake, for logging
    """
    try:
        connection_id = await connection_manager.connect_websocket(websocket, origin=origin)
    except RelayShuttingDownError:
        await websocket.accept()
        await websocket.close(code=CLOSE_GOING_AWAY, reason="Server shutting down")
        logger.info("Rejected WebSocket connection - relay shutting down", origin=origin)
        return

    bind_connection_context(connection_id)
    reason = "connection_lost"
    try:
        reason = await _handle_websocket_message_loop(websocket, connection_id, connection_manager)
    finally:
        try:
            await connection_manager.disconnect_websocket(connection_id, reason=reason)
        except Exception as e:
            logger.error("Error disconnecting WebSocket", connection_id=connection_id, error=str(e), exc_info=True)
        clear_connection_context()
