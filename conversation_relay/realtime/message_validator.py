"""
Inbound frame validation for the conversation relay.

Turns a raw WebSocket text frame into an (event, data) pair, enforcing a size
limit and a JSON nesting limit. Two frame shapes are accepted:

    {"event": "send_message", "data": {...}}
    ["send_message", {...}]

The second mirrors the positional event encoding older socket clients emit.
"""

import json
from dataclasses import dataclass
from typing import Any

from ..error_types import ErrorType
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class MessageValidationError(Exception):
    """Raised when an inbound frame cannot be turned into an event."""

    def __init__(self, message: str, error_type: ErrorType = ErrorType.INVALID_FORMAT):
        self.message = message
        self.error_type = error_type
        super().__init__(self.message)


@dataclass(frozen=True)
class InboundFrame:
    event: str
    data: Any = None


class WebSocketMessageValidator:
    """Validates inbound WebSocket frames for size and structure."""

    MAX_MESSAGE_SIZE = 64 * 1024
    MAX_JSON_DEPTH = 10

    def __init__(self, max_message_size: int | None = None, max_json_depth: int | None = None):
        self.max_message_size = max_message_size or self.MAX_MESSAGE_SIZE
        self.max_json_depth = max_json_depth or self.MAX_JSON_DEPTH

    def validate_size(self, data: str) -> None:
        """
        Raises:
            MessageValidationError: If the frame exceeds the size limit
        """
        size = len(data.encode("utf-8"))
        if size > self.max_message_size:
            logger.warning("Message size exceeds limit", size=size, max_size=self.max_message_size)
            raise MessageValidationError(
                f"Message size {size} bytes exceeds maximum {self.max_message_size} bytes",
                error_type=ErrorType.MESSAGE_TOO_LARGE,
            )

    def _calculate_depth(self, obj: Any, current_depth: int = 0) -> int:
        if current_depth > self.max_json_depth:
            return current_depth
        if isinstance(obj, dict):
            if not obj:
                return current_depth + 1
            return max(self._calculate_depth(v, current_depth + 1) for v in obj.values())
        if isinstance(obj, list):
            if not obj:
                return current_depth + 1
            return max(self._calculate_depth(item, current_depth + 1) for item in obj)
        return current_depth

    def parse_frame(self, raw: str) -> InboundFrame:
        """
        Parse and validate a raw text frame.

        Args:
            raw: Frame text as received from the socket

        Returns:
            InboundFrame with the event name and its (unvalidated) payload

        Raises:
            MessageValidationError: On oversize, bad JSON, excessive nesting or an unknown shape
        """
        self.validate_size(raw)

        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MessageValidationError(f"Invalid JSON: {e.msg}") from e
        except RecursionError as e:
            raise MessageValidationError(f"JSON nesting exceeds maximum {self.max_json_depth}") from e

        depth = self._calculate_depth(message)
        if depth > self.max_json_depth:
            raise MessageValidationError(f"JSON depth {depth} exceeds maximum {self.max_json_depth}")

        if isinstance(message, dict):
            event = message.get("event")
            data = message.get("data")
        elif isinstance(message, list) and 1 <= len(message) <= 2:
            event = message[0]
            data = message[1] if len(message) == 2 else None
        else:
            raise MessageValidationError("Frame must be an object with an 'event' field or an [event, data] array")

        if not isinstance(event, str) or not event.strip():
            raise MessageValidationError(
                "Frame is missing an event name", error_type=ErrorType.MISSING_REQUIRED_FIELD
            )

        return InboundFrame(event=event.strip(), data=data)
