"""
Event envelope utilities for relay real-time messages.

Every frame the relay sends uses one schema:
- event_type: str
- timestamp: ISO 8601 UTC with 'Z'
- sequence_number: int (monotonic per relay instance)
- room_id: optional
- data: dict payload

Chat messages travel inside data as a message envelope (see build_message_envelope).
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

ATTACHMENT_FIELDS = ("attachment_url", "attachment_name", "attachment_type", "attachment_size")


class UUIDEncoder(json.JSONEncoder):
    """JSON encoder that handles UUID objects."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        return super().default(obj)


def utc_now_z() -> str:
    """Return current UTC time in ISO 8601 format with millisecond precision and 'Z' suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_event(
    event_type: str,
    data: dict[str, Any] | None = None,
    *,
    sequence_number: int,
    room_id: str | None = None,
) -> dict[str, Any]:
    """
    Create a normalized event envelope.

    Args:
        event_type: Type of event
        data: Event data payload
        sequence_number: Sequence number from the owning ConnectionManager
        room_id: Optional room ID for room-scoped events
    """
    event: dict[str, Any] = {
        "event_type": event_type,
        "timestamp": utc_now_z(),
        "sequence_number": sequence_number,
        "data": data or {},
    }
    if room_id is not None:
        event["room_id"] = room_id
    return event


def build_message_envelope(
    *,
    conversation_id: str,
    sender_id: str,
    content: str | None,
    message_type: str,
    message_id: str,
    sent_at: str | None = None,
    attachment: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build the chat message envelope delivered to every room member.

    sent_at falls back to the current server time. Attachment fields are only
    included when the sender supplied them.
    """
    envelope: dict[str, Any] = {
        "message_id": message_id,
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "content": content,
        "message_type": message_type,
        "sent_at": sent_at or utc_now_z(),
    }
    for key in ATTACHMENT_FIELDS:
        value = (attachment or {}).get(key)
        if value is not None:
            envelope[key] = value
    return envelope


def encode_event(event: dict[str, Any]) -> str:
    """Serialize an event for a WebSocket text frame."""
    return json.dumps(event, cls=UUIDEncoder)
