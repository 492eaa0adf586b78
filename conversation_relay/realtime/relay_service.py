"""
Conversation relay core.

RelayService owns the connection registry and room membership for one relay
instance and decides who receives what. It performs no I/O: every operation
runs synchronously and returns an outcome object describing the frames the
transport must deliver. ConnectionManager does the actual sending.

Bad client input never raises here; it comes back as an outcome carrying a
RelayErrorKind so the transport can drop it or report it, depending on the
configured strictness.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ValidationError

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_models import ConnectionMetadata, ConnectionState
from .connection_registry import ConnectionRegistry
from .envelope import build_message_envelope
from .message_schemas import (
    ConversationRef,
    IdentifyPayload,
    MarkAsReadPayload,
    OnlineStatusRequest,
    SendMessagePayload,
    coerce_payload,
)
from .room_subscription_manager import RoomSubscriptionManager


class RelayErrorKind(str, Enum):
    """Why a relay operation was rejected."""

    UNKNOWN_CONNECTION = "unknown_connection"
    MISSING_CHANNEL = "missing_channel"
    MISSING_USER_ID = "missing_user_id"
    INVALID_PAYLOAD = "invalid_payload"


@dataclass(frozen=True)
class RelayFailure:
    """Rejected operation. Nothing was changed and nothing must be sent."""

    kind: RelayErrorKind
    detail: str = ""

    ok = False


@dataclass(frozen=True)
class IdentifyOutcome:
    connection_id: str
    user_id: str
    previous_user_id: str | None = None
    # True when this is the user's first live connection
    came_online: bool = False
    # True when a re-identify left the previous user with no live connection
    previous_went_offline: bool = False

    ok = True


@dataclass(frozen=True)
class JoinOutcome:
    connection_id: str
    conversation_id: str
    room_size: int
    newly_joined: bool

    ok = True


@dataclass(frozen=True)
class LeaveOutcome:
    connection_id: str
    conversation_id: str
    was_member: bool
    room_size: int

    ok = True


@dataclass(frozen=True)
class RelayOutcome:
    """
    Result of a send_message.

    recipients is a snapshot of the room taken after the optional self-join and
    always contains the sender.
    """

    sender_connection_id: str
    conversation_id: str
    envelope: dict[str, Any]
    recipients: tuple[str, ...]
    self_joined: bool = False

    ok = True


@dataclass(frozen=True)
class ReadReceiptOutcome:
    connection_id: str
    conversation_id: str
    user_id: str

    ok = True


@dataclass(frozen=True)
class OnlineStatusOutcome:
    online_users: list[str]

    ok = True


@dataclass(frozen=True)
class DisconnectOutcome:
    connection_id: str
    user_id: str | None = None
    left_rooms: frozenset[str] = field(default_factory=frozenset)
    # True when the user no longer has any live connection
    went_offline: bool = False
    was_open: bool = True


class RelayService:
    """
    Registry, room membership and fan-out decisions for one relay.

    State lives on the instance so several relays can coexist in one process
    (tests build a fresh one per case). All methods are synchronous and hold no
    await points.
    """

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        rooms: RoomSubscriptionManager | None = None,
        *,
        logger: Any = None,
        message_id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.registry = registry or ConnectionRegistry()
        self.rooms = rooms or RoomSubscriptionManager()
        self.logger = logger or get_logger(__name__)
        self._message_id_factory = message_id_factory or (lambda: uuid.uuid4().hex)
        self.connections: dict[str, ConnectionMetadata] = {}
        self.messages_relayed = 0

    # Lifecycle

    def open_connection(self, connection_id: str, origin: str | None = None) -> ConnectionMetadata:
        metadata = ConnectionMetadata(connection_id=connection_id, origin=origin)
        self.connections[connection_id] = metadata
        self.logger.info("Connection opened", connection_id=connection_id, origin=origin)
        return metadata

    def close_connection(self, connection_id: str, reason: str | None = None) -> DisconnectOutcome:
        """
        Drop a connection: identity, every room membership and its metadata.

        Safe to call twice; the second call reports was_open=False.
        """
        metadata = self.connections.pop(connection_id, None)
        if metadata is None:
            return DisconnectOutcome(connection_id=connection_id, was_open=False)

        metadata.state = ConnectionState.DISCONNECTED
        left_rooms = self.rooms.remove_connection_from_all_rooms(connection_id)
        user_id = self.registry.unregister(connection_id)
        went_offline = user_id is not None and not self.registry.is_online(user_id)

        if user_id is not None:
            self.logger.info(
                "User disconnected",
                connection_id=connection_id,
                user_id=user_id,
                reason=reason,
                rooms_left=len(left_rooms),
            )
        else:
            self.logger.info("Connection disconnected", connection_id=connection_id, reason=reason)

        return DisconnectOutcome(
            connection_id=connection_id,
            user_id=user_id,
            left_rooms=frozenset(left_rooms),
            went_offline=went_offline,
        )

    def is_open(self, connection_id: str) -> bool:
        return connection_id in self.connections

    # Connection registry

    def identify(self, connection_id: str, payload: Any) -> IdentifyOutcome | RelayFailure:
        """Handle the "join" event: bind a user identity to the connection (last write wins)."""
        metadata = self.connections.get(connection_id)
        if metadata is None:
            return RelayFailure(RelayErrorKind.UNKNOWN_CONNECTION)

        parsed = self._parse(IdentifyPayload, coerce_payload(payload, "user_id"), RelayErrorKind.MISSING_USER_ID)
        if isinstance(parsed, RelayFailure):
            return parsed

        was_online = self.registry.is_online(parsed.user_id)
        previous = self.registry.register(connection_id, parsed.user_id)
        metadata.user_id = parsed.user_id
        metadata.state = ConnectionState.IDENTIFIED
        metadata.touch()

        self.logger.info("User joined", connection_id=connection_id, user_id=parsed.user_id)
        previous_went_offline = (
            previous is not None and previous != parsed.user_id and not self.registry.is_online(previous)
        )
        return IdentifyOutcome(
            connection_id=connection_id,
            user_id=parsed.user_id,
            previous_user_id=previous,
            came_online=not was_online,
            previous_went_offline=previous_went_offline,
        )

    def sender_identity(self, connection_id: str) -> str:
        return self.registry.display_identity(connection_id)

    # Room membership

    def join(self, connection_id: str, payload: Any) -> JoinOutcome | RelayFailure:
        """Handle join_conversation. Joining twice is a no-op."""
        if connection_id not in self.connections:
            return RelayFailure(RelayErrorKind.UNKNOWN_CONNECTION)

        parsed = self._parse(ConversationRef, coerce_payload(payload, "conversation_id"), RelayErrorKind.MISSING_CHANNEL)
        if isinstance(parsed, RelayFailure):
            return parsed

        newly_joined = self.rooms.subscribe_to_room(connection_id, parsed.conversation_id)
        room_size = self.rooms.get_member_count(parsed.conversation_id)
        self.connections[connection_id].touch()

        self.logger.info(
            "Joined conversation",
            connection_id=connection_id,
            user_id=self.sender_identity(connection_id),
            conversation_id=parsed.conversation_id,
            room_size=room_size,
            newly_joined=newly_joined,
        )
        return JoinOutcome(
            connection_id=connection_id,
            conversation_id=parsed.conversation_id,
            room_size=room_size,
            newly_joined=newly_joined,
        )

    def leave(self, connection_id: str, payload: Any) -> LeaveOutcome | RelayFailure:
        """Handle leave_conversation. Leaving a room you are not in is a no-op."""
        if connection_id not in self.connections:
            return RelayFailure(RelayErrorKind.UNKNOWN_CONNECTION)

        parsed = self._parse(ConversationRef, coerce_payload(payload, "conversation_id"), RelayErrorKind.MISSING_CHANNEL)
        if isinstance(parsed, RelayFailure):
            return parsed

        was_member = self.rooms.unsubscribe_from_room(connection_id, parsed.conversation_id)
        self.logger.info(
            "Left conversation",
            connection_id=connection_id,
            conversation_id=parsed.conversation_id,
            was_member=was_member,
        )
        return LeaveOutcome(
            connection_id=connection_id,
            conversation_id=parsed.conversation_id,
            was_member=was_member,
            room_size=self.rooms.get_member_count(parsed.conversation_id),
        )

    def member_count(self, conversation_id: str) -> int:
        return self.rooms.get_member_count(conversation_id)

    # Fan-out

    def relay(self, sender_connection_id: str, payload: Any) -> RelayOutcome | RelayFailure:
        """
        Handle send_message: build the envelope and pick the recipients.

        The sender is joined to the room first when it is not a member, so it
        always receives its own message back; clients rely on that echo as
        their send confirmation.
        """
        if sender_connection_id not in self.connections:
            return RelayFailure(RelayErrorKind.UNKNOWN_CONNECTION)

        parsed = self._parse(SendMessagePayload, payload, RelayErrorKind.MISSING_CHANNEL)
        if isinstance(parsed, RelayFailure):
            return parsed

        conversation_id = parsed.conversation_id
        sender_id = self.sender_identity(sender_connection_id)

        self_joined = False
        if not self.rooms.is_subscribed(sender_connection_id, conversation_id):
            self_joined = self.rooms.subscribe_to_room(sender_connection_id, conversation_id)
            self.logger.info(
                "Sender joined conversation for broadcast",
                connection_id=sender_connection_id,
                user_id=sender_id,
                conversation_id=conversation_id,
            )

        envelope = build_message_envelope(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=parsed.content,
            message_type=parsed.message_type,
            message_id=self._message_id_factory(),
            sent_at=parsed.sent_at,
            attachment=parsed.attachment(),
        )
        recipients = tuple(sorted(self.rooms.get_room_subscribers(conversation_id)))
        self.connections[sender_connection_id].touch()
        self.messages_relayed += 1

        self.logger.info(
            "Relaying message",
            connection_id=sender_connection_id,
            user_id=sender_id,
            conversation_id=conversation_id,
            message_type=parsed.message_type,
            room_size=len(recipients),
        )
        return RelayOutcome(
            sender_connection_id=sender_connection_id,
            conversation_id=conversation_id,
            envelope=envelope,
            recipients=recipients,
            self_joined=self_joined,
        )

    # Read receipts and presence

    def mark_as_read(self, connection_id: str, payload: Any) -> ReadReceiptOutcome | RelayFailure:
        """Log a read receipt. Persisting it belongs to the CRM backend, not the relay."""
        if connection_id not in self.connections:
            return RelayFailure(RelayErrorKind.UNKNOWN_CONNECTION)

        parsed = self._parse(MarkAsReadPayload, payload, RelayErrorKind.MISSING_CHANNEL)
        if isinstance(parsed, RelayFailure):
            return parsed

        user_id = parsed.user_id or self.sender_identity(connection_id)
        self.logger.info(
            "Conversation marked as read",
            connection_id=connection_id,
            user_id=user_id,
            conversation_id=parsed.conversation_id,
        )
        return ReadReceiptOutcome(connection_id=connection_id, conversation_id=parsed.conversation_id, user_id=user_id)

    def online_status(self, connection_id: str, payload: Any) -> OnlineStatusOutcome | RelayFailure:
        """Answer request_online_status with the requested users that are connected."""
        if connection_id not in self.connections:
            return RelayFailure(RelayErrorKind.UNKNOWN_CONNECTION)

        parsed = self._parse(OnlineStatusRequest, payload, RelayErrorKind.INVALID_PAYLOAD)
        if isinstance(parsed, RelayFailure):
            return parsed

        online = self.registry.online_users(parsed.user_ids)
        self.logger.debug(
            "Online status requested",
            connection_id=connection_id,
            requested=len(parsed.user_ids),
            online=len(online),
        )
        return OnlineStatusOutcome(online_users=online)

    def live_connection_ids(self) -> list[str]:
        return list(self.connections)

    def get_stats(self) -> dict[str, Any]:
        return {
            "connections": len(self.connections),
            "identified_connections": len(self.registry),
            "online_users": len(self.registry.online_users()),
            "messages_relayed": self.messages_relayed,
            "rooms": self.rooms.get_stats(),
        }

    def _parse(self, model: type[BaseModel], payload: Any, missing_kind: RelayErrorKind) -> Any:
        """
        Validate a payload against model.

        A missing or empty required id maps to missing_kind; anything else is
        an invalid payload.
        """
        if not isinstance(payload, Mapping):
            return RelayFailure(RelayErrorKind.INVALID_PAYLOAD, f"expected an object, got {type(payload).__name__}")
        try:
            return model.model_validate(dict(payload))
        except ValidationError as e:
            errors = e.errors()
            id_names = _required_id_names(model)
            if any(err.get("loc") and err["loc"][0] in id_names for err in errors):
                kind = missing_kind
            else:
                kind = RelayErrorKind.INVALID_PAYLOAD
            detail = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in errors)
            return RelayFailure(kind, detail)


def _required_id_names(model: type[BaseModel]) -> set[str]:
    """Field names and aliases of the required id fields of model."""
    names: set[str] = set()
    for name, info in model.model_fields.items():
        if name not in ("conversation_id", "user_id") or not info.is_required():
            continue
        names.add(name)
        alias = info.validation_alias
        if isinstance(alias, AliasChoices):
            names.update(choice for choice in alias.choices if isinstance(choice, str))
        elif isinstance(alias, str):
            names.add(alias)
    return names
