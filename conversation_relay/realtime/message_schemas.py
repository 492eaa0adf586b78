"""
Pydantic models for inbound relay event payloads.

Field names are snake_case on the wire; the camelCase spellings used by older
clients (conversationId, channelId, messageType, sentAt, attachmentUrl, ...) are
accepted as aliases. Numeric ids are coerced to strings because conversation
and user ids come straight from database rows.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

_CONVERSATION_ALIASES = AliasChoices("conversation_id", "conversationId", "channel_id", "channelId")


class _InboundPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


def _require_non_empty(value: str) -> str:
    # Ids are opaque: reject blank ones but never rewrite them
    if not value.strip():
        raise ValueError("must not be empty")
    return value


class IdentifyPayload(_InboundPayload):
    """Payload of the "join" event: the client's application user id."""

    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId", "id"))

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, value: str) -> str:
        return _require_non_empty(value)


class ConversationRef(_InboundPayload):
    """Payload of join_conversation / leave_conversation."""

    conversation_id: str = Field(validation_alias=_CONVERSATION_ALIASES)

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, value: str) -> str:
        return _require_non_empty(value)


class SendMessagePayload(_InboundPayload):
    """Payload of send_message."""

    conversation_id: str = Field(validation_alias=_CONVERSATION_ALIASES)
    content: str | None = None
    message_type: str = Field(default="text", validation_alias=AliasChoices("message_type", "messageType"))
    sent_at: str | None = Field(default=None, validation_alias=AliasChoices("sent_at", "sentAt"))
    attachment_url: str | None = Field(default=None, validation_alias=AliasChoices("attachment_url", "attachmentUrl"))
    attachment_name: str | None = Field(
        default=None, validation_alias=AliasChoices("attachment_name", "attachmentName")
    )
    attachment_type: str | None = Field(
        default=None, validation_alias=AliasChoices("attachment_type", "attachmentType")
    )
    attachment_size: int | None = Field(
        default=None, validation_alias=AliasChoices("attachment_size", "attachmentSize")
    )

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, value: str) -> str:
        return _require_non_empty(value)

    @field_validator("message_type", mode="before")
    @classmethod
    def default_message_type(cls, value: Any) -> Any:
        return value or "text"

    def attachment(self) -> dict[str, Any]:
        return {
            "attachment_url": self.attachment_url,
            "attachment_name": self.attachment_name,
            "attachment_type": self.attachment_type,
            "attachment_size": self.attachment_size,
        }


class MarkAsReadPayload(_InboundPayload):
    """Payload of mark_as_read. Only logged; read receipts are stored elsewhere."""

    conversation_id: str = Field(validation_alias=_CONVERSATION_ALIASES)
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))


class OnlineStatusRequest(_InboundPayload):
    """Payload of request_online_status."""

    user_ids: list[str] = Field(validation_alias=AliasChoices("user_ids", "userIds"))


def coerce_payload(data: Any, key: str) -> Any:
    """
    Wrap a bare scalar payload into a dict under key.

    join, join_conversation and leave_conversation historically carried the id
    itself rather than an object.
    """
    if isinstance(data, (str, int)) and not isinstance(data, bool):
        return {key: data}
    return data
