"""
Unit tests for inbound payload models.
"""

import pytest
from pydantic import ValidationError

from conversation_relay.realtime.message_schemas import (
    ConversationRef,
    OnlineStatusRequest,
    SendMessagePayload,
    coerce_payload,
)


def test_conversation_ref_aliases():
    assert ConversationRef.model_validate({"conversationId": "a"}).conversation_id == "a"
    assert ConversationRef.model_validate({"channel_id": "b"}).conversation_id == "b"


def test_conversation_ref_keeps_id_verbatim_and_rejects_blank():
    assert ConversationRef.model_validate({"conversation_id": "  a "}).conversation_id == "  a "
    with pytest.raises(ValidationError):
        ConversationRef.model_validate({"conversation_id": "  "})


def test_send_message_defaults():
    payload = SendMessagePayload.model_validate({"conversation_id": "r1"})

    assert payload.content is None
    assert payload.message_type == "text"
    assert payload.attachment() == {
        "attachment_url": None,
        "attachment_name": None,
        "attachment_type": None,
        "attachment_size": None,
    }


def test_send_message_ignores_unknown_fields():
    payload = SendMessagePayload.model_validate({"conversation_id": "r1", "sender_id": "spoofed"})

    assert not hasattr(payload, "sender_id")


def test_online_status_request_camel_case():
    assert OnlineStatusRequest.model_validate({"userIds": ["a", 1]}).user_ids == ["a", "1"]


@pytest.mark.parametrize(
    ("data", "expected"),
    [("room1", {"conversation_id": "room1"}), (5, {"conversation_id": 5}), (True, True), (None, None)],
)
def test_coerce_payload(data, expected):
    assert coerce_payload(data, "conversation_id") == expected
