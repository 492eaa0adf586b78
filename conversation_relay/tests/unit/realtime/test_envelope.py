"""
Unit tests for event and message envelopes.
"""

import json
import re
import uuid

from conversation_relay.realtime.envelope import build_event, build_message_envelope, encode_event, utc_now_z


def test_utc_now_z_format():
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", utc_now_z())


def test_build_event_without_room():
    event = build_event("connected", {"connection_id": "abc"}, sequence_number=3)

    assert event["event_type"] == "connected"
    assert event["sequence_number"] == 3
    assert event["data"] == {"connection_id": "abc"}
    assert "room_id" not in event


def test_build_event_with_room_and_no_data():
    event = build_event("room_joined", sequence_number=1, room_id="room1")

    assert event["room_id"] == "room1"
    assert event["data"] == {}


def test_message_envelope_stamps_sent_at_and_skips_empty_attachment():
    envelope = build_message_envelope(
        conversation_id="room1",
        sender_id="alice",
        content="hi",
        message_type="text",
        message_id="m1",
        attachment={"attachment_url": None, "attachment_name": "a.png"},
    )

    assert envelope["sent_at"].endswith("Z")
    assert envelope["attachment_name"] == "a.png"
    assert "attachment_url" not in envelope


def test_encode_event_handles_uuid():
    value = uuid.uuid4()

    encoded = encode_event(build_event("x", {"id": value}, sequence_number=1))

    assert json.loads(encoded)["data"]["id"] == str(value)
