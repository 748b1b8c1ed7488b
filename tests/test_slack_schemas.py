"""
Tests for Slack payload schemas and event helpers.
"""

import json

import pytest

from minno_server.errors import ValidationError
from minno_server.schemas.slack import (
    AppMentionEvent,
    MessageEvent,
    ReactionAddedEvent,
    decode_json_object,
    extract_event,
    is_app_mention_event,
    is_from_automated_sender,
    is_message_event,
    is_reaction_added_event,
    is_thread_reply,
    is_user_message,
    parse_event_envelope,
    parse_interactive_payload,
    parse_url_verification,
    thread_root_ts,
)


def envelope(event: dict) -> dict:
    return {
        "token": "verification-token",
        "team_id": "T123",
        "api_app_id": "A123",
        "type": "event_callback",
        "event_id": "Ev123",
        "event_time": 1_700_000_000,
        "event": event,
    }


MESSAGE = {
    "type": "message",
    "user": "U1",
    "text": "hello",
    "ts": "1700000000.000100",
    "channel": "C1",
    "event_ts": "1700000000.000100",
}

MENTION = {
    "type": "app_mention",
    "user": "U1",
    "text": "<@UBOT> plan the launch",
    "ts": "1700000000.000200",
    "channel": "C1",
    "event_ts": "1700000000.000200",
}

REACTION = {
    "type": "reaction_added",
    "user": "U2",
    "reaction": "thumbsup",
    "item": {"type": "message", "channel": "C1", "ts": "1700000000.000100"},
    "event_ts": "1700000001.000000",
}


class TestParseEventEnvelope:
    def test_message_event_is_parsed_into_its_variant(self):
        parsed = parse_event_envelope(envelope(MESSAGE))

        assert isinstance(parsed.event, MessageEvent)
        assert parsed.team_id == "T123"
        assert is_message_event(extract_event(parsed))

    def test_app_mention_event(self):
        parsed = parse_event_envelope(envelope(MENTION))

        assert isinstance(parsed.event, AppMentionEvent)
        assert is_app_mention_event(parsed.event)
        assert extract_event(parsed).model_dump(exclude_none=True) == MENTION

    def test_reaction_added_event(self):
        parsed = parse_event_envelope(envelope(REACTION))

        assert isinstance(parsed.event, ReactionAddedEvent)
        assert is_reaction_added_event(parsed.event)
        assert parsed.event.item.channel == "C1"

    def test_accepts_raw_json_bytes(self):
        parsed = parse_event_envelope(json.dumps(envelope(MESSAGE)).encode())

        assert parsed.event_id == "Ev123"

    def test_unknown_event_type_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_event_envelope(envelope({**MESSAGE, "type": "channel_created"}))

    def test_missing_required_event_field_is_rejected(self):
        event = {key: value for key, value in MESSAGE.items() if key != "channel"}

        with pytest.raises(ValidationError) as exc_info:
            parse_event_envelope(envelope(event))

        assert exc_info.value.status_code == 400

    def test_wrong_outer_type_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_event_envelope({**envelope(MESSAGE), "type": "url_verification"})

    def test_malformed_json_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_event_envelope(b"{not json")

    def test_message_without_text_defaults_to_empty(self):
        event = {key: value for key, value in MESSAGE.items() if key != "text"}
        parsed = parse_event_envelope(envelope({**event, "subtype": "message_deleted"}))

        assert parsed.event.text == ""


class TestEventHelpers:
    def test_top_level_message_is_keyed_on_its_own_ts(self):
        event = MessageEvent.model_validate(MESSAGE)

        assert not is_thread_reply(event)
        assert thread_root_ts(event) == MESSAGE["ts"]

    def test_reply_is_keyed_on_parent_ts(self):
        event = MessageEvent.model_validate({**MESSAGE, "thread_ts": "1699999999.000001"})

        assert is_thread_reply(event)
        assert thread_root_ts(event) == "1699999999.000001"

    def test_thread_root_with_matching_thread_ts_is_not_a_reply(self):
        event = MessageEvent.model_validate({**MESSAGE, "thread_ts": MESSAGE["ts"]})

        assert not is_thread_reply(event)

    def test_bot_messages_are_automated(self):
        event = MessageEvent.model_validate({**MESSAGE, "bot_id": "B1"})

        assert is_from_automated_sender(event)
        assert not is_user_message(event)

    def test_human_message_is_user_message(self):
        assert is_user_message(MessageEvent.model_validate(MESSAGE))

    def test_reaction_is_never_a_user_message(self):
        assert not is_user_message(ReactionAddedEvent.model_validate(REACTION))


class TestOtherPayloads:
    def test_url_verification(self):
        parsed = parse_url_verification({"type": "url_verification", "challenge": "abc", "token": "t"})

        assert parsed.challenge == "abc"

    def test_interactive_payload(self):
        payload = json.dumps({
            "type": "block_actions",
            "user": {"id": "U1", "username": "ada"},
            "team": {"id": "T123"},
            "channel": {"id": "C1"},
            "actions": [{"action_id": "approve"}],
            "trigger_id": "trigger",
        })

        parsed = parse_interactive_payload(payload)

        assert parsed.type == "block_actions"
        assert parsed.channel.id == "C1"
        assert len(parsed.actions) == 1

    @pytest.mark.parametrize("payload", [None, "", "{bad", '{"type": "block_actions"}'])
    def test_invalid_interactive_payload(self, payload):
        with pytest.raises(ValidationError):
            parse_interactive_payload(payload)

    @pytest.mark.parametrize("body", [b"[1, 2]", b'"text"', b"\xff\xfe"])
    def test_decode_json_object_requires_an_object(self, body):
        with pytest.raises(ValidationError):
            decode_json_object(body)
