"""
Pydantic schemas for Slack payload validation.

This module contains schemas for validating incoming Events API envelopes,
interactive component payloads, and the messages returned by the Web API.
Event variants form a tagged union on ``type``; an unknown tag is rejected
rather than coerced.
"""

import json
from typing import Annotated, Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from minno_server.errors import ValidationError


# ============================================================================
# BLOCK KIT AND MESSAGES
# ============================================================================

class BlockText(BaseModel):
    type: str
    text: str
    emoji: Optional[bool] = None


class Block(BaseModel):
    """Slack Block Kit block."""

    type: str
    block_id: Optional[str] = None
    elements: Optional[List[Any]] = None
    text: Optional[BlockText] = None
    accessory: Optional[Any] = None
    fields: Optional[List[Any]] = None


class SlackFile(BaseModel):
    id: str
    name: str
    mimetype: str
    url_private: str
    url_private_download: str


class SlackMessage(BaseModel):
    """A message as returned by conversations.replies."""

    type: Literal["message"]
    subtype: Optional[str] = None
    text: str
    user: Optional[str] = None
    bot_id: Optional[str] = None
    ts: str
    thread_ts: Optional[str] = None
    channel: str
    blocks: Optional[List[Block]] = None
    files: Optional[List[SlackFile]] = None


# ============================================================================
# EVENTS API
# ============================================================================

class AppMentionEvent(BaseModel):
    """The bot was @mentioned in a channel."""

    type: Literal["app_mention"]
    user: str = Field(..., description="User who mentioned the bot")
    text: str
    ts: str
    channel: str
    event_ts: str
    thread_ts: Optional[str] = Field(None, description="Parent timestamp when mentioned in a thread")
    bot_id: Optional[str] = None


class MessageEvent(BaseModel):
    """
    A message posted to a channel the bot is subscribed to.

    ``text`` defaults to empty because subtypes such as message_deleted
    carry no text.
    """

    type: Literal["message"]
    subtype: Optional[str] = None
    user: Optional[str] = None
    text: str = ""
    ts: str
    channel: str
    event_ts: str
    thread_ts: Optional[str] = None
    bot_id: Optional[str] = None


class ReactionItem(BaseModel):
    type: str
    channel: str
    ts: str


class ReactionAddedEvent(BaseModel):
    """A reaction was added to an item."""

    type: Literal["reaction_added"]
    user: str
    reaction: str
    item: ReactionItem
    event_ts: str


SlackEvent = Annotated[
    Union[AppMentionEvent, MessageEvent, ReactionAddedEvent],
    Field(discriminator="type"),
]


class Authorization(BaseModel):
    enterprise_id: Optional[str] = None
    team_id: str
    user_id: str
    is_bot: bool
    is_enterprise_install: Optional[bool] = None


class EventEnvelope(BaseModel):
    """Outer Events API wrapper around a single event."""

    token: str
    team_id: str
    api_app_id: str
    event: SlackEvent
    type: Literal["event_callback"]
    event_id: str
    event_time: int
    authorizations: Optional[List[Authorization]] = None


class UrlVerification(BaseModel):
    """Handshake challenge sent when the request URL is configured."""

    type: Literal["url_verification"]
    challenge: str
    token: Optional[str] = None


# ============================================================================
# INTERACTIVITY
# ============================================================================

class InteractiveUser(BaseModel):
    id: str
    username: Optional[str] = None
    name: Optional[str] = None


class InteractiveTeam(BaseModel):
    id: str
    domain: Optional[str] = None


class InteractiveChannel(BaseModel):
    id: str
    name: Optional[str] = None


class InteractivePayload(BaseModel):
    """
    Payload sent when users interact with buttons, menus or modals.

    Only the fields Minno reads are declared; everything else Slack sends is
    ignored.
    """

    type: str
    user: InteractiveUser
    team: InteractiveTeam
    channel: Optional[InteractiveChannel] = None
    actions: Optional[List[Any]] = None
    callback_id: Optional[str] = None
    trigger_id: Optional[str] = None
    response_url: Optional[str] = None


# ============================================================================
# PARSING
# ============================================================================

def _load_json(raw: Union[Mapping[str, Any], str, bytes]) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid JSON payload: {e}")
    return raw


def decode_json_object(raw: Union[str, bytes]) -> dict:
    """
    Decode a request body that must be a JSON object.

    Raises:
        ValidationError: If the body is not valid JSON or not an object
    """
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _describe(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "payload"
    return f"{location}: {first['msg']}"


def parse_event_envelope(raw: Union[Mapping[str, Any], str, bytes]) -> EventEnvelope:
    """
    Validate an Events API callback envelope.

    Args:
        raw: Decoded JSON mapping or the raw JSON text

    Returns:
        EventEnvelope: Validated envelope

    Raises:
        ValidationError: On malformed JSON, missing fields or an unknown event type
    """
    data = _load_json(raw)
    try:
        return EventEnvelope.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid event envelope: {_describe(e)}")


def parse_url_verification(raw: Union[Mapping[str, Any], str, bytes]) -> UrlVerification:
    data = _load_json(raw)
    try:
        return UrlVerification.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid url_verification request: {_describe(e)}")


def parse_interactive_payload(payload: Optional[str]) -> InteractivePayload:
    """
    Parse the JSON string carried in the interactive endpoint's ``payload`` field.

    Raises:
        ValidationError: If the field is missing or malformed
    """
    if not payload:
        raise ValidationError("Missing interactive payload")

    data = _load_json(payload)
    try:
        return InteractivePayload.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid interactive payload: {_describe(e)}")


def extract_event(envelope: EventEnvelope) -> SlackEvent:
    """Extract the event from an envelope."""
    return envelope.event


# Event type guards

def is_app_mention_event(event: SlackEvent) -> bool:
    return event.type == "app_mention"


def is_message_event(event: SlackEvent) -> bool:
    return event.type == "message"


def is_reaction_added_event(event: SlackEvent) -> bool:
    return event.type == "reaction_added"


def is_thread_reply(event: SlackEvent) -> bool:
    """
    Check if an event is a reply inside a thread.

    The thread's root message carries thread_ts equal to its own ts and is
    not a reply.
    """
    thread_ts = getattr(event, "thread_ts", None)
    return thread_ts is not None and thread_ts != getattr(event, "ts", None)


def is_from_automated_sender(event: SlackEvent) -> bool:
    """Check if an event was produced by a bot."""
    return getattr(event, "bot_id", None) is not None


def is_user_message(event: SlackEvent) -> bool:
    return is_message_event(event) and not is_from_automated_sender(event)


def thread_root_ts(event: Union[AppMentionEvent, MessageEvent]) -> str:
    """
    Timestamp identifying the conversation thread.

    Replies use their parent's timestamp; top-level messages start a new
    thread keyed on their own timestamp.
    """
    return event.thread_ts or event.ts
