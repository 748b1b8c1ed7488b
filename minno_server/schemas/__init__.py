"""
Pydantic schemas for API validation.

This package contains Pydantic models for Slack payload validation and the
immutable records the session store returns.
"""

from .slack import EventEnvelope, InteractivePayload, SlackEvent, SlackMessage, parse_event_envelope
from .sessions import ConversationMessage, MinnoSession, OAuthToken, StoredOAuthToken, Workspace

__all__ = [
    "EventEnvelope",
    "InteractivePayload",
    "SlackEvent",
    "SlackMessage",
    "parse_event_envelope",
    "ConversationMessage",
    "MinnoSession",
    "OAuthToken",
    "StoredOAuthToken",
    "Workspace",
]
