"""
Tests for the event processor running against the in-memory database.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from slack_sdk.errors import SlackApiError

from minno_server.errors import ProviderError
from minno_server.models import Provider
from minno_server.modules.slack_gateway.dispatcher import EventDispatcher
from minno_server.modules.slack_gateway.processor import EventProcessor
from minno_server.schemas.sessions import OAuthToken
from minno_server.schemas.slack import parse_event_envelope
from minno_server.utils.slack_client import SlackClient

TS = "1700000000.000100"


def envelope(event: dict, event_id: str = "Ev1"):
    return parse_event_envelope({
        "token": "verification-token",
        "team_id": "T123",
        "api_app_id": "A123",
        "type": "event_callback",
        "event_id": event_id,
        "event_time": 1_700_000_000,
        "event": event,
    })


def slack_event(event_type: str = "message", **extra) -> dict:
    return {
        "type": event_type,
        "user": "U1",
        "text": "<@UBOT> plan the launch",
        "ts": TS,
        "channel": "C1",
        "event_ts": TS,
        **extra,
    }


@pytest.fixture
def web_client() -> AsyncMock:
    client = AsyncMock()
    client.reactions_add.return_value = {"ok": True}
    return client


@pytest.fixture
def processor(store, web_client) -> EventProcessor:
    return EventProcessor(store, lambda token: SlackClient(web_client=web_client))


@pytest.fixture
async def installed(store):
    workspace = await store.upsert_workspace("T123", "Acme")
    await store.upsert_oauth_token(Provider.SLACK, workspace.id, OAuthToken(access_token="xoxb-1"))
    return workspace


async def recorded_turns(store):
    session = await store.get_session_by_thread("C1", TS)
    return await store.list_messages(session.id)


class TestUserTurns:
    async def test_concurrent_deliveries_of_one_message_record_one_turn(self, processor, store):
        await asyncio.gather(
            processor.handle_envelope(envelope(slack_event(), event_id="Ev1")),
            processor.handle_envelope(envelope(slack_event(), event_id="Ev2")),
        )

        assert len(await recorded_turns(store)) == 1

    async def test_mention_and_its_message_copy_record_one_turn(self, processor, store, installed):
        await asyncio.gather(
            processor.handle_envelope(envelope(slack_event("app_mention"), event_id="Ev1")),
            processor.handle_envelope(envelope(slack_event(), event_id="Ev2")),
        )

        assert len(await recorded_turns(store)) == 1

    async def test_edits_are_not_turns(self, processor, store):
        await processor.handle_envelope(envelope(slack_event(subtype="message_changed")))

        assert await store.get_session_by_thread("C1", TS) is None


class TestMentions:
    async def test_redelivered_mention_does_not_fail(self, processor, store, installed, web_client):
        web_client.reactions_add.side_effect = [
            {"ok": True},
            SlackApiError("The request to the Slack API failed.", {"ok": False, "error": "already_reacted"}),
        ]
        dispatcher = EventDispatcher(workers=1)
        dispatcher.start()

        for _ in range(2):
            dispatcher.submit("mention", lambda: processor.handle_envelope(envelope(slack_event("app_mention"))))
        await dispatcher.drain()
        await dispatcher.stop()

        assert web_client.reactions_add.await_count == 2
        assert not dispatcher.failures
        assert len(await recorded_turns(store)) == 1

    async def test_mention_recorded_from_message_copy_is_still_acknowledged(
        self, processor, store, installed, web_client
    ):
        await processor.handle_envelope(envelope(slack_event(), event_id="Ev1"))
        await processor.handle_envelope(envelope(slack_event("app_mention"), event_id="Ev2"))

        web_client.reactions_add.assert_awaited_once_with(channel="C1", timestamp=TS, name="eyes")
        assert len(await recorded_turns(store)) == 1

    async def test_other_reaction_errors_propagate(self, processor, installed, web_client):
        web_client.reactions_add.return_value = {"ok": False, "error": "invalid_auth"}

        with pytest.raises(ProviderError) as exc_info:
            await processor.handle_envelope(envelope(slack_event("app_mention")))

        assert exc_info.value.code == "invalid_auth"

    async def test_bot_mentions_are_ignored(self, processor, store, installed, web_client):
        await processor.handle_envelope(envelope(slack_event("app_mention", bot_id="B1")))

        assert await store.get_session_by_thread("C1", TS) is None
        web_client.reactions_add.assert_not_awaited()

    async def test_mention_without_installed_token_is_recorded(self, processor, store, web_client):
        await processor.handle_envelope(envelope(slack_event("app_mention")))

        assert len(await recorded_turns(store)) == 1
        web_client.reactions_add.assert_not_awaited()
