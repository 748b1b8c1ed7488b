"""
Tests for the Slack Web API client wrapper.
"""

from unittest.mock import AsyncMock

import pytest
from slack_sdk.errors import SlackApiError

from minno_server.errors import ProviderError
from minno_server.schemas.slack import Block, BlockText
from minno_server.utils.slack_client import SlackClient


@pytest.fixture
def web_client() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def slack(web_client) -> SlackClient:
    return SlackClient(web_client=web_client)


class TestPostMessage:
    async def test_posts_and_returns_payload(self, slack, web_client):
        web_client.chat_postMessage.return_value = {"ok": True, "ts": "100.2", "channel": "C1"}

        result = await slack.post_message("C1", "hello", thread_ts="100.1")

        assert result["ts"] == "100.2"
        web_client.chat_postMessage.assert_awaited_once_with(channel="C1", text="hello", thread_ts="100.1")

    async def test_block_models_are_serialized(self, slack, web_client):
        web_client.chat_postMessage.return_value = {"ok": True, "ts": "100.2"}
        block = Block(type="section", text=BlockText(type="mrkdwn", text="*hi*"))

        await slack.post_message("C1", "hi", blocks=[block, {"type": "divider"}])

        sent = web_client.chat_postMessage.await_args.kwargs["blocks"]
        assert sent == [{"type": "section", "text": {"type": "mrkdwn", "text": "*hi*"}}, {"type": "divider"}]

    async def test_thread_reply(self, slack, web_client):
        web_client.chat_postMessage.return_value = {"ok": True, "ts": "100.3"}

        await slack.post_thread_reply("C1", "100.1", "reply")

        assert web_client.chat_postMessage.await_args.kwargs["thread_ts"] == "100.1"

    async def test_not_ok_response_raises_provider_error(self, slack, web_client):
        web_client.chat_postMessage.return_value = {"ok": False, "error": "channel_not_found"}

        with pytest.raises(ProviderError) as exc_info:
            await slack.post_message("C404", "hello")

        assert exc_info.value.code == "channel_not_found"

    async def test_sdk_error_is_wrapped(self, slack, web_client):
        web_client.chat_postMessage.side_effect = SlackApiError(
            "The request to the Slack API failed.", {"ok": False, "error": "not_in_channel"}
        )

        with pytest.raises(ProviderError) as exc_info:
            await slack.post_message("C1", "hello")

        assert exc_info.value.code == "not_in_channel"


class TestThreadHistory:
    async def test_malformed_messages_are_skipped(self, slack, web_client):
        web_client.conversations_replies.return_value = {
            "ok": True,
            "messages": [
                {"type": "message", "text": "root", "user": "U1", "ts": "100.1"},
                {"type": "message", "user": "U2"},
                "not a message",
                {"type": "message", "text": "reply", "user": "U2", "ts": "100.2", "thread_ts": "100.1"},
            ],
        }

        messages = await slack.get_thread_history("C1", "100.1", limit=50)

        assert [message.text for message in messages] == ["root", "reply"]
        assert all(message.channel == "C1" for message in messages)
        web_client.conversations_replies.assert_awaited_once_with(channel="C1", ts="100.1", limit=50)

    async def test_failure_raises(self, slack, web_client):
        web_client.conversations_replies.return_value = {"ok": False, "error": "thread_not_found"}

        with pytest.raises(ProviderError):
            await slack.get_thread_history("C1", "100.1")


class TestOtherCalls:
    async def test_reactions(self, slack, web_client):
        web_client.reactions_add.return_value = {"ok": True}
        web_client.reactions_remove.return_value = {"ok": True}

        await slack.add_reaction("C1", "100.1", "eyes")
        await slack.remove_reaction("C1", "100.1", "eyes")

        web_client.reactions_add.assert_awaited_once_with(channel="C1", timestamp="100.1", name="eyes")
        web_client.reactions_remove.assert_awaited_once_with(channel="C1", timestamp="100.1", name="eyes")

    async def test_user_and_channel_info(self, slack, web_client):
        web_client.users_info.return_value = {"ok": True, "user": {"id": "U1", "name": "ada"}}
        web_client.conversations_info.return_value = {"ok": True, "channel": {"id": "C1", "name": "general"}}

        assert (await slack.get_user_info("U1"))["name"] == "ada"
        assert (await slack.get_channel_info("C1"))["name"] == "general"

    async def test_update_and_delete(self, slack, web_client):
        web_client.chat_update.return_value = {"ok": True, "ts": "100.1"}
        web_client.chat_delete.return_value = {"ok": True}

        await slack.update_message("C1", "100.1", "edited")
        await slack.delete_message("C1", "100.1")

        web_client.chat_update.assert_awaited_once_with(channel="C1", ts="100.1", text="edited")
        web_client.chat_delete.assert_awaited_once_with(channel="C1", ts="100.1")

    async def test_upload_file(self, slack, web_client):
        web_client.files_upload_v2.return_value = {"ok": True, "file": {"id": "F1"}}

        result = await slack.upload_file(b"data", "report.txt", channel="C1", thread_ts="100.1")

        assert result["file"]["id"] == "F1"
        kwargs = web_client.files_upload_v2.await_args.kwargs
        assert kwargs["file"] == b"data"
        assert kwargs["filename"] == "report.txt"
        assert "title" not in kwargs
