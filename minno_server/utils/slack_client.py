"""
Slack Web API client wrapper.

This module provides a typed interface over the Slack Web API for posting,
updating and deleting messages, reading thread history, uploading files,
managing reactions and looking up users and channels. Every call checks the
provider's ``ok`` flag and raises ProviderError when Slack reports failure,
so callers never inspect raw responses.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from minno_server.errors import ProviderError
from minno_server.schemas.slack import Block, SlackMessage
from minno_server.utils.logging import get_logger, log_slack_event

logger = get_logger("slack.client")

BlockInput = Union[Block, Dict[str, Any]]


def _serialize_blocks(blocks: Optional[Sequence[BlockInput]]) -> Optional[List[Dict[str, Any]]]:
    if blocks is None:
        return None
    return [
        block.model_dump(exclude_none=True) if isinstance(block, Block) else block
        for block in blocks
    ]


class SlackClient:
    """
    Wrapper for Slack Web API operations.

    Either a bot token or a preconfigured AsyncWebClient may be supplied.
    """

    def __init__(self, token: Optional[str] = None, web_client: Optional[AsyncWebClient] = None):
        """
        Initialize Slack client.

        Args:
            token: Slack bot token
            web_client: Existing AsyncWebClient to wrap (takes precedence)
        """
        self._client = web_client or AsyncWebClient(token=token)

    @property
    def web_client(self) -> AsyncWebClient:
        """The underlying AsyncWebClient for advanced usage."""
        return self._client

    async def _call(self, operation: str, method: str, **kwargs) -> Dict[str, Any]:
        """
        Invoke a Web API method and return its payload.

        Raises:
            ProviderError: If Slack rejects the call
        """
        # Slack rejects explicit nulls for several optional arguments
        arguments = {key: value for key, value in kwargs.items() if value is not None}

        try:
            response = await getattr(self._client, method)(**arguments)
        except SlackApiError as e:
            code = e.response.get("error", "unknown_error") if e.response is not None else "unknown_error"
            logger.error(f"Slack API error during {operation}", error=code)
            raise ProviderError(code, f"Failed to {operation}: {code}")

        data = getattr(response, "data", response)
        if not data.get("ok", False):
            code = data.get("error", "unknown_error")
            logger.error(f"Slack API error during {operation}", error=code)
            raise ProviderError(code, f"Failed to {operation}: {code}")

        return data

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: Optional[Sequence[BlockInput]] = None,
        thread_ts: Optional[str] = None,
        reply_broadcast: Optional[bool] = None,
        unfurl_links: Optional[bool] = None,
        unfurl_media: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Post a message to a Slack channel.

        Args:
            channel: Channel ID to post to
            text: Message text (fallback for blocks)
            blocks: Block Kit blocks for rich formatting
            thread_ts: Thread timestamp to reply in thread
            reply_broadcast: Also show a thread reply in the channel
            unfurl_links: Unfurl text links
            unfurl_media: Unfurl media links

        Returns:
            dict: Slack API response including ``ts`` and ``channel``
        """
        data = await self._call(
            "post message",
            "chat_postMessage",
            channel=channel,
            text=text,
            blocks=_serialize_blocks(blocks),
            thread_ts=thread_ts,
            reply_broadcast=reply_broadcast,
            unfurl_links=unfurl_links,
            unfurl_media=unfurl_media,
        )

        log_slack_event("message_posted", channel_id=channel, thread_ts=thread_ts, message_ts=data.get("ts"))
        return data

    async def post_thread_reply(
        self,
        channel: str,
        thread_ts: str,
        text: str,
        blocks: Optional[Sequence[BlockInput]] = None,
    ) -> Dict[str, Any]:
        """Post a reply into a thread."""
        return await self.post_message(channel, text, blocks=blocks, thread_ts=thread_ts)

    async def get_thread_history(
        self,
        channel: str,
        thread_ts: str,
        limit: Optional[int] = None,
        oldest: Optional[str] = None,
        latest: Optional[str] = None,
        inclusive: Optional[bool] = None,
    ) -> List[SlackMessage]:
        """
        Get the messages of a thread in the order Slack returns them.

        Messages that do not match the SlackMessage schema are logged and
        skipped; the rest are still returned.
        """
        data = await self._call(
            "get thread history",
            "conversations_replies",
            channel=channel,
            ts=thread_ts,
            limit=limit,
            oldest=oldest,
            latest=latest,
            inclusive=inclusive,
        )

        messages = []
        for raw in data.get("messages") or []:
            if not isinstance(raw, dict):
                logger.warning("Skipping non-object thread message", channel_id=channel, thread_ts=thread_ts)
                continue
            try:
                messages.append(SlackMessage.model_validate({**raw, "channel": channel}))
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping malformed thread message",
                    channel_id=channel,
                    thread_ts=thread_ts,
                    message_ts=raw.get("ts"),
                    error=str(e),
                )

        return messages

    async def upload_file(
        self,
        content: bytes,
        filename: str,
        channel: Optional[str] = None,
        thread_ts: Optional[str] = None,
        initial_comment: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Upload a file, optionally sharing it into a channel or thread."""
        data = await self._call(
            "upload file",
            "files_upload_v2",
            file=content,
            filename=filename,
            channel=channel,
            thread_ts=thread_ts,
            initial_comment=initial_comment,
            title=title,
        )

        log_slack_event("file_uploaded", channel_id=channel, thread_ts=thread_ts, filename=filename)
        return data

    async def get_user_info(self, user_id: str) -> Dict[str, Any]:
        data = await self._call("get user info", "users_info", user=user_id)
        return data.get("user") or {}

    async def get_channel_info(self, channel_id: str) -> Dict[str, Any]:
        data = await self._call("get channel info", "conversations_info", channel=channel_id)
        return data.get("channel") or {}

    async def add_reaction(self, channel: str, timestamp: str, reaction: str) -> None:
        await self._call("add reaction", "reactions_add", channel=channel, timestamp=timestamp, name=reaction)

    async def remove_reaction(self, channel: str, timestamp: str, reaction: str) -> None:
        await self._call("remove reaction", "reactions_remove", channel=channel, timestamp=timestamp, name=reaction)

    async def update_message(
        self,
        channel: str,
        ts: str,
        text: str,
        blocks: Optional[Sequence[BlockInput]] = None,
    ) -> Dict[str, Any]:
        """
        Update an existing Slack message.

        Args:
            channel: Channel ID where message exists
            ts: Timestamp of message to update
            text: New message text
            blocks: New Block Kit blocks

        Returns:
            dict: Slack API response
        """
        data = await self._call(
            "update message",
            "chat_update",
            channel=channel,
            ts=ts,
            text=text,
            blocks=_serialize_blocks(blocks),
        )

        log_slack_event("message_updated", channel_id=channel, message_ts=ts)
        return data

    async def delete_message(self, channel: str, ts: str) -> None:
        await self._call("delete message", "chat_delete", channel=channel, ts=ts)
        log_slack_event("message_deleted", channel_id=channel, message_ts=ts)
