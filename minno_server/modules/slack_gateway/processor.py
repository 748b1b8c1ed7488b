"""
Processing of acknowledged Slack deliveries.

Runs on the dispatcher's workers, never inside a request. Human messages and
mentions are recorded as user turns of the session for their thread; bot
messages are ignored so the assistant never answers itself.
"""

from typing import Callable, Union, assert_never

from minno_server.errors import ProviderError
from minno_server.models import MessageRole, Provider
from minno_server.modules.sessions.store import SessionStore
from minno_server.schemas.sessions import Workspace
from minno_server.schemas.slack import (
    AppMentionEvent,
    EventEnvelope,
    InteractivePayload,
    MessageEvent,
    ReactionAddedEvent,
    extract_event,
    is_from_automated_sender,
    is_thread_reply,
    thread_root_ts,
)
from minno_server.utils.logging import get_logger, log_slack_event
from minno_server.utils.slack_client import SlackClient

logger = get_logger("slack.processor")

# Reaction placed on a mention once it has been recorded
ACKNOWLEDGE_REACTION = "eyes"
ALREADY_REACTED = "already_reacted"

SlackClientFactory = Callable[[str], SlackClient]


class EventProcessor:
    """Turns Slack events into session state."""

    def __init__(self, store: SessionStore, slack_client_factory: SlackClientFactory):
        self._store = store
        self._slack_client_factory = slack_client_factory

    async def handle_envelope(self, envelope: EventEnvelope) -> None:
        """
        Process one event callback.

        Errors propagate to the dispatcher, which records the failure.
        """
        event = extract_event(envelope)

        match event:
            case AppMentionEvent():
                if is_from_automated_sender(event):
                    logger.debug("Ignoring bot mention", channel_id=event.channel, bot_id=event.bot_id)
                    return
                workspace = await self._record_user_turn(envelope, event)
                await self._acknowledge_mention(workspace, event)

            case MessageEvent():
                if is_from_automated_sender(event):
                    logger.debug("Ignoring bot message", channel_id=event.channel, bot_id=event.bot_id)
                    return
                if event.subtype is not None or not event.user:
                    # Edits, deletions and channel joins are not conversation turns
                    logger.debug("Ignoring message subtype", channel_id=event.channel, subtype=event.subtype)
                    return
                await self._record_user_turn(envelope, event)

            case ReactionAddedEvent():
                log_slack_event(
                    "reaction_added",
                    channel_id=event.item.channel,
                    user_id=event.user,
                    reaction=event.reaction,
                    item_ts=event.item.ts,
                )

            case _:
                assert_never(event)

    async def handle_interaction(self, payload: InteractivePayload) -> None:
        log_slack_event(
            "interaction_received",
            channel_id=payload.channel.id if payload.channel else None,
            user_id=payload.user.id,
            team_id=payload.team.id,
            interaction_type=payload.type,
            action_count=len(payload.actions or []),
        )

    async def _resolve_workspace(self, team_id: str) -> Workspace:
        workspace = await self._store.get_workspace_by_team_id(team_id)
        if workspace is not None:
            return workspace

        # Events can arrive before the install callback; the name is filled in on install
        logger.info("Creating workspace for unseen team", team_id=team_id)
        return await self._store.upsert_workspace(team_id, team_id)

    async def _record_user_turn(
        self,
        envelope: EventEnvelope,
        event: Union[AppMentionEvent, MessageEvent],
    ) -> Workspace:
        workspace = await self._resolve_workspace(envelope.team_id)
        session = await self._store.upsert_session(workspace.id, event.channel, thread_root_ts(event))

        # Mentions also arrive as message events, and Slack redelivers on slow acks
        _, recorded = await self._store.record_message(
            session.id,
            MessageRole.USER,
            event.text,
            metadata={
                "slack_user_id": event.user,
                "event_id": envelope.event_id,
                "event_type": event.type,
            },
            slack_message_ts=event.ts,
        )
        if not recorded:
            logger.debug("Message already recorded", session_id=str(session.id), message_ts=event.ts)
            return workspace

        log_slack_event(
            "user_turn_recorded",
            channel_id=event.channel,
            user_id=event.user,
            session_id=str(session.id),
            thread_reply=is_thread_reply(event),
        )
        return workspace

    async def _acknowledge_mention(self, workspace: Workspace, event: AppMentionEvent) -> None:
        stored = await self._store.get_oauth_token(Provider.SLACK, workspace.id)
        if stored is None:
            logger.warning("No Slack token for workspace, skipping acknowledgement", workspace_id=str(workspace.id))
            return

        client = self._slack_client_factory(stored.token.access_token)
        try:
            await client.add_reaction(event.channel, event.ts, ACKNOWLEDGE_REACTION)
        except ProviderError as e:
            # Redelivered mentions were acknowledged on the first delivery
            if e.code != ALREADY_REACTED:
                raise
            logger.debug("Mention already acknowledged", channel_id=event.channel, message_ts=event.ts)
