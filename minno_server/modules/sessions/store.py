"""
Session store: persistence for workspaces, sessions, messages and OAuth tokens.

Every operation opens its own database session inside ``async with`` so the
pooled connection is released on success, error and early return alike.
Upserts are single INSERT ... ON CONFLICT DO UPDATE statements; concurrent
deliveries for the same key are settled by the table's unique constraint.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from minno_server.database import utcnow
from minno_server.errors import ConfigError, NotFoundError, StorageError
from minno_server.models import (
    ConversationMessageModel,
    MessageRole,
    MinnoSessionModel,
    OAuthTokenModel,
    Provider,
    SessionStatus,
    WorkspaceModel,
)
from minno_server.schemas.sessions import (
    ConversationMessage,
    MinnoSession,
    OAuthToken,
    StoredOAuthToken,
    Workspace,
    to_conversation_message,
    to_minno_session,
    to_stored_oauth_token,
    to_workspace,
)
from minno_server.utils.logging import get_logger

from .crypto import TokenCipher

logger = get_logger("sessions.store")

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# ORM upserts must overwrite any instance already in the identity map
_POPULATE = {"populate_existing": True}


class SessionStore:
    """Persistence layer for all Minno entities."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
        dialect: str,
    ):
        if dialect not in _UPSERT_DIALECTS:
            raise ConfigError(f"Unsupported database dialect: {dialect}")

        self._session_maker = session_maker
        self._cipher = cipher
        self._insert = _UPSERT_DIALECTS[dialect]

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error("Storage operation failed", operation=operation, error=str(e))
                raise StorageError(operation, str(e)) from e

    # ========================================================================
    # WORKSPACES
    # ========================================================================

    async def upsert_workspace(
        self,
        slack_team_id: str,
        slack_team_name: str,
        notion_workspace_id: Optional[str] = None,
    ) -> Workspace:
        """
        Create or update a workspace keyed by Slack team ID.

        The name is overwritten; the Notion link is only replaced when a new
        one is given.
        """
        now = utcnow()
        stmt = self._insert(WorkspaceModel).values([{
            "id": uuid4(),
            "slack_team_id": slack_team_id,
            "slack_team_name": slack_team_name,
            "notion_workspace_id": notion_workspace_id,
            "created_at": now,
            "updated_at": now,
        }])
        stmt = stmt.on_conflict_do_update(
            index_elements=["slack_team_id"],
            set_={
                "slack_team_name": stmt.excluded.slack_team_name,
                "notion_workspace_id": func.coalesce(
                    stmt.excluded.notion_workspace_id, WorkspaceModel.notion_workspace_id
                ),
                "updated_at": now,
            },
        ).returning(WorkspaceModel)

        async with self._transaction("upsert workspace") as session:
            row = (await session.scalars(stmt, execution_options=_POPULATE)).one()
            workspace = to_workspace(row)

        logger.debug("Workspace upserted", workspace_id=str(workspace.id), team_id=slack_team_id)
        return workspace

    async def get_workspace(self, workspace_id: UUID) -> Optional[Workspace]:
        async with self._transaction("get workspace") as session:
            row = await session.get(WorkspaceModel, workspace_id)
            return to_workspace(row) if row else None

    async def get_workspace_by_team_id(self, slack_team_id: str) -> Optional[Workspace]:
        async with self._transaction("get workspace by team") as session:
            row = (await session.scalars(
                select(WorkspaceModel).where(WorkspaceModel.slack_team_id == slack_team_id)
            )).one_or_none()
            return to_workspace(row) if row else None

    async def delete_workspace(self, workspace_id: UUID) -> None:
        """
        Delete a workspace together with its tokens, sessions and messages.

        Raises:
            NotFoundError: If the workspace does not exist
        """
        async with self._transaction("delete workspace") as session:
            result = await session.execute(
                delete(WorkspaceModel).where(WorkspaceModel.id == workspace_id),
                execution_options={"synchronize_session": False},
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Workspace {workspace_id} not found")

        logger.info("Workspace deleted", workspace_id=str(workspace_id))

    # ========================================================================
    # MINNO SESSIONS
    # ========================================================================

    async def upsert_session(
        self,
        workspace_id: UUID,
        slack_channel_id: str,
        slack_thread_ts: str,
        notion_project_id: Optional[str] = None,
        notion_task_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        status: Optional[SessionStatus] = None,
    ) -> MinnoSession:
        """
        Create or update the session for a Slack thread.

        On conflict the Notion links and context are kept when no new value
        is given, and replaced as a whole when one is. Status defaults to
        active on first insert and is only changed when passed explicitly.
        """
        now = utcnow()
        stmt = self._insert(MinnoSessionModel).values([{
            "id": uuid4(),
            "workspace_id": workspace_id,
            "slack_channel_id": slack_channel_id,
            "slack_thread_ts": slack_thread_ts,
            "notion_project_id": notion_project_id,
            "notion_task_id": notion_task_id,
            "context": context,
            "status": SessionStatus(status or SessionStatus.ACTIVE).value,
            "created_at": now,
            "updated_at": now,
        }])
        merge = {
            "notion_project_id": func.coalesce(
                stmt.excluded.notion_project_id, MinnoSessionModel.notion_project_id
            ),
            "notion_task_id": func.coalesce(
                stmt.excluded.notion_task_id, MinnoSessionModel.notion_task_id
            ),
            "context": func.coalesce(stmt.excluded.context, MinnoSessionModel.context),
            "updated_at": now,
        }
        if status is not None:
            merge["status"] = stmt.excluded.status

        stmt = stmt.on_conflict_do_update(
            index_elements=["slack_channel_id", "slack_thread_ts"],
            set_=merge,
        ).returning(MinnoSessionModel)

        async with self._transaction("upsert session") as session:
            row = (await session.scalars(stmt, execution_options=_POPULATE)).one()
            minno_session = to_minno_session(row)

        logger.debug(
            "Session upserted",
            session_id=str(minno_session.id),
            channel_id=slack_channel_id,
            thread_ts=slack_thread_ts,
        )
        return minno_session

    async def get_session(self, session_id: UUID) -> Optional[MinnoSession]:
        async with self._transaction("get session") as session:
            row = await session.get(MinnoSessionModel, session_id)
            return to_minno_session(row) if row else None

    async def get_session_by_thread(
        self, slack_channel_id: str, slack_thread_ts: str
    ) -> Optional[MinnoSession]:
        async with self._transaction("get session by thread") as session:
            row = (await session.scalars(
                select(MinnoSessionModel).where(
                    MinnoSessionModel.slack_channel_id == slack_channel_id,
                    MinnoSessionModel.slack_thread_ts == slack_thread_ts,
                )
            )).one_or_none()
            return to_minno_session(row) if row else None

    async def list_active_sessions(self, workspace_id: UUID) -> List[MinnoSession]:
        """Active sessions for a workspace, most recently updated first."""
        async with self._transaction("list active sessions") as session:
            rows = (await session.scalars(
                select(MinnoSessionModel)
                .where(
                    MinnoSessionModel.workspace_id == workspace_id,
                    MinnoSessionModel.status == SessionStatus.ACTIVE.value,
                )
                .order_by(MinnoSessionModel.updated_at.desc())
            )).all()
            return [to_minno_session(row) for row in rows]

    async def update_session_status(self, session_id: UUID, status: SessionStatus) -> MinnoSession:
        """
        Move a session to a new status.

        Raises:
            NotFoundError: If the session does not exist
        """
        async with self._transaction("update session status") as session:
            row = await session.get(MinnoSessionModel, session_id)
            if row is None:
                raise NotFoundError(f"Session {session_id} not found")

            row.status = SessionStatus(status).value
            row.updated_at = utcnow()
            await session.flush()
            minno_session = to_minno_session(row)

        logger.info("Session status updated", session_id=str(session_id), status=minno_session.status.value)
        return minno_session

    async def delete_session(self, session_id: UUID) -> None:
        """
        Delete a session and all its messages.

        Raises:
            NotFoundError: If the session does not exist
        """
        async with self._transaction("delete session") as session:
            result = await session.execute(
                delete(MinnoSessionModel).where(MinnoSessionModel.id == session_id),
                execution_options={"synchronize_session": False},
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Session {session_id} not found")

    async def purge_sessions(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        """
        Delete sessions idle for longer than the retention window that are
        either archived or hold no messages.

        Returns:
            int: Number of sessions deleted
        """
        cutoff = (now or utcnow()) - retention
        has_messages = (
            select(ConversationMessageModel.id)
            .where(ConversationMessageModel.session_id == MinnoSessionModel.id)
            .correlate(MinnoSessionModel)
            .exists()
        )

        async with self._transaction("purge sessions") as session:
            result = await session.execute(
                delete(MinnoSessionModel).where(
                    MinnoSessionModel.updated_at < cutoff,
                    or_(
                        MinnoSessionModel.status == SessionStatus.ARCHIVED.value,
                        ~has_messages,
                    ),
                ),
                execution_options={"synchronize_session": False},
            )
            purged = result.rowcount

        logger.info("Sessions purged", count=purged, cutoff=cutoff.isoformat())
        return purged

    # ========================================================================
    # CONVERSATION MESSAGES
    # ========================================================================

    async def append_message(
        self,
        session_id: UUID,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        slack_message_ts: Optional[str] = None,
    ) -> ConversationMessage:
        """
        Append a turn to a session.

        A turn carrying a Slack message timestamp is stored once per session;
        appending it again returns the row already stored.

        Raises:
            NotFoundError: If the session does not exist
        """
        message, _ = await self.record_message(
            session_id, role, content, metadata=metadata, slack_message_ts=slack_message_ts
        )
        return message

    async def record_message(
        self,
        session_id: UUID,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        slack_message_ts: Optional[str] = None,
    ) -> Tuple[ConversationMessage, bool]:
        """
        Append a turn unless its Slack message is already stored.

        Concurrent deliveries of the same Slack message are settled by the
        unique index on (session_id, slack_message_ts).

        Returns:
            tuple: The stored message and whether this call inserted it

        Raises:
            NotFoundError: If the session does not exist
        """
        stmt = self._insert(ConversationMessageModel).values([{
            "id": uuid4(),
            "session_id": session_id,
            "role": MessageRole(role).value,
            "content": content,
            "message_metadata": metadata,
            "timestamp": utcnow(),
            "slack_message_ts": slack_message_ts,
        }])
        if slack_message_ts is not None:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=["session_id", "slack_message_ts"],
                index_where=ConversationMessageModel.slack_message_ts.isnot(None),
            )
        stmt = stmt.returning(ConversationMessageModel)

        async with self._transaction("append message") as session:
            if await session.get(MinnoSessionModel, session_id) is None:
                raise NotFoundError(f"Session {session_id} not found")

            row = (await session.scalars(stmt, execution_options=_POPULATE)).one_or_none()
            if row is not None:
                return to_conversation_message(row), True

            existing = (await session.scalars(
                select(ConversationMessageModel).where(
                    ConversationMessageModel.session_id == session_id,
                    ConversationMessageModel.slack_message_ts == slack_message_ts,
                )
            )).one()
            return to_conversation_message(existing), False

    async def get_message_by_slack_ts(
        self, session_id: UUID, slack_message_ts: str
    ) -> Optional[ConversationMessage]:
        """The message recorded for a Slack message, if any."""
        async with self._transaction("get message by slack ts") as session:
            row = (await session.scalars(
                select(ConversationMessageModel)
                .where(
                    ConversationMessageModel.session_id == session_id,
                    ConversationMessageModel.slack_message_ts == slack_message_ts,
                )
                .limit(1)
            )).first()
            return to_conversation_message(row) if row else None

    async def list_messages(self, session_id: UUID) -> List[ConversationMessage]:
        """All messages of a session in chronological order."""
        async with self._transaction("list messages") as session:
            rows = (await session.scalars(
                select(ConversationMessageModel)
                .where(ConversationMessageModel.session_id == session_id)
                .order_by(ConversationMessageModel.timestamp.asc())
            )).all()
            return [to_conversation_message(row) for row in rows]

    async def list_recent_messages(self, session_id: UUID, limit: int = 10) -> List[ConversationMessage]:
        """The last ``limit`` messages of a session, oldest first."""
        if limit <= 0:
            return []

        async with self._transaction("list recent messages") as session:
            rows = (await session.scalars(
                select(ConversationMessageModel)
                .where(ConversationMessageModel.session_id == session_id)
                .order_by(ConversationMessageModel.timestamp.desc())
                .limit(limit)
            )).all()
            return [to_conversation_message(row) for row in reversed(rows)]

    # ========================================================================
    # OAUTH TOKENS
    # ========================================================================

    async def upsert_oauth_token(
        self,
        provider: Provider,
        workspace_id: UUID,
        token: OAuthToken,
    ) -> StoredOAuthToken:
        """
        Store credentials for a (workspace, provider) pair, replacing any
        previous credentials.
        """
        provider = Provider(provider)
        now = utcnow()
        stmt = self._insert(OAuthTokenModel).values([{
            "id": uuid4(),
            "workspace_id": workspace_id,
            "provider": provider.value,
            "access_token_encrypted": self._cipher.encrypt(token.access_token),
            "refresh_token_encrypted": self._cipher.encrypt_optional(token.refresh_token),
            "expires_at": token.expires_at,
            "scopes": list(token.scopes),
            "token_metadata": {"bot_user_id": token.bot_user_id, "team_id": token.team_id},
            "created_at": now,
            "updated_at": now,
        }])
        stmt = stmt.on_conflict_do_update(
            index_elements=["workspace_id", "provider"],
            set_={
                "access_token_encrypted": stmt.excluded.access_token_encrypted,
                "refresh_token_encrypted": stmt.excluded.refresh_token_encrypted,
                "expires_at": stmt.excluded.expires_at,
                "scopes": stmt.excluded.scopes,
                "token_metadata": stmt.excluded.token_metadata,
                "updated_at": now,
            },
        ).returning(OAuthTokenModel)

        async with self._transaction("upsert oauth token") as session:
            row = (await session.scalars(stmt, execution_options=_POPULATE)).one()
            stored = to_stored_oauth_token(row, token.access_token, token.refresh_token)

        logger.info("OAuth token stored", provider=provider.value, workspace_id=str(workspace_id))
        return stored

    async def get_oauth_token(self, provider: Provider, workspace_id: UUID) -> Optional[StoredOAuthToken]:
        async with self._transaction("get oauth token") as session:
            row = (await session.scalars(
                select(OAuthTokenModel).where(
                    OAuthTokenModel.provider == Provider(provider).value,
                    OAuthTokenModel.workspace_id == workspace_id,
                )
            )).one_or_none()
            if row is None:
                return None

            return to_stored_oauth_token(
                row,
                self._cipher.decrypt(row.access_token_encrypted),
                self._cipher.decrypt_optional(row.refresh_token_encrypted),
            )
