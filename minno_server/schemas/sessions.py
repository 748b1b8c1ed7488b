"""
Domain records returned by the session store.

Rows never leave the store as ORM objects. Each table has a mapping function
that checks every column and converts it into an immutable record, failing
with StorageError when a row has an unexpected null or shape.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from minno_server.errors import StorageError
from minno_server.models import (
    ConversationMessageModel,
    MessageRole,
    MinnoSessionModel,
    OAuthTokenModel,
    Provider,
    SessionStatus,
    WorkspaceModel,
)


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class Workspace(_Record):
    id: UUID
    slack_team_id: str
    slack_team_name: str
    notion_workspace_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MinnoSession(_Record):
    id: UUID
    workspace_id: UUID
    slack_channel_id: str
    slack_thread_ts: str
    notion_project_id: Optional[str] = None
    notion_task_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    status: SessionStatus
    created_at: datetime
    updated_at: datetime


class ConversationMessage(_Record):
    id: UUID
    session_id: UUID
    role: MessageRole
    content: str
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime
    slack_message_ts: Optional[str] = None


class OAuthToken(_Record):
    """
    Decrypted OAuth credentials.

    Used both as the input to the store's upsert and as its output.
    """

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = []
    bot_user_id: Optional[str] = None
    team_id: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at

    def public_fields(self) -> Dict[str, Any]:
        """Fields safe to return to a browser; never the secrets."""
        return {
            "team_id": self.team_id,
            "bot_user_id": self.bot_user_id,
            "scopes": list(self.scopes),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class StoredOAuthToken(_Record):
    workspace_id: UUID
    provider: Provider
    token: OAuthToken
    created_at: datetime
    updated_at: datetime


def _validate(record_type, table: str, values: Dict[str, Any]):
    try:
        return record_type.model_validate(values)
    except PydanticValidationError as e:
        raise StorageError(f"map {table} row", str(e))


def to_workspace(row: WorkspaceModel) -> Workspace:
    return _validate(Workspace, "workspaces", {
        "id": row.id,
        "slack_team_id": row.slack_team_id,
        "slack_team_name": row.slack_team_name,
        "notion_workspace_id": row.notion_workspace_id,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })


def to_minno_session(row: MinnoSessionModel) -> MinnoSession:
    return _validate(MinnoSession, "minno_sessions", {
        "id": row.id,
        "workspace_id": row.workspace_id,
        "slack_channel_id": row.slack_channel_id,
        "slack_thread_ts": row.slack_thread_ts,
        "notion_project_id": row.notion_project_id,
        "notion_task_id": row.notion_task_id,
        "context": row.context,
        "status": row.status,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })


def to_conversation_message(row: ConversationMessageModel) -> ConversationMessage:
    return _validate(ConversationMessage, "conversation_messages", {
        "id": row.id,
        "session_id": row.session_id,
        "role": row.role,
        "content": row.content,
        "metadata": row.message_metadata,
        "timestamp": row.timestamp,
        "slack_message_ts": row.slack_message_ts,
    })


def to_stored_oauth_token(
    row: OAuthTokenModel,
    access_token: str,
    refresh_token: Optional[str],
) -> StoredOAuthToken:
    """Map a token row whose secrets the caller has already decrypted."""
    metadata = row.token_metadata or {}
    if not isinstance(metadata, dict):
        raise StorageError("map oauth_tokens row", "metadata is not an object")

    token = _validate(OAuthToken, "oauth_tokens", {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_at": row.expires_at,
        "scopes": row.scopes or [],
        "bot_user_id": metadata.get("bot_user_id"),
        "team_id": metadata.get("team_id"),
    })
    return _validate(StoredOAuthToken, "oauth_tokens", {
        "workspace_id": row.workspace_id,
        "provider": row.provider,
        "token": token,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })
