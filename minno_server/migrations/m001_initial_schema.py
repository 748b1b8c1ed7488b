"""Initial schema

Creates the four core tables:
1. workspaces, one per Slack team
2. oauth_tokens, unique per (workspace_id, provider)
3. minno_sessions, unique per (slack_channel_id, slack_thread_ts)
4. conversation_messages

workspace_id and session_id foreign keys cascade on delete.
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

NAME = "001_initial_schema"

JSONB = sa.JSON(none_as_null=True).with_variant(postgresql.JSONB(none_as_null=True), "postgresql")

metadata = sa.MetaData()

workspaces = sa.Table(
    "workspaces",
    metadata,
    sa.Column("id", sa.Uuid(), primary_key=True),
    sa.Column("slack_team_id", sa.String(255), nullable=False),
    sa.Column("slack_team_name", sa.String(255), nullable=False),
    sa.Column("notion_workspace_id", sa.String(255), nullable=True),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.Column("updated_at", sa.DateTime(), nullable=False),
    sa.UniqueConstraint("slack_team_id", name="uq_workspaces_slack_team_id"),
)

oauth_tokens = sa.Table(
    "oauth_tokens",
    metadata,
    sa.Column("id", sa.Uuid(), primary_key=True),
    sa.Column("workspace_id", sa.Uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
    sa.Column("provider", sa.String(50), nullable=False),
    sa.Column("access_token_encrypted", sa.Text(), nullable=False),
    sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
    sa.Column("expires_at", sa.DateTime(), nullable=True),
    sa.Column("scopes", JSONB, nullable=True),
    sa.Column("metadata", JSONB, nullable=True),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.Column("updated_at", sa.DateTime(), nullable=False),
    sa.UniqueConstraint("workspace_id", "provider", name="unique_workspace_provider"),
)

minno_sessions = sa.Table(
    "minno_sessions",
    metadata,
    sa.Column("id", sa.Uuid(), primary_key=True),
    sa.Column("workspace_id", sa.Uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
    sa.Column("slack_channel_id", sa.String(255), nullable=False),
    sa.Column("slack_thread_ts", sa.String(255), nullable=False),
    sa.Column("notion_project_id", sa.String(255), nullable=True),
    sa.Column("notion_task_id", sa.String(255), nullable=True),
    sa.Column("context", JSONB, nullable=True),
    sa.Column("status", sa.String(50), nullable=False, server_default="active"),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.Column("updated_at", sa.DateTime(), nullable=False),
    sa.UniqueConstraint("slack_channel_id", "slack_thread_ts", name="unique_slack_thread"),
)

conversation_messages = sa.Table(
    "conversation_messages",
    metadata,
    sa.Column("id", sa.Uuid(), primary_key=True),
    sa.Column("session_id", sa.Uuid(), sa.ForeignKey("minno_sessions.id", ondelete="CASCADE"), nullable=False),
    sa.Column("role", sa.String(50), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    sa.Column("metadata", JSONB, nullable=True),
    sa.Column("timestamp", sa.DateTime(), nullable=False),
    sa.Column("slack_message_ts", sa.String(255), nullable=True),
)


async def upgrade(conn):
    await conn.run_sync(metadata.create_all, checkfirst=True)
