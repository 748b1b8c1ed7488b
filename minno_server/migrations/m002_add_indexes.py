"""Add indexes for the common query paths

Workspace/status session listing, per-session message ordering, and partial
indexes on the optional Notion and Slack correlation columns.
"""

from sqlalchemy import text

NAME = "002_add_indexes"

STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_oauth_tokens_provider ON oauth_tokens (provider)",
    "CREATE INDEX IF NOT EXISTS idx_minno_sessions_workspace_status ON minno_sessions (workspace_id, status)",
    """
    CREATE INDEX IF NOT EXISTS idx_minno_sessions_notion_project
    ON minno_sessions (notion_project_id)
    WHERE notion_project_id IS NOT NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_minno_sessions_notion_task
    ON minno_sessions (notion_task_id)
    WHERE notion_task_id IS NOT NULL
    """,
    "CREATE INDEX IF NOT EXISTS idx_minno_sessions_updated_at ON minno_sessions (updated_at DESC)",
    """
    CREATE INDEX IF NOT EXISTS idx_conversation_messages_session_timestamp
    ON conversation_messages (session_id, timestamp)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_conversation_messages_slack_ts
    ON conversation_messages (slack_message_ts)
    WHERE slack_message_ts IS NOT NULL
    """,
]


async def upgrade(conn):
    for statement in STATEMENTS:
        await conn.execute(text(statement))
