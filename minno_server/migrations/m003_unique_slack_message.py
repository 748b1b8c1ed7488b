"""Store each Slack message at most once per session

Removes duplicate rows left by concurrent deliveries, keeping the earliest,
then adds a partial unique index on (session_id, slack_message_ts).
"""

from sqlalchemy import text

NAME = "003_unique_slack_message"

STATEMENTS = [
    """
    DELETE FROM conversation_messages
    WHERE slack_message_ts IS NOT NULL
    AND EXISTS (
        SELECT 1 FROM conversation_messages AS earlier
        WHERE earlier.session_id = conversation_messages.session_id
        AND earlier.slack_message_ts = conversation_messages.slack_message_ts
        AND (
            earlier.timestamp < conversation_messages.timestamp
            OR (earlier.timestamp = conversation_messages.timestamp AND earlier.id < conversation_messages.id)
        )
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_conversation_messages_session_slack_ts
    ON conversation_messages (session_id, slack_message_ts)
    WHERE slack_message_ts IS NOT NULL
    """,
]


async def upgrade(conn):
    for statement in STATEMENTS:
        await conn.execute(text(statement))
