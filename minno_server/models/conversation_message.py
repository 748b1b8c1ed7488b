"""
Conversation message model, one row per turn in a session.

Messages are append-only and read back ordered by timestamp. A Slack message
is stored at most once per session.
"""

import enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from minno_server.database import Base, JSONDocument, utcnow


class MessageRole(str, enum.Enum):
    """Who authored a conversation turn."""
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class ConversationMessageModel(Base):
    """Model for storing a single conversation turn."""

    __tablename__ = "conversation_messages"

    # Primary key
    id = Column(Uuid, primary_key=True, default=uuid4)

    # Owning session
    session_id = Column(
        Uuid, ForeignKey("minno_sessions.id", ondelete="CASCADE"), nullable=False
    )

    role = Column(String(50), nullable=False)
    content = Column(Text, nullable=False)
    message_metadata = Column("metadata", JSONDocument, key="message_metadata", nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    # Source Slack message for correlation
    slack_message_ts = Column(String(255), nullable=True)

    # Relationships
    session = relationship("MinnoSessionModel", back_populates="messages")

    __table_args__ = (
        Index(
            "uq_conversation_messages_session_slack_ts",
            "session_id",
            "slack_message_ts",
            unique=True,
            postgresql_where=slack_message_ts.isnot(None),
            sqlite_where=slack_message_ts.isnot(None),
        ),
    )

    def __repr__(self):
        return f"<ConversationMessageModel(id={self.id}, session={self.session_id}, role={self.role})>"
