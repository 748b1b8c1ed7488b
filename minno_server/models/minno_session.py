"""
Minno session model for tracking Slack thread conversations.

This model stores one conversation per Slack thread, enabling multi-turn
conversations with state persistence across server restarts.
"""

import enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from minno_server.database import Base, JSONDocument, utcnow


class SessionStatus(str, enum.Enum):
    """Enumeration of possible session statuses."""
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ARCHIVED = "archived"


class MinnoSessionModel(Base):
    """
    Model for storing conversation state per Slack thread.

    Each session is keyed by (channel, thread) and belongs to exactly one
    workspace. The context column holds a free-form JSON document.
    """

    __tablename__ = "minno_sessions"

    # Primary key
    id = Column(Uuid, primary_key=True, default=uuid4)

    # Owning workspace
    workspace_id = Column(
        Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )

    # Slack identifiers (composite unique constraint)
    slack_channel_id = Column(String(255), nullable=False)
    slack_thread_ts = Column(String(255), nullable=False)

    # Linked Notion objects
    notion_project_id = Column(String(255), nullable=True)
    notion_task_id = Column(String(255), nullable=True)

    context = Column(JSONDocument, nullable=True)
    status = Column(String(50), nullable=False, default=SessionStatus.ACTIVE.value)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    workspace = relationship("WorkspaceModel", back_populates="sessions")
    messages = relationship(
        "ConversationMessageModel", back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )

    # Composite unique constraint
    __table_args__ = (
        UniqueConstraint("slack_channel_id", "slack_thread_ts", name="unique_slack_thread"),
    )

    def __repr__(self):
        return f"<MinnoSessionModel(id={self.id}, channel={self.slack_channel_id}, thread={self.slack_thread_ts})>"
