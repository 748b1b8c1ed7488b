"""
Workspace model, one row per Slack team.

A workspace is the tenant root: OAuth tokens and Minno sessions hang off it
and are removed with it through ON DELETE CASCADE.
"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship

from minno_server.database import Base, utcnow


class WorkspaceModel(Base):
    """
    Model for storing installed Slack workspaces.

    The Slack team ID is globally unique; repeated installs update the name
    and Notion link of the existing row instead of adding a new one.
    """

    __tablename__ = "workspaces"

    # Primary key
    id = Column(Uuid, primary_key=True, default=uuid4)

    # Slack team identity
    slack_team_id = Column(String(255), nullable=False, unique=True)
    slack_team_name = Column(String(255), nullable=False)

    # Linked Notion workspace
    notion_workspace_id = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    oauth_tokens = relationship(
        "OAuthTokenModel", back_populates="workspace", cascade="all, delete-orphan", passive_deletes=True
    )
    sessions = relationship(
        "MinnoSessionModel", back_populates="workspace", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self):
        return f"<WorkspaceModel(id={self.id}, team={self.slack_team_id}, name={self.slack_team_name})>"
