"""
OAuth token model for storing per-workspace provider credentials.

This model stores the credentials a workspace granted to Minno for each
provider (Slack, Notion). Secrets are encrypted before they reach this table.
"""

import enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from minno_server.database import Base, JSONDocument, utcnow


class Provider(str, enum.Enum):
    """OAuth providers Minno integrates with."""
    SLACK = "slack"
    NOTION = "notion"


class OAuthTokenModel(Base):
    """
    Model for storing OAuth credentials per (workspace, provider).

    Access and refresh tokens hold Fernet ciphertext, never the raw secret.
    Provider metadata such as the bot user ID and team ID is kept in clear
    JSON since it is not secret.
    """

    __tablename__ = "oauth_tokens"

    # Primary key
    id = Column(Uuid, primary_key=True, default=uuid4)

    # Owning workspace
    workspace_id = Column(
        Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider = Column(String(50), nullable=False)

    # Credentials (encrypted at rest)
    access_token_encrypted = Column(Text, nullable=False)
    refresh_token_encrypted = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    scopes = Column(JSONDocument, nullable=True)

    # Provider metadata ("metadata" is reserved on declarative classes)
    token_metadata = Column("metadata", JSONDocument, key="token_metadata", nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    workspace = relationship("WorkspaceModel", back_populates="oauth_tokens")

    __table_args__ = (
        UniqueConstraint("workspace_id", "provider", name="unique_workspace_provider"),
    )

    def __repr__(self):
        return f"<OAuthTokenModel(id={self.id}, workspace={self.workspace_id}, provider={self.provider})>"
