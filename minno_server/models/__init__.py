"""
Database models for the Minno server.

This package contains SQLAlchemy models for the application.
"""

from .workspace import WorkspaceModel
from .oauth_token import OAuthTokenModel, Provider
from .minno_session import MinnoSessionModel, SessionStatus
from .conversation_message import ConversationMessageModel, MessageRole
from .migration import MigrationModel

__all__ = [
    "WorkspaceModel",
    "OAuthTokenModel",
    "Provider",
    "MinnoSessionModel",
    "SessionStatus",
    "ConversationMessageModel",
    "MessageRole",
    "MigrationModel",
]
