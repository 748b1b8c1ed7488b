"""
Sessions Module

Persistence for workspaces, thread sessions, conversation messages and
encrypted OAuth tokens.
"""

from .crypto import TokenCipher
from .store import SessionStore

__all__ = ["TokenCipher", "SessionStore"]
