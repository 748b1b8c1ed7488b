"""
Migration bookkeeping model.

One row per applied migration, written in the same transaction as the
migration itself.
"""

from sqlalchemy import Column, DateTime, Integer, String

from minno_server.database import Base, utcnow


class MigrationModel(Base):
    """Record of an applied schema migration."""

    __tablename__ = "migrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    applied_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<MigrationModel(name={self.name}, applied_at={self.applied_at})>"
