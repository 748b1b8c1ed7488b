"""
Database configuration and connection management.

This module sets up SQLAlchemy with async PostgreSQL support and builds the
engine and session factory that the application context owns. Nothing here
is global: callers construct an engine from settings and pass it along.
"""

import ssl
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, event, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from minno_server.config import Settings
from minno_server.errors import ConfigError
from minno_server.utils.logging import get_logger

logger = get_logger("database")

# Create declarative base for models
Base = declarative_base()

# JSON column type: JSONB on PostgreSQL, JSON elsewhere. Python None is stored
# as SQL NULL so COALESCE in upserts treats "absent" correctly.
JSONDocument = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _connect_args(url: str, settings: Settings) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}

    if settings.is_production and "asyncpg" in url:
        context = ssl.create_default_context()
        if not settings.database_ssl_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return {"ssl": context}

    return {}


def create_engine(settings: Settings, url: Optional[str] = None) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    Args:
        settings: Application settings
        url: Override for the connection URL (tests)

    Returns:
        AsyncEngine: Engine with a connection pool
    """
    database_url = url or settings.database_url
    options = {
        # Disabled to reduce log noise; use LOG_LEVEL=DEBUG for SQLAlchemy logs if needed
        "echo": False,
        "connect_args": _connect_args(database_url, settings),
    }

    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection so every session sees the same in-memory database
        options["poolclass"] = StaticPool
    elif not database_url.startswith("sqlite"):
        options["pool_pre_ping"] = True

    engine = create_async_engine(database_url, **options)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Enable foreign keys so ON DELETE CASCADE is honoured."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def drop_tables(engine: AsyncEngine, settings: Settings) -> None:
    """
    Drop all database tables (for testing).

    Raises:
        ConfigError: When called against a production environment
    """
    if settings.is_production:
        raise ConfigError("Refusing to drop tables in production")

    # Import models to ensure they're registered
    import minno_server.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    logger.info("Database tables dropped successfully")


async def check_database_health(session_maker: async_sessionmaker[AsyncSession]) -> bool:
    """
    Check if database connection is healthy.

    Returns:
        bool: True if database is accessible, False otherwise
    """
    try:
        async with session_maker() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
