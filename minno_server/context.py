"""
Application context.

Everything a request or background job needs (settings, database, store,
dispatcher, processor, OAuth service) is built once at startup and reached
through ``request.app.state.context``. Nothing is held in module globals.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from minno_server.config import Settings
from minno_server.database import create_engine, create_session_maker
from minno_server.migrations import apply_migrations
from minno_server.modules.auth.service import OAuthService
from minno_server.modules.sessions.crypto import TokenCipher
from minno_server.modules.sessions.store import SessionStore
from minno_server.modules.slack_gateway.dispatcher import EventDispatcher
from minno_server.modules.slack_gateway.processor import EventProcessor, SlackClientFactory
from minno_server.modules.slack_gateway.verification import SlackSignatureVerifier
from minno_server.utils.logging import get_logger
from minno_server.utils.slack_client import SlackClient

logger = get_logger("context")

# Seconds between retention sweeps
RETENTION_INTERVAL = 60 * 60


def default_slack_client_factory(token: str) -> SlackClient:
    return SlackClient(token=token)


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    store: SessionStore
    verifier: SlackSignatureVerifier
    dispatcher: EventDispatcher
    processor: EventProcessor
    oauth: OAuthService
    slack_client_factory: SlackClientFactory
    _retention_task: Optional[asyncio.Task] = field(default=None, repr=False)

    async def start(self) -> None:
        """Apply pending migrations, then start background workers."""
        if self.settings.auto_migrate:
            applied = await apply_migrations(self.engine)
            logger.info("Migrations checked", applied=applied)

        self.dispatcher.start()

        if self.settings.session_retention_days > 0:
            self._retention_task = asyncio.create_task(self._retention_loop(), name="session-retention")

    async def close(self) -> None:
        """Stop background work and release database connections."""
        if self._retention_task is not None:
            self._retention_task.cancel()
            await asyncio.gather(self._retention_task, return_exceptions=True)
            self._retention_task = None

        await self.dispatcher.stop(timeout=self.settings.dispatch_shutdown_timeout)
        await self.engine.dispose()

    async def run_retention_sweep(self) -> int:
        """Purge sessions past the retention window once."""
        return await self.store.purge_sessions(timedelta(days=self.settings.session_retention_days))

    async def _retention_loop(self) -> None:
        while True:
            await asyncio.sleep(RETENTION_INTERVAL)
            try:
                await self.run_retention_sweep()
            except Exception as e:
                logger.error("Retention sweep failed", error=str(e), exc_info=True)


def build_context(
    settings: Settings,
    engine: Optional[AsyncEngine] = None,
    slack_client_factory: Callable[[str], SlackClient] = default_slack_client_factory,
    oauth: Optional[OAuthService] = None,
) -> AppContext:
    """
    Construct the application context.

    Args:
        settings: Application settings
        engine: Existing engine to use instead of one built from settings
        slack_client_factory: Builds a Slack client from a bot token
        oauth: OAuth service override
    """
    engine = engine or create_engine(settings)
    session_maker = create_session_maker(engine)
    store = SessionStore(session_maker, TokenCipher.from_settings(settings), engine.dialect.name)

    return AppContext(
        settings=settings,
        engine=engine,
        session_maker=session_maker,
        store=store,
        verifier=SlackSignatureVerifier(settings.slack_signing_secret),
        dispatcher=EventDispatcher(
            max_queue_size=settings.dispatch_queue_size,
            workers=settings.dispatch_workers,
        ),
        processor=EventProcessor(store, slack_client_factory),
        oauth=oauth or OAuthService(settings, store),
        slack_client_factory=slack_client_factory,
    )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the application context."""
    return request.app.state.context
