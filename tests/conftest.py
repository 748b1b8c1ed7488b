"""
Shared test fixtures and configuration for entire test suite.

Provides: test settings, an in-memory SQLite database with migrations
applied, a session store, a full application context with a mocked Slack
Web API client, and an HTTP client driving the app in-process.
"""

import time
from unittest.mock import AsyncMock

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient

from minno_server.config import Settings
from minno_server.context import build_context
from minno_server.database import create_engine, create_session_maker
from minno_server.main import create_app
from minno_server.migrations import apply_migrations
from minno_server.modules.sessions.crypto import TokenCipher
from minno_server.modules.sessions.store import SessionStore
from minno_server.modules.slack_gateway.verification import compute_slack_signature
from minno_server.utils.slack_client import SlackClient

SIGNING_SECRET = "test-signing-secret"
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the host environment and any .env file."""
    return Settings(
        _env_file=None,
        environment="test",
        database_url=TEST_DATABASE_URL,
        base_url="https://minno.example.com",
        slack_signing_secret=SIGNING_SECRET,
        slack_client_id="1111.2222",
        slack_client_secret="slack-client-secret",
        notion_client_id="notion-client-id",
        notion_client_secret="notion-client-secret",
        token_encryption_key=Fernet.generate_key().decode(),
        dispatch_workers=1,
    )


@pytest.fixture
async def engine(settings):
    """
    Create in-memory SQLite async database for testing.

    Migrations are applied the same way the server applies them on startup.
    """
    engine = create_engine(settings)
    await apply_migrations(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
def store(settings, session_maker) -> SessionStore:
    return SessionStore(session_maker, TokenCipher.from_settings(settings), "sqlite")


@pytest.fixture
def slack_web_client() -> AsyncMock:
    """Mocked AsyncWebClient whose calls all succeed."""
    client = AsyncMock()
    for method in ("chat_postMessage", "reactions_add", "conversations_replies", "oauth_v2_access"):
        getattr(client, method).return_value = {"ok": True}
    return client


@pytest.fixture
async def context(settings, engine, slack_web_client):
    """Full application context with running dispatcher workers."""
    context = build_context(
        settings,
        engine=engine,
        slack_client_factory=lambda token: SlackClient(web_client=slack_web_client),
    )
    context.dispatcher.start()
    yield context
    await context.dispatcher.stop()


@pytest.fixture
async def client(settings, context):
    """HTTP client for the app; the lifespan is skipped and the context injected."""
    app = create_app(settings)
    app.state.context = context

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
def slack_headers():
    """Build signed Slack request headers for a body."""

    def _headers(body: bytes, timestamp=None, secret: str = SIGNING_SECRET, content_type: str = "application/json"):
        ts = str(int(time.time())) if timestamp is None else str(timestamp)
        return {
            "Content-Type": content_type,
            "X-Slack-Request-Timestamp": ts,
            "X-Slack-Signature": compute_slack_signature(secret, ts, body),
        }

    return _headers
