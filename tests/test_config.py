"""
Tests for settings validation and application context construction.
"""

import asyncio

import pytest
from cryptography.fernet import Fernet

from minno_server.config import Settings
from minno_server.context import build_context
from minno_server.errors import ConfigError
from minno_server.main import create_app
from minno_server.modules.sessions.crypto import TokenCipher


def production_settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "environment": "production",
        "slack_signing_secret": "secret",
        "slack_client_id": "id",
        "slack_client_secret": "client-secret",
        "database_url": "postgresql+asyncpg://minno@db/minno",
        "anthropic_api_key": "sk-ant",
        "token_encryption_key": Fernet.generate_key().decode(),
    }
    values.update(overrides)
    return Settings(**values)


class TestValidateForStartup:
    def test_complete_production_config_passes(self):
        production_settings().validate_for_startup()

    def test_missing_options_are_all_named(self):
        settings = production_settings(slack_signing_secret="", anthropic_api_key="")

        with pytest.raises(ConfigError) as exc_info:
            settings.validate_for_startup()

        assert "SLACK_SIGNING_SECRET" in exc_info.value.message
        assert "ANTHROPIC_API_KEY" in exc_info.value.message

    def test_development_may_leave_integrations_unconfigured(self):
        Settings(_env_file=None, environment="development").validate_for_startup()

    def test_app_refuses_to_start_without_required_config(self):
        with pytest.raises(ConfigError):
            create_app(production_settings(slack_signing_secret=""))


class TestTokenCipher:
    def test_production_requires_a_key(self):
        with pytest.raises(ConfigError):
            TokenCipher.from_settings(production_settings(token_encryption_key=""))

    def test_development_falls_back_to_an_ephemeral_key(self):
        cipher = TokenCipher.from_settings(Settings(_env_file=None, environment="development"))

        assert cipher.decrypt(cipher.encrypt("xoxb")) == "xoxb"

    def test_invalid_key_is_a_config_error(self):
        with pytest.raises(ConfigError):
            TokenCipher("not-a-fernet-key")


class TestContext:
    async def test_retention_sweep_keeps_recent_sessions(self, settings, engine):
        context = build_context(settings, engine=engine)
        workspace = await context.store.upsert_workspace("T123", "Acme")
        session = await context.store.upsert_session(workspace.id, "C1", "100.1")

        assert await context.run_retention_sweep() == 0
        assert await context.store.get_session(session.id) is not None

    async def test_start_and_close(self, settings):
        context = build_context(settings)

        await context.start()
        assert context.dispatcher.running

        await context.close()
        assert not context.dispatcher.running


    async def test_close_finishes_queued_deliveries(self, settings):
        context = build_context(settings)
        await context.start()
        finished = []

        async def delivery():
            await asyncio.sleep(0.01)
            finished.append(True)

        for index in range(3):
            context.dispatcher.submit(f"delivery {index}", delivery)

        await context.close()

        assert finished == [True, True, True]
        assert not context.dispatcher.failures
