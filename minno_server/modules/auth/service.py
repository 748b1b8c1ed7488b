"""
OAuth installation flows for Slack and Notion.

Slack installs create (or refresh) the workspace keyed by team ID and store
the bot token. Notion installs are started from an existing Slack workspace,
whose team ID travels through the flow as ``state``, and link the Notion
workspace to it.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx
from slack_sdk.errors import SlackApiError
from slack_sdk.oauth import AuthorizeUrlGenerator
from slack_sdk.web.async_client import AsyncWebClient

from minno_server.config import Settings
from minno_server.database import utcnow
from minno_server.errors import NotFoundError, ProviderError, ValidationError
from minno_server.models import Provider
from minno_server.modules.sessions.store import SessionStore
from minno_server.schemas.sessions import OAuthToken, Workspace
from minno_server.utils.logging import get_logger, log_oauth_event

logger = get_logger("auth.oauth")

NOTION_AUTHORIZE_URL = "https://api.notion.com/v1/oauth/authorize"
NOTION_TOKEN_URL = "https://api.notion.com/v1/oauth/token"


def parse_provider(value: str) -> Provider:
    """
    Resolve a provider path segment.

    Raises:
        ValidationError: If the provider is not supported
    """
    try:
        return Provider(value.lower())
    except ValueError:
        raise ValidationError(f"Invalid provider: {value}")


@dataclass
class OAuthInstallation:
    """Result of a completed OAuth callback."""

    provider: Provider
    workspace: Workspace
    token: OAuthToken

    def response_fields(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "workspace_id": str(self.workspace.id),
            **self.token.public_fields(),
        }


class OAuthService:
    """Builds authorize URLs and completes code exchanges."""

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        slack_web_client: Optional[AsyncWebClient] = None,
        http_client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
    ):
        self._settings = settings
        self._store = store
        self._slack = slack_web_client or AsyncWebClient()
        self._http_client_factory = http_client_factory

    def redirect_uri(self, provider: Provider) -> str:
        return f"{self._settings.base_url.rstrip('/')}/oauth/{provider.value}/callback"

    def authorization_url(self, provider: Provider, state: Optional[str] = None) -> str:
        """Provider consent page the install endpoint redirects to."""
        if provider is Provider.SLACK:
            generator = AuthorizeUrlGenerator(
                client_id=self._settings.slack_client_id,
                scopes=self._settings.slack_scopes,
                user_scopes=[],
                redirect_uri=self.redirect_uri(provider),
            )
            return generator.generate(state or "")

        params = {
            "client_id": self._settings.notion_client_id,
            "response_type": "code",
            "owner": "user",
            "redirect_uri": self.redirect_uri(provider),
        }
        if state:
            params["state"] = state
        return f"{NOTION_AUTHORIZE_URL}?{urlencode(params)}"

    async def handle_callback(
        self, provider: Provider, code: str, state: Optional[str] = None
    ) -> OAuthInstallation:
        """
        Exchange an authorization code and persist the resulting credentials.

        Raises:
            ProviderError: If the provider rejects the exchange
            ValidationError: If a Notion callback carries no state
            NotFoundError: If the Slack workspace named by state is unknown
        """
        if provider is Provider.SLACK:
            return await self._complete_slack(code)
        return await self._complete_notion(code, state)

    async def _complete_slack(self, code: str) -> OAuthInstallation:
        try:
            response = await self._slack.oauth_v2_access(
                client_id=self._settings.slack_client_id,
                client_secret=self._settings.slack_client_secret,
                code=code,
                redirect_uri=self.redirect_uri(Provider.SLACK),
            )
        except SlackApiError as e:
            error_code = e.response.get("error", "unknown_error") if e.response is not None else "unknown_error"
            raise ProviderError(error_code, f"Slack token exchange failed: {error_code}")

        data = getattr(response, "data", response)
        if not data.get("ok", False):
            error_code = data.get("error", "unknown_error")
            raise ProviderError(error_code, f"Slack token exchange failed: {error_code}")

        team = data.get("team") or {}
        if not team.get("id") or not data.get("access_token"):
            raise ProviderError("invalid_response", "Slack token exchange returned no team or token")

        expires_in = data.get("expires_in")
        token = OAuthToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=utcnow() + timedelta(seconds=expires_in) if expires_in else None,
            scopes=[scope for scope in (data.get("scope") or "").split(",") if scope],
            bot_user_id=data.get("bot_user_id"),
            team_id=team["id"],
        )

        workspace = await self._store.upsert_workspace(team["id"], team.get("name") or team["id"])
        await self._store.upsert_oauth_token(Provider.SLACK, workspace.id, token)

        log_oauth_event("slack", "callback", True, team_id=team["id"], workspace_id=str(workspace.id))
        return OAuthInstallation(Provider.SLACK, workspace, token)

    async def _complete_notion(self, code: str, state: Optional[str]) -> OAuthInstallation:
        if not state:
            raise ValidationError("Notion installation requires the Slack team ID as state")

        workspace = await self._store.get_workspace_by_team_id(state)
        if workspace is None:
            raise NotFoundError(f"No workspace for Slack team {state}")

        try:
            async with self._http_client_factory() as client:
                response = await client.post(
                    NOTION_TOKEN_URL,
                    auth=(self._settings.notion_client_id, self._settings.notion_client_secret),
                    json={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self.redirect_uri(Provider.NOTION),
                    },
                    timeout=30.0,
                )
            token_data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError("request_failed", f"Notion token exchange failed: {e}")

        if not isinstance(token_data, dict):
            raise ProviderError("invalid_response", "Notion token exchange returned a non-object body")

        if response.status_code != 200 or "error" in token_data:
            error_code = token_data.get("error", f"http_{response.status_code}")
            logger.error("Notion OAuth error", error=error_code, status_code=response.status_code)
            raise ProviderError(error_code, f"Notion token exchange failed: {error_code}")

        access_token = token_data.get("access_token")
        if not access_token:
            raise ProviderError("invalid_response", "Notion token exchange returned no token")

        token = OAuthToken(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            bot_user_id=token_data.get("bot_id"),
            team_id=state,
        )

        workspace = await self._store.upsert_workspace(
            workspace.slack_team_id,
            workspace.slack_team_name,
            notion_workspace_id=token_data.get("workspace_id"),
        )
        await self._store.upsert_oauth_token(Provider.NOTION, workspace.id, token)

        log_oauth_event(
            "notion",
            "callback",
            True,
            team_id=state,
            notion_workspace_id=token_data.get("workspace_id"),
        )
        return OAuthInstallation(Provider.NOTION, workspace, token)
