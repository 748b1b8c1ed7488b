"""
OAuth install and callback endpoints.

``/oauth/{provider}/install`` redirects to the provider's consent page;
``/oauth/{provider}/callback`` completes the code exchange. Responses never
contain access or refresh tokens.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse

from minno_server.context import AppContext, get_context
from minno_server.errors import ProviderError, StorageError
from minno_server.utils.logging import get_logger, log_oauth_event

from .service import parse_provider

logger = get_logger("auth.routes")

oauth_router = APIRouter()


@oauth_router.get("/{provider}/install")
async def oauth_install(
    provider: str,
    state: Optional[str] = None,
    context: AppContext = Depends(get_context),
):
    """
    Start an OAuth installation.

    Query params:
        state: Opaque value echoed back to the callback. For Notion this is
            the Slack team ID of the workspace being linked.
    """
    oauth_provider = parse_provider(provider)
    url = context.oauth.authorization_url(oauth_provider, state)

    log_oauth_event(oauth_provider.value, "install", True)
    return RedirectResponse(url=url, status_code=302)


@oauth_router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    context: AppContext = Depends(get_context),
):
    """
    Handle the provider redirect after the user approves (or denies) the app.
    """
    oauth_provider = parse_provider(provider)

    if error:
        log_oauth_event(oauth_provider.value, "callback", False, error=error)
        return JSONResponse(
            status_code=400,
            content={"error": "oauth_denied", "message": f"OAuth authorization failed: {error}"},
        )

    if not code:
        log_oauth_event(oauth_provider.value, "callback", False, error="missing_code")
        return JSONResponse(
            status_code=400,
            content={"error": "missing_code", "message": "Missing authorization code"},
        )

    try:
        installation = await context.oauth.handle_callback(oauth_provider, code, state)
    except (ProviderError, StorageError) as e:
        logger.error("OAuth exchange failed", provider=oauth_provider.value, error=e.message)
        log_oauth_event(oauth_provider.value, "callback", False, error=e.error)
        return JSONResponse(
            status_code=500,
            content={"error": "oauth_failed", "message": "Failed to complete OAuth flow"},
        )

    return {
        "success": True,
        "message": f"{oauth_provider.value.capitalize()} integration installed successfully",
        **installation.response_fields(),
    }
