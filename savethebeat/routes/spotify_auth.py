"""
Spotify account-linking routes.

    GET /spotify/connect   -> 302 to Spotify's consent screen
    GET /spotify/callback  -> store credential, show confirmation page
    GET /spotify/verify    -> prove the stored credential works
"""

import html
from pathlib import Path

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse, RedirectResponse

from savethebeat.dependencies import (
    get_credential_repository,
    get_oauth_state_store,
    get_spotify_client,
    get_spotify_oauth_service,
    get_token_service,
)
from savethebeat.errors import BadRequest, SpotifyApiError
from savethebeat.infrastructure.observability.logging import get_logger, preview
from savethebeat.models.api.spotify_response import SpotifyVerifyResponse
from savethebeat.models.domain.credential_domain import buffered_expiry
from savethebeat.repositories.credential_repository import CredentialRepository
from savethebeat.services.oauth_state_service import OAuthStateStore
from savethebeat.services.spotify.client import SpotifyClient
from savethebeat.services.spotify.oauth_service import SpotifyOAuthService
from savethebeat.services.token_service import TokenService

logger = get_logger(__name__)

router = APIRouter(prefix="/spotify", tags=["spotify-auth"])

_SUCCESS_HTML_PATH = Path(__file__).resolve().parents[1] / "static" / "spotify_connected.html"


def _render_success_page(workspace_id: str, user_id: str) -> str:
    try:
        template = _SUCCESS_HTML_PATH.read_text(encoding="utf-8")
    except OSError:
        template = (
            "<!doctype html><html><head><title>Spotify Connected</title></head>"
            '<body style="font-family:sans-serif;text-align:center;padding:40px;">'
            "<h2>Spotify connected</h2><p>{user_id} in {workspace_id}</p></body></html>"
        )
    return template.format(
        workspace_id=html.escape(workspace_id), user_id=html.escape(user_id)
    )


@router.get("/connect")
async def connect(
    workspace: str = Query(..., min_length=1),
    user: str = Query(..., min_length=1),
    state_store: OAuthStateStore = Depends(get_oauth_state_store),
    oauth_service: SpotifyOAuthService = Depends(get_spotify_oauth_service),
):
    """Start linking a Slack user's Spotify account."""
    state = await state_store.issue(workspace, user)
    url = oauth_service.authorize_url(state)

    logger.info("Redirecting to Spotify authorization", slack_workspace_id=workspace, slack_user_id=user)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/callback", response_class=HTMLResponse)
async def callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    state_store: OAuthStateStore = Depends(get_oauth_state_store),
    oauth_service: SpotifyOAuthService = Depends(get_spotify_oauth_service),
    credentials: CredentialRepository = Depends(get_credential_repository),
):
    """
    Finish linking: consume the state, exchange the code, store the tokens.

    Raises:
        OAuthStateNotFound: 400 when the state is unknown, used or expired
        BadRequest: 400 when the user denied access or the code is missing
        SpotifyApiError: 502 when the code exchange fails
    """
    pending = await state_store.consume(state or "")

    if error:
        logger.warning(
            "Spotify authorization denied",
            slack_workspace_id=pending.workspace_id,
            slack_user_id=pending.user_id,
            error=error,
        )
        raise BadRequest(f"Spotify authorization failed: {error}")

    if not code:
        raise BadRequest("Missing authorization code")

    logger.info(
        "Processing Spotify OAuth callback",
        slack_workspace_id=pending.workspace_id,
        slack_user_id=pending.user_id,
        code_preview=preview(code),
    )

    token_response = await oauth_service.exchange_code(code)
    if not token_response.refresh_token:
        raise SpotifyApiError("Token response missing refresh_token")

    await credentials.upsert(
        pending.workspace_id,
        pending.user_id,
        token_response.access_token,
        token_response.refresh_token,
        buffered_expiry(token_response.expires_in),
    )

    logger.info(
        "Spotify account connected",
        slack_workspace_id=pending.workspace_id,
        slack_user_id=pending.user_id,
    )
    return HTMLResponse(_render_success_page(pending.workspace_id, pending.user_id))


@router.get("/verify", response_model=SpotifyVerifyResponse)
async def verify(
    workspace: str = Query(..., min_length=1),
    user: str = Query(..., min_length=1),
    tokens: TokenService = Depends(get_token_service),
    spotify: SpotifyClient = Depends(get_spotify_client),
):
    """Refresh the user's token if needed and fetch their Spotify profile."""
    access_token = await tokens.ensure_valid_credential(workspace, user)
    profile = await spotify.get_current_user(access_token)

    spotify_user_id = profile.get("id")
    if not spotify_user_id:
        raise SpotifyApiError("Spotify profile missing id", response_data=profile)

    logger.info(
        "Spotify authentication verified",
        slack_workspace_id=workspace,
        slack_user_id=user,
        spotify_user_id=spotify_user_id,
    )
    return SpotifyVerifyResponse(
        success=True,
        spotify_user_id=spotify_user_id,
        display_name=profile.get("display_name"),
    )
