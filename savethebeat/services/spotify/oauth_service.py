"""
Spotify OAuth Service.
Handles authorization URL generation, code exchange and token refresh against
the Spotify accounts service. Every call is a single attempt bounded by the
configured HTTP timeout.
"""

from urllib.parse import urlencode

import httpx

from savethebeat.config import settings
from savethebeat.errors import SpotifyApiError
from savethebeat.infrastructure.observability.logging import get_logger, preview

logger = get_logger(__name__)

# OAuth configuration
SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

SPOTIFY_SCOPES = [
    "user-library-modify",  # Save tracks to Liked Songs
]


class TokenResponse:
    """Structured representation of OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

    def is_valid(self) -> bool:
        """Access token and a usable expires_in are both required."""
        if not self.access_token:
            return False
        try:
            return int(self.expires_in) > 0
        except (TypeError, ValueError):
            return False


class SpotifyOAuthService:
    """Spotify OAuth 2.0 authorization-code flow with client secret basic auth."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id or settings.SPOTIFY_CLIENT_ID
        self.client_secret = client_secret or settings.SPOTIFY_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.spotify_redirect_uri()
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _validate_config(self) -> None:
        if not self.client_id:
            raise SpotifyApiError("SPOTIFY_CLIENT_ID not configured", error_code="config_error")
        if not self.client_secret:
            raise SpotifyApiError(
                "SPOTIFY_CLIENT_SECRET not configured", error_code="config_error"
            )

    def authorize_url(self, state: str) -> str:
        """
        Build the Spotify authorization URL for a pending connect attempt.

        Args:
            state: State token issued by the OAuth state store

        Returns:
            str: Complete authorization URL
        """
        self._validate_config()

        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(SPOTIFY_SCOPES),
            "state": state,
        }
        url = f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}"

        logger.info(
            "Spotify authorization URL generated",
            state_preview=preview(state),
            redirect_uri=self.redirect_uri,
        )
        return url

    async def _post_token(self, data: dict, operation: str) -> TokenResponse:
        self._validate_config()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    SPOTIFY_TOKEN_URL,
                    data=data,
                    auth=(self.client_id, self.client_secret),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.RequestError as e:
            logger.error(
                f"Network error during Spotify {operation}",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SpotifyApiError(f"Network error during {operation}: {e}") from e

        return self._handle_token_response(response, operation)

    async def exchange_code(self, authorization_code: str) -> TokenResponse:
        """
        Exchange an authorization code for access and refresh tokens.

        Raises:
            SpotifyApiError: If the exchange fails or the response is incomplete
        """
        logger.info("Exchanging Spotify authorization code", code_preview=preview(authorization_code))

        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": authorization_code,
                "redirect_uri": self.redirect_uri,
            },
            "code_exchange",
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh an access token.

        Spotify may rotate the refresh token; when it does not, the existing
        one is carried over on the returned response.

        Raises:
            SpotifyApiError: If the refresh fails or the response is incomplete
        """
        logger.info("Refreshing Spotify access token", refresh_token_preview=preview(refresh_token))

        token_response = await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "token_refresh",
        )

        if not token_response.refresh_token:
            token_response.refresh_token = refresh_token
            logger.debug("Preserved existing refresh token")

        return token_response

    def _handle_token_response(self, response: httpx.Response, operation: str) -> TokenResponse:
        """
        Validate a token endpoint response.

        Raises:
            SpotifyApiError: On HTTP errors, non-JSON bodies or missing fields
        """
        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                logger.error(
                    f"Spotify {operation} failed with non-JSON response",
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise SpotifyApiError(
                    f"Spotify accounts service error (HTTP {response.status_code})"
                ) from None

            error_code = error_data.get("error", "unknown_error")
            logger.error(
                f"Spotify {operation} failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_data.get("error_description"),
            )
            raise SpotifyApiError(
                self._map_spotify_error(error_code),
                error_code=error_code,
                response_data=error_data,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                f"Failed to parse Spotify {operation} response",
                response_text=response.text[:200],
            )
            raise SpotifyApiError(f"Failed to parse Spotify response: {e}") from e

        if not isinstance(data, dict):
            raise SpotifyApiError("Unexpected token response from Spotify")

        token_response = TokenResponse(data)
        if not token_response.is_valid():
            logger.error(
                f"Invalid token response from Spotify {operation}",
                has_access_token=bool(token_response.access_token),
                expires_in=token_response.expires_in,
            )
            raise SpotifyApiError("Token response missing access_token or expires_in")

        logger.info(
            f"Spotify {operation} successful",
            expires_in=token_response.expires_in,
            has_refresh_token=bool(token_response.refresh_token),
        )
        return token_response

    def _map_spotify_error(self, error_code: str) -> str:
        error_messages = {
            "invalid_grant": "Spotify authorization expired or was revoked. Please connect again.",
            "invalid_client": "Spotify client configuration error.",
            "invalid_request": "Invalid Spotify authorization request.",
            "unsupported_grant_type": "Spotify authorization method not supported.",
        }
        return error_messages.get(error_code, f"Spotify authorization failed ({error_code})")
