"""
Spotify Web API client.
"""

from typing import Any

import httpx

from savethebeat.config import settings
from savethebeat.errors import SpotifyApiError
from savethebeat.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"


class SpotifyClient:
    """Bearer-token client for the endpoints the bot uses."""

    def __init__(
        self,
        timeout: float | None = None,
        base_url: str = SPOTIFY_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def _request(
        self, method: str, path: str, access_token: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {access_token}"},
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(
                "Spotify API request failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SpotifyApiError(f"Spotify request failed: {e}") from e

        if not response.is_success:
            self._raise_api_error(response, path)

        return response

    def _raise_api_error(self, response: httpx.Response, path: str) -> None:
        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text[:200]}

        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            message = error.get("message") or "unknown error"
        else:
            message = str(error or "unknown error")

        logger.error(
            "Spotify API returned error",
            path=path,
            status_code=response.status_code,
            message=message,
        )
        raise SpotifyApiError(
            f"Spotify API error (HTTP {response.status_code}): {message}",
            error_code=str(response.status_code),
            response_data=payload if isinstance(payload, dict) else {"raw": payload},
        )

    async def save_track(self, access_token: str, track_id: str) -> None:
        """
        Add a track to the user's library (Liked Songs).

        Saving a track that is already in the library is a no-op on
        Spotify's side and also succeeds here.

        Raises:
            SpotifyApiError: On any non-2xx response or transport failure
        """
        await self._request("PUT", "/me/tracks", access_token, params={"ids": track_id})
        logger.info("Track saved to Spotify library", spotify_track_id=track_id)

    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        """Fetch the profile of the token's owner."""
        response = await self._request("GET", "/me", access_token)
        try:
            return response.json()
        except ValueError as e:
            raise SpotifyApiError("Spotify profile response was not JSON") from e
