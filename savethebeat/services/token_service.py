"""
Token Service for the Spotify credential lifecycle.
Guarantees callers a non-expired access token, refreshing through the Spotify
accounts service only when the stored one is within the expiry buffer.
"""

from datetime import UTC, datetime

from savethebeat.errors import Unauthenticated
from savethebeat.infrastructure.observability.logging import get_logger
from savethebeat.models.domain.credential_domain import buffered_expiry
from savethebeat.repositories.credential_repository import CredentialRepository
from savethebeat.services.spotify.oauth_service import SpotifyOAuthService

logger = get_logger(__name__)


class TokenService:
    """
    Hands out valid Spotify access tokens per Slack user.

    A refresh failure leaves the stored credential untouched; the
    SpotifyApiError from the OAuth service propagates to the caller.
    """

    def __init__(self, credential_repo: CredentialRepository, oauth_service: SpotifyOAuthService):
        self.credential_repo = credential_repo
        self.oauth_service = oauth_service

    async def ensure_valid_credential(
        self, workspace_id: str, user_id: str, now: datetime | None = None
    ) -> str:
        """
        Return an access token that is not about to expire.

        Args:
            workspace_id: Slack workspace (team) id
            user_id: Slack user id
            now: Reference instant, defaults to the current UTC time

        Returns:
            str: Access token usable for at least the buffer window

        Raises:
            Unauthenticated: If the user has never linked Spotify
            SpotifyApiError: If a needed refresh fails
        """
        credential = await self.credential_repo.get(workspace_id, user_id)
        if credential is None:
            logger.warning(
                "No Spotify credential for user",
                slack_workspace_id=workspace_id,
                slack_user_id=user_id,
            )
            raise Unauthenticated(workspace_id, user_id)

        now = now or datetime.now(UTC)
        if not credential.needs_refresh(now):
            logger.debug(
                "Access token still valid",
                credential_id=credential.id,
                expires_at=credential.expires_at.isoformat(),
            )
            return credential.access_token

        logger.info(
            "Access token expired or expiring soon, refreshing",
            credential_id=credential.id,
            expires_at=credential.expires_at.isoformat(),
        )

        token_response = await self.oauth_service.refresh_access_token(credential.refresh_token)

        expires_at = buffered_expiry(token_response.expires_in, now)
        await self.credential_repo.update_tokens(
            credential.id,
            token_response.access_token,
            token_response.refresh_token or credential.refresh_token,
            expires_at,
        )

        logger.info(
            "Access token refreshed",
            credential_id=credential.id,
            refresh_token_rotated=token_response.refresh_token != credential.refresh_token,
            expires_at=expires_at.isoformat(),
        )
        return token_response.access_token
