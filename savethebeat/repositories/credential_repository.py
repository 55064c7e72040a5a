"""
Persistence for linked Spotify credentials (user_auth table).

Access and refresh tokens are Fernet-encrypted on the way in and decrypted on
the way out, so nothing above this layer ever sees ciphertext.
"""

from datetime import datetime

from savethebeat.db.helpers import DatabaseError, fetch_one, with_db_retry
from savethebeat.infrastructure.observability.logging import get_logger
from savethebeat.models.domain.credential_domain import SpotifyCredential
from savethebeat.services.infrastructure.encryption_service import decrypt_token, encrypt_token

logger = get_logger(__name__)


class CredentialRepository:
    """Credential store keyed by (Slack workspace, Slack user)."""

    SELECT_COLUMNS = """
        id, slack_workspace_id, slack_user_id, spotify_user_id,
        access_token, refresh_token, expires_at, paused,
        created_at, updated_at
    """

    @classmethod
    def _row_to_credential(cls, row: dict | None) -> SpotifyCredential | None:
        if not row:
            return None

        return SpotifyCredential(
            id=str(row["id"]),
            slack_workspace_id=row["slack_workspace_id"],
            slack_user_id=row["slack_user_id"],
            spotify_user_id=row.get("spotify_user_id"),
            access_token=decrypt_token(row["access_token"]),
            refresh_token=decrypt_token(row["refresh_token"]),
            expires_at=row["expires_at"],
            paused=row.get("paused", False),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @with_db_retry()
    async def get(self, workspace_id: str, user_id: str) -> SpotifyCredential | None:
        """Return the credential for a Slack user, if they have linked Spotify."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM user_auth
            WHERE slack_workspace_id = %s AND slack_user_id = %s
        """
        row = await fetch_one(query, (workspace_id, user_id))
        return self._row_to_credential(row)

    async def upsert(
        self,
        workspace_id: str,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        spotify_user_id: str | None = None,
    ) -> SpotifyCredential:
        """
        Insert or replace the credential for a Slack user.

        Reconnecting overwrites the tokens of the existing row and keeps its id.
        """
        query = f"""
            INSERT INTO user_auth (
                slack_workspace_id, slack_user_id, spotify_user_id,
                access_token, refresh_token, expires_at
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (slack_workspace_id, slack_user_id) DO UPDATE
            SET spotify_user_id = COALESCE(EXCLUDED.spotify_user_id, user_auth.spotify_user_id),
                access_token = EXCLUDED.access_token,
                refresh_token = EXCLUDED.refresh_token,
                expires_at = EXCLUDED.expires_at,
                updated_at = NOW()
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                workspace_id,
                user_id,
                spotify_user_id,
                encrypt_token(access_token),
                encrypt_token(refresh_token),
                expires_at,
            ),
        )
        if not row:
            raise DatabaseError("Failed to upsert credential", operation="upsert_credential")

        logger.info(
            "Spotify credential stored",
            slack_workspace_id=workspace_id,
            slack_user_id=user_id,
            expires_at=expires_at.isoformat(),
        )
        return self._row_to_credential(row)

    async def update_tokens(
        self, credential_id: str, access_token: str, refresh_token: str, expires_at: datetime
    ) -> None:
        """Replace both tokens and the expiry of one credential in a single UPDATE."""
        query = """
            UPDATE user_auth
            SET access_token = %s,
                refresh_token = %s,
                expires_at = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING id
        """
        row = await fetch_one(
            query,
            (encrypt_token(access_token), encrypt_token(refresh_token), expires_at, credential_id),
        )
        if not row:
            raise DatabaseError(f"Credential {credential_id} not found", operation="update_tokens")

        logger.info(
            "Spotify tokens updated",
            credential_id=credential_id,
            expires_at=expires_at.isoformat(),
        )
