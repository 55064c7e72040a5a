# models/domain/credential_domain.py
"""
Spotify credential domain model (decrypted).
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel

# expires_at is stored this far ahead of the provider's real expiry, and
# refresh is triggered when we are within the same window of it.
EXPIRY_BUFFER = timedelta(minutes=5)


class SpotifyCredential(BaseModel):
    """One linked Spotify account per Slack workspace and user."""

    id: str
    slack_workspace_id: str
    slack_user_id: str
    spotify_user_id: str | None = None
    access_token: str  # decrypted
    refresh_token: str  # decrypted
    expires_at: datetime
    paused: bool = False
    created_at: datetime
    updated_at: datetime

    def needs_refresh(self, now: datetime | None = None, buffer: timedelta = EXPIRY_BUFFER) -> bool:
        """True when the access token expires within the buffer (or already has)."""
        now = now or datetime.now(UTC)
        return now + buffer >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"SpotifyCredential(id={self.id!r}, slack_workspace_id={self.slack_workspace_id!r}, "
            f"slack_user_id={self.slack_user_id!r}, expires_at={self.expires_at.isoformat()})"
        )

    __str__ = __repr__


def buffered_expiry(expires_in: int, now: datetime | None = None) -> datetime:
    """Absolute expiry for a token valid for ``expires_in`` seconds, minus the buffer."""
    now = now or datetime.now(UTC)
    return now + timedelta(seconds=int(expires_in)) - EXPIRY_BUFFER
