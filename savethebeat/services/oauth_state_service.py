"""
OAuth State Service for the Spotify account-linking flow.

Each pending connect attempt is stored under a random state token together
with the Slack workspace and user it was issued for. Entries expire after
STATE_TTL_SECONDS and are consumed exactly once by the callback.
"""

import json
import secrets
from dataclasses import dataclass

from savethebeat.errors import AppError, OAuthStateNotFound
from savethebeat.infrastructure.observability.logging import get_logger, preview
from savethebeat.services.infrastructure.redis_client import FastRedisClient

logger = get_logger(__name__)

STATE_TTL_SECONDS = 600  # 10 minutes
STATE_KEY_PREFIX = "spotify_oauth_state"
STATE_LENGTH = 32  # bytes for cryptographically secure state


class OAuthStateError(AppError):
    """Raised when a state cannot be stored."""


@dataclass(frozen=True)
class PendingConnection:
    workspace_id: str
    user_id: str


class OAuthStateStore:
    """
    Store for pending OAuth states, backed by Redis key expiry.

    Handlers receive an instance through FastAPI dependencies rather than a
    module global, so tests can swap the Redis client for a fake.
    """

    def __init__(self, redis_client: FastRedisClient, ttl_seconds: int = STATE_TTL_SECONDS):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def _redis_key(self, state: str) -> str:
        return f"{STATE_KEY_PREFIX}:{state}"

    async def issue(self, workspace_id: str, user_id: str) -> str:
        """
        Generate a state token bound to a Slack workspace and user.

        Raises:
            OAuthStateError: If the state could not be stored
        """
        state = secrets.token_urlsafe(STATE_LENGTH)
        payload = json.dumps({"workspace_id": workspace_id, "user_id": user_id})

        stored = await self.redis.set_with_ttl(self._redis_key(state), payload, self.ttl_seconds)
        if not stored:
            logger.error(
                "Failed to store OAuth state",
                slack_workspace_id=workspace_id,
                slack_user_id=user_id,
            )
            raise OAuthStateError("Failed to store OAuth state")

        logger.info(
            "OAuth state issued",
            slack_workspace_id=workspace_id,
            slack_user_id=user_id,
            state_preview=preview(state),
            ttl_seconds=self.ttl_seconds,
        )
        return state

    async def consume(self, state: str) -> PendingConnection:
        """
        Validate a state token and remove it so it cannot be replayed.

        Raises:
            OAuthStateNotFound: If the state is unknown, used or expired
        """
        if not state:
            raise OAuthStateNotFound("OAuth state missing")

        raw = await self.redis.get_and_delete(self._redis_key(state))
        if raw is None:
            logger.warning("OAuth state not found", state_preview=preview(state))
            raise OAuthStateNotFound("OAuth state not found")

        try:
            data = json.loads(raw)
            pending = PendingConnection(workspace_id=data["workspace_id"], user_id=data["user_id"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Stored OAuth state is malformed", state_preview=preview(state))
            raise OAuthStateNotFound("OAuth state malformed") from e

        logger.info(
            "OAuth state consumed",
            slack_workspace_id=pending.workspace_id,
            slack_user_id=pending.user_id,
        )
        return pending
