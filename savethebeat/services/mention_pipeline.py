"""
Mention pipeline: what happens after someone @mentions the bot in a thread.

Steps run strictly in order and short-circuit on the first terminal outcome:

    connect intent  -> DM the account-linking URL
    fetch thread    -> find first track link (none: react x)
    idempotency     -> prior success (react recycle, log already_saved)
    credential      -> ensure valid token (failure: log failed/auth_error, react x)
    save            -> PUT track (failure: log failed/spotify_error, react x)
                       success: log saved, react white_check_mark

Every branch past link extraction writes exactly one log row, and always
before the reaction is posted.
"""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

from savethebeat.config import settings
from savethebeat.db.helpers import DatabaseError
from savethebeat.errors import AppError, StorageConflict
from savethebeat.infrastructure.observability.logging import get_logger
from savethebeat.models.domain.save_action_domain import (
    SaveActionCreate,
    SaveErrorCode,
    SaveStatus,
)
from savethebeat.models.domain.slack_domain import MentionEvent
from savethebeat.repositories.save_action_repository import SaveActionRepository
from savethebeat.services.infrastructure.encryption_service import EncryptionError
from savethebeat.services.slack.client import (
    REACTION_DUPLICATE,
    REACTION_FAILURE,
    REACTION_SUCCESS,
    SlackClient,
)
from savethebeat.services.spotify.client import SpotifyClient
from savethebeat.services.spotify.link_parser import find_first_track
from savethebeat.services.token_service import TokenService

logger = get_logger(__name__)

CONNECT_KEYWORD = "connect"


class MentionOutcome(str, Enum):
    CONNECT_LINK_SENT = "connect_link_sent"
    NO_TRACK_FOUND = "no_track_found"
    ALREADY_SAVED = "already_saved"
    SAVED = "saved"


def build_connect_url(workspace_id: str, user_id: str, base_url: str | None = None) -> str:
    """Account-linking URL sent to a user who asks the bot to connect."""
    base = (base_url or settings.public_base_url()).rstrip("/")
    return f"{base}/spotify/connect?{urlencode({'workspace': workspace_id, 'user': user_id})}"


@dataclass
class MentionPipeline:
    slack: SlackClient
    spotify: SpotifyClient
    tokens: TokenService
    save_actions: SaveActionRepository
    base_url: str | None = None

    async def run(self, mention: MentionEvent) -> MentionOutcome:
        """
        Process one mention to completion.

        Raises:
            Unauthenticated: User has not linked Spotify (after logging + reacting)
            ProviderError: Slack or Spotify call failed
            DatabaseError: Credential store or save action log unavailable
            EncryptionError: Stored credential could not be decrypted
        """
        log = logger.bind(
            slack_workspace_id=mention.workspace_id,
            slack_user_id=mention.user_id,
            channel_id=mention.channel_id,
            thread_ts=mention.thread_ts,
        )
        log.info("Processing mention")

        if CONNECT_KEYWORD in mention.command_text().lower():
            url = build_connect_url(mention.workspace_id, mention.user_id, self.base_url)
            await self.slack.post_message(
                mention.user_id, f"Click here to connect your Spotify account: {url}"
            )
            log.info("Sent Spotify connect link")
            return MentionOutcome.CONNECT_LINK_SENT

        messages = await self.slack.fetch_thread_messages(mention.channel_id, mention.thread_ts)
        track_id = find_first_track(message.text for message in messages)
        if not track_id:
            log.info("No Spotify track link in thread", message_count=len(messages))
            await self._react(mention, REACTION_FAILURE)
            return MentionOutcome.NO_TRACK_FOUND

        log = log.bind(spotify_track_id=track_id)

        existing = await self.save_actions.find(
            mention.workspace_id, mention.user_id, mention.thread_ts, track_id
        )
        if existing:
            log.info("Track already saved from this thread", first_saved_at=str(existing.created_at))
            await self._record(mention, track_id, SaveStatus.ALREADY_SAVED)
            await self._react(mention, REACTION_DUPLICATE)
            return MentionOutcome.ALREADY_SAVED

        try:
            access_token = await self.tokens.ensure_valid_credential(
                mention.workspace_id, mention.user_id
            )
        except (AppError, DatabaseError, EncryptionError) as e:
            log.warning("Could not obtain Spotify credential", error_type=type(e).__name__)
            await self._record(
                mention,
                track_id,
                SaveStatus.FAILED,
                SaveErrorCode.AUTH_ERROR,
                f"Failed to authenticate: {e}",
            )
            await self._react(mention, REACTION_FAILURE)
            raise

        try:
            await self.spotify.save_track(access_token, track_id)
        except AppError as e:
            log.error("Failed to save track", error=str(e))
            await self._record(
                mention,
                track_id,
                SaveStatus.FAILED,
                SaveErrorCode.SPOTIFY_ERROR,
                f"Failed to save: {e}",
            )
            await self._react(mention, REACTION_FAILURE)
            raise

        try:
            await self._record(mention, track_id, SaveStatus.SAVED)
        except StorageConflict:
            # A concurrent mention for the same thread and track recorded first
            log.info("Concurrent save already recorded")
            await self._record(mention, track_id, SaveStatus.ALREADY_SAVED)
            await self._react(mention, REACTION_DUPLICATE)
            return MentionOutcome.ALREADY_SAVED

        await self._react(mention, REACTION_SUCCESS)
        log.info("Track saved")
        return MentionOutcome.SAVED

    async def _record(
        self,
        mention: MentionEvent,
        track_id: str,
        status: SaveStatus,
        error_code: SaveErrorCode | None = None,
        error_message: str | None = None,
    ) -> None:
        await self.save_actions.append(
            SaveActionCreate(
                slack_workspace_id=mention.workspace_id,
                slack_user_id=mention.user_id,
                channel_id=mention.channel_id,
                thread_ts=mention.thread_ts,
                mention_ts=mention.mention_ts,
                spotify_track_id=track_id,
                status=status,
                error_code=error_code,
                error_message=error_message,
            )
        )

    async def _react(self, mention: MentionEvent, reaction: str) -> None:
        await self.slack.add_reaction(mention.channel_id, mention.mention_ts, reaction)
