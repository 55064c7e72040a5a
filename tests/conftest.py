import os
from datetime import UTC, datetime, timedelta

import pytest
from cryptography.fernet import Fernet

# Settings are read at import time, so these must be set first
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["SLACK_SIGNING_SECRET"] = "test-signing-secret"
os.environ["SLACK_BOT_TOKEN"] = "xoxb-test"
os.environ["SPOTIFY_CLIENT_ID"] = "spotify-client-id"
os.environ["SPOTIFY_CLIENT_SECRET"] = "spotify-client-secret"
os.environ["BASE_URL"] = "https://beat.example.com"

from savethebeat.errors import SpotifyApiError, StorageConflict  # noqa: E402
from savethebeat.models.domain.credential_domain import SpotifyCredential  # noqa: E402
from savethebeat.models.domain.save_action_domain import (  # noqa: E402
    SaveAction,
    SaveActionCreate,
    SaveStatus,
)
from savethebeat.models.domain.slack_domain import MentionEvent, SlackMessage  # noqa: E402
from savethebeat.services.spotify.oauth_service import TokenResponse  # noqa: E402


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail_writes = False

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if self.fail_writes:
            return False
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def get_and_delete(self, key: str) -> str | None:
        self.ttls.pop(key, None)
        return self.store.pop(key, None)

    async def ping(self) -> bool:
        return True


class FakeCredentialRepository:
    def __init__(self):
        self.records: dict[tuple[str, str], SpotifyCredential] = {}
        self.update_calls: list[dict] = []

    def add(
        self,
        workspace_id: str = "T1",
        user_id: str = "U1",
        access_token: str = "access-old",
        refresh_token: str = "refresh-old",
        expires_at: datetime | None = None,
    ) -> SpotifyCredential:
        now = datetime.now(UTC)
        credential = SpotifyCredential(
            id=f"cred-{workspace_id}-{user_id}",
            slack_workspace_id=workspace_id,
            slack_user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at or now + timedelta(hours=1),
            created_at=now,
            updated_at=now,
        )
        self.records[(workspace_id, user_id)] = credential
        return credential

    async def get(self, workspace_id: str, user_id: str) -> SpotifyCredential | None:
        return self.records.get((workspace_id, user_id))

    async def upsert(
        self,
        workspace_id,
        user_id,
        access_token,
        refresh_token,
        expires_at,
        spotify_user_id=None,
    ) -> SpotifyCredential:
        return self.add(workspace_id, user_id, access_token, refresh_token, expires_at)

    async def update_tokens(self, credential_id, access_token, refresh_token, expires_at) -> None:
        self.update_calls.append(
            {
                "id": credential_id,
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at,
            }
        )
        for key, credential in self.records.items():
            if credential.id == credential_id:
                self.records[key] = credential.model_copy(
                    update={
                        "access_token": access_token,
                        "refresh_token": refresh_token,
                        "expires_at": expires_at,
                    }
                )


class FakeSaveActionRepository:
    """In-memory log enforcing the same partial uniqueness as the schema."""

    def __init__(self):
        self.rows: list[SaveAction] = []

    async def find(self, workspace_id, user_id, thread_ts, track_id) -> SaveAction | None:
        for row in self.rows:
            if (
                row.slack_workspace_id == workspace_id
                and row.slack_user_id == user_id
                and row.thread_ts == thread_ts
                and row.spotify_track_id == track_id
                and row.status in (SaveStatus.SAVED, SaveStatus.ALREADY_SAVED)
            ):
                return row
        return None

    async def append(self, action: SaveActionCreate) -> SaveAction:
        if action.status == SaveStatus.SAVED:
            for row in self.rows:
                if (
                    row.status == SaveStatus.SAVED
                    and row.slack_workspace_id == action.slack_workspace_id
                    and row.slack_user_id == action.slack_user_id
                    and row.thread_ts == action.thread_ts
                    and row.spotify_track_id == action.spotify_track_id
                ):
                    raise StorageConflict("Unique constraint violated: idx_save_log_saved_unique")

        row = SaveAction(
            id=f"action-{len(self.rows) + 1}",
            created_at=datetime.now(UTC),
            **action.model_dump(),
        )
        self.rows.append(row)
        return row


class FakeSlackClient:
    def __init__(self, messages: list[str] | None = None):
        self.set_thread(*(messages or []))
        self.reactions: list[tuple[str, str, str]] = []
        self.posted: list[tuple[str, str]] = []
        self.fetch_calls = 0
        self.reaction_error: Exception | None = None

    def set_thread(self, *texts: str) -> None:
        self.messages = [
            SlackMessage(ts=f"1700000000.{i:06d}", user="U9", text=text)
            for i, text in enumerate(texts)
        ]

    async def fetch_thread_messages(self, channel_id: str, thread_ts: str) -> list[SlackMessage]:
        self.fetch_calls += 1
        return list(self.messages)

    async def add_reaction(self, channel_id: str, message_ts: str, name: str) -> None:
        if self.reaction_error:
            raise self.reaction_error
        self.reactions.append((channel_id, message_ts, name))

    async def post_message(self, channel: str, text: str) -> None:
        self.posted.append((channel, text))


class FakeSpotifyClient:
    def __init__(self):
        self.saved: list[tuple[str, str]] = []
        self.error: Exception | None = None
        self.profile = {"id": "spotify-user", "display_name": "DJ Test"}

    async def save_track(self, access_token: str, track_id: str) -> None:
        if self.error:
            raise self.error
        self.saved.append((access_token, track_id))

    async def get_current_user(self, access_token: str) -> dict:
        return self.profile


class FakeOAuthService:
    def __init__(self):
        self.refresh_calls: list[str] = []
        self.exchange_calls: list[str] = []
        self.refresh_result = {"access_token": "access-new", "expires_in": 3600}
        self.exchange_result = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
        }
        self.error: Exception | None = None

    def authorize_url(self, state: str) -> str:
        return f"https://accounts.spotify.com/authorize?state={state}"

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        self.refresh_calls.append(refresh_token)
        if self.error:
            raise self.error
        response = TokenResponse(self.refresh_result)
        if not response.refresh_token:
            response.refresh_token = refresh_token
        return response

    async def exchange_code(self, code: str) -> TokenResponse:
        self.exchange_calls.append(code)
        if self.error:
            raise self.error
        return TokenResponse(self.exchange_result)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def credential_repo():
    return FakeCredentialRepository()


@pytest.fixture
def save_action_repo():
    return FakeSaveActionRepository()


@pytest.fixture
def slack_client():
    return FakeSlackClient()


@pytest.fixture
def spotify_client():
    return FakeSpotifyClient()


@pytest.fixture
def oauth_service():
    return FakeOAuthService()


@pytest.fixture
def make_mention():
    def _make(text: str = "<@UBOT> save this", thread_ts: str | None = "1700000000.000000"):
        return MentionEvent(
            workspace_id="T1",
            user_id="U1",
            channel_id="C1",
            thread_ts=thread_ts or "1700000100.000000",
            mention_ts="1700000100.000000",
            text=text,
        )

    return _make


@pytest.fixture
def spotify_error():
    return SpotifyApiError("boom", error_code="500")
