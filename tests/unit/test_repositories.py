from datetime import UTC, datetime, timedelta

import pytest

from savethebeat.db.helpers import DatabaseError
from savethebeat.errors import StorageConflict
from savethebeat.models.domain.save_action_domain import (
    SaveActionCreate,
    SaveErrorCode,
    SaveStatus,
)
from savethebeat.repositories import credential_repository, save_action_repository
from savethebeat.repositories.credential_repository import CredentialRepository
from savethebeat.repositories.save_action_repository import SaveActionRepository
from savethebeat.services.infrastructure.encryption_service import decrypt_token, encrypt_token

NOW = datetime(2026, 1, 1, tzinfo=UTC)


class RecordingFetchOne:
    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[str, tuple]] = []

    async def __call__(self, query, params=(), **kwargs):
        self.calls.append((query, params))
        if self.error:
            raise self.error
        return self.result


def _credential_row(**overrides):
    row = {
        "id": "9b7f0a3e-0000-0000-0000-000000000001",
        "slack_workspace_id": "T1",
        "slack_user_id": "U1",
        "spotify_user_id": None,
        "access_token": encrypt_token("access-1"),
        "refresh_token": encrypt_token("refresh-1"),
        "expires_at": NOW + timedelta(hours=1),
        "paused": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_get_decrypts_tokens(monkeypatch):
    fake = RecordingFetchOne(_credential_row())
    monkeypatch.setattr(credential_repository, "fetch_one", fake)

    credential = await CredentialRepository().get("T1", "U1")

    assert credential.access_token == "access-1"
    assert credential.refresh_token == "refresh-1"
    assert fake.calls[0][1] == ("T1", "U1")
    assert "access-1" not in repr(credential)


@pytest.mark.asyncio
async def test_get_missing_returns_none(monkeypatch):
    monkeypatch.setattr(credential_repository, "fetch_one", RecordingFetchOne(None))

    assert await CredentialRepository().get("T1", "U1") is None


@pytest.mark.asyncio
async def test_upsert_encrypts_tokens(monkeypatch):
    fake = RecordingFetchOne(_credential_row())
    monkeypatch.setattr(credential_repository, "fetch_one", fake)

    await CredentialRepository().upsert("T1", "U1", "access-1", "refresh-1", NOW)

    query, params = fake.calls[0]
    assert "ON CONFLICT (slack_workspace_id, slack_user_id)" in query
    assert params[:3] == ("T1", "U1", None)
    assert decrypt_token(params[3]) == "access-1"
    assert decrypt_token(params[4]) == "refresh-1"
    assert params[5] == NOW


@pytest.mark.asyncio
async def test_update_tokens_single_update(monkeypatch):
    fake = RecordingFetchOne({"id": "cred-1"})
    monkeypatch.setattr(credential_repository, "fetch_one", fake)

    await CredentialRepository().update_tokens("cred-1", "access-2", "refresh-2", NOW)

    assert len(fake.calls) == 1
    query, params = fake.calls[0]
    assert query.strip().startswith("UPDATE user_auth")
    assert decrypt_token(params[0]) == "access-2"
    assert decrypt_token(params[1]) == "refresh-2"
    assert params[2:] == (NOW, "cred-1")


@pytest.mark.asyncio
async def test_update_tokens_unknown_id_raises(monkeypatch):
    monkeypatch.setattr(credential_repository, "fetch_one", RecordingFetchOne(None))

    with pytest.raises(DatabaseError):
        await CredentialRepository().update_tokens("missing", "a", "r", NOW)


def _action(status=SaveStatus.SAVED, **overrides) -> SaveActionCreate:
    data = {
        "slack_workspace_id": "T1",
        "slack_user_id": "U1",
        "channel_id": "C1",
        "thread_ts": "100.0",
        "mention_ts": "200.0",
        "spotify_track_id": "TRACK1",
        "status": status,
    }
    data.update(overrides)
    return SaveActionCreate(**data)


def _action_row(action: SaveActionCreate) -> dict:
    row = action.model_dump(mode="json")
    row.update({"id": "action-1", "created_at": NOW})
    return row


@pytest.mark.asyncio
async def test_find_only_matches_successful_rows(monkeypatch):
    fake = RecordingFetchOne(None)
    monkeypatch.setattr(save_action_repository, "fetch_one", fake)

    assert await SaveActionRepository().find("T1", "U1", "100.0", "TRACK1") is None

    query, params = fake.calls[0]
    assert "status IN (%s, %s)" in query
    assert params == ("T1", "U1", "100.0", "TRACK1", "saved", "already_saved")


@pytest.mark.asyncio
async def test_append_failed_row(monkeypatch):
    action = _action(
        SaveStatus.FAILED,
        error_code=SaveErrorCode.SPOTIFY_ERROR,
        error_message="Failed to save: boom",
    )
    fake = RecordingFetchOne(_action_row(action))
    monkeypatch.setattr(save_action_repository, "fetch_one", fake)

    stored = await SaveActionRepository().append(action)

    assert stored.status == SaveStatus.FAILED
    assert stored.error_code == SaveErrorCode.SPOTIFY_ERROR
    params = fake.calls[0][1]
    assert params[6:] == ("failed", "spotify_error", "Failed to save: boom")


@pytest.mark.asyncio
async def test_append_conflict_propagates(monkeypatch):
    monkeypatch.setattr(
        save_action_repository,
        "fetch_one",
        RecordingFetchOne(error=StorageConflict("Unique constraint violated")),
    )

    with pytest.raises(StorageConflict):
        await SaveActionRepository().append(_action())
