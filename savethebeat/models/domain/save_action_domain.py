# models/domain/save_action_domain.py
"""
Save action log domain models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class SaveStatus(str, Enum):
    SAVED = "saved"
    ALREADY_SAVED = "already_saved"
    FAILED = "failed"


class SaveErrorCode(str, Enum):
    AUTH_ERROR = "auth_error"
    SPOTIFY_ERROR = "spotify_error"


class SaveActionCreate(BaseModel):
    """Row to append to the save action log."""

    slack_workspace_id: str
    slack_user_id: str
    channel_id: str
    thread_ts: str
    mention_ts: str
    spotify_track_id: str
    status: SaveStatus
    error_code: SaveErrorCode | None = None
    error_message: str | None = None


class SaveAction(SaveActionCreate):
    """Stored, immutable save action row."""

    id: str
    created_at: datetime
