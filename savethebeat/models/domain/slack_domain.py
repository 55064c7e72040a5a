# models/domain/slack_domain.py
"""
Slack Events API payload models.

Only the fields the bot reads are modelled; everything else in Slack's
payloads is ignored.
"""

import re
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from savethebeat.errors import BadRequest

SUPPORTED_EVENT_TYPES = frozenset({"app_mention"})

_USER_MENTION_RE = re.compile(r"<@[A-Z0-9]+(?:\|[^>]*)?>\s*")


class UrlVerification(BaseModel):
    type: Literal["url_verification"]
    challenge: str


class EventCallback(BaseModel):
    type: Literal["event_callback"]
    team_id: str
    event_id: str | None = None
    event_time: int | None = None
    event: dict[str, Any] = Field(default_factory=dict)

    @property
    def event_type(self) -> str | None:
        return self.event.get("type")


class SlackMessage(BaseModel):
    """A message returned by conversations.replies."""

    ts: str
    user: str | None = None
    text: str = ""
    thread_ts: str | None = None


class MentionEvent(BaseModel):
    """Transient description of one @mention, handed to the pipeline."""

    workspace_id: str
    user_id: str
    channel_id: str
    thread_ts: str
    mention_ts: str
    text: str

    @classmethod
    def from_event_callback(cls, callback: EventCallback) -> "MentionEvent | None":
        """Build a mention from an event_callback, or None for unsupported events."""
        event = callback.event
        if callback.event_type not in SUPPORTED_EVENT_TYPES:
            return None

        user = event.get("user")
        ts = event.get("ts")
        channel = event.get("channel")
        if not (user and ts and channel):
            return None

        return cls(
            workspace_id=callback.team_id,
            user_id=user,
            channel_id=channel,
            thread_ts=event.get("thread_ts") or ts,
            mention_ts=ts,
            text=event.get("text") or "",
        )

    def command_text(self) -> str:
        """Mention text with the <@U…> user markup removed."""
        return _USER_MENTION_RE.sub("", self.text).strip()


def parse_event_request(payload: Any) -> UrlVerification | EventCallback | None:
    """
    Parse a decoded Events API body.

    Returns None for request types the bot does not handle.

    Raises:
        BadRequest: If a known request type is missing required fields
    """
    if not isinstance(payload, dict):
        raise BadRequest("Event payload must be a JSON object")

    request_type = payload.get("type")
    try:
        if request_type == "url_verification":
            return UrlVerification.model_validate(payload)
        if request_type == "event_callback":
            return EventCallback.model_validate(payload)
    except ValidationError as e:
        raise BadRequest(f"Invalid {request_type} payload") from e

    return None
