"""
Slack Web API client for the mention pipeline.

Wraps the three calls the bot makes: reading a thread
(conversations.replies), reacting to the mention (reactions.add) and sending
a direct message (chat.postMessage). Each call is a single attempt bounded by
the configured timeout; any failure surfaces as SlackApiError.
"""

from typing import Any

import httpx

from savethebeat.config import settings
from savethebeat.errors import SlackApiError
from savethebeat.infrastructure.observability.logging import get_logger
from savethebeat.models.domain.slack_domain import SlackMessage

logger = get_logger(__name__)

SLACK_API_BASE_URL = "https://slack.com/api"
REPLIES_PAGE_LIMIT = 200

# Reaction names used as user-visible feedback
REACTION_SUCCESS = "white_check_mark"
REACTION_DUPLICATE = "recycle"
REACTION_FAILURE = "x"

# Errors from reactions.add that mean the reaction is already in place
IDEMPOTENT_REACTION_ERRORS = frozenset({"already_reacted"})


class SlackClient:
    """Bot-token authenticated Slack Web API client."""

    def __init__(
        self,
        bot_token: str | None = None,
        timeout: float | None = None,
        base_url: str = SLACK_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.SLACK_BOT_TOKEN
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.bot_token}"},
            transport=self._transport,
        )

    async def _call(
        self,
        client: httpx.AsyncClient,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform one Web API call and return the decoded envelope (ok or not)."""
        try:
            if json is not None:
                response = await client.post(f"/{method}", json=json)
            else:
                response = await client.get(f"/{method}", params=params)
        except httpx.RequestError as e:
            logger.error(
                "Slack API request failed",
                method=method,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SlackApiError(f"Failed to call {method}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            logger.error(
                "Slack API returned non-JSON response",
                method=method,
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise SlackApiError(
                f"{method} returned non-JSON response (HTTP {response.status_code})"
            ) from None

        if not isinstance(data, dict):
            raise SlackApiError(f"{method} returned an unexpected payload")

        return data

    def _raise_for_envelope(self, method: str, data: dict[str, Any], **context) -> None:
        if data.get("ok"):
            return

        error_code = data.get("error") or "unknown_error"
        logger.error("Slack API returned error", method=method, error=error_code, **context)
        raise SlackApiError(f"{method} failed: {error_code}", error_code=error_code, response_data=data)

    async def fetch_thread_messages(self, channel_id: str, thread_ts: str) -> list[SlackMessage]:
        """
        Fetch every message in a thread, oldest first.

        Args:
            channel_id: Channel the thread lives in
            thread_ts: Timestamp of the thread's root message

        Returns:
            list[SlackMessage]: Messages in the order Slack delivers them

        Raises:
            SlackApiError: If any page request fails or Slack reports ok=false
        """
        logger.info("Fetching thread messages", channel_id=channel_id, thread_ts=thread_ts)

        messages: list[SlackMessage] = []
        cursor: str | None = None

        async with self._client() as client:
            while True:
                params = {"channel": channel_id, "ts": thread_ts, "limit": REPLIES_PAGE_LIMIT}
                if cursor:
                    params["cursor"] = cursor

                data = await self._call(client, "conversations.replies", params=params)
                self._raise_for_envelope(
                    "conversations.replies", data, channel_id=channel_id, thread_ts=thread_ts
                )

                for raw in data.get("messages") or []:
                    if raw.get("ts"):
                        messages.append(SlackMessage.model_validate(raw))

                cursor = (data.get("response_metadata") or {}).get("next_cursor")
                if not data.get("has_more") or not cursor:
                    break

        logger.info(
            "Fetched thread messages",
            channel_id=channel_id,
            thread_ts=thread_ts,
            message_count=len(messages),
        )
        return messages

    async def add_reaction(self, channel_id: str, message_ts: str, name: str) -> None:
        """
        Add an emoji reaction to a message.

        A reaction that is already present counts as success.

        Raises:
            SlackApiError: For any other failure
        """
        async with self._client() as client:
            data = await self._call(
                client,
                "reactions.add",
                json={"channel": channel_id, "timestamp": message_ts, "name": name},
            )

        if not data.get("ok") and data.get("error") in IDEMPOTENT_REACTION_ERRORS:
            logger.debug("Reaction already present", channel_id=channel_id, reaction=name)
            return

        self._raise_for_envelope(
            "reactions.add", data, channel_id=channel_id, message_ts=message_ts, reaction=name
        )
        logger.info("Reaction added", channel_id=channel_id, message_ts=message_ts, reaction=name)

    async def post_message(self, channel: str, text: str) -> None:
        """
        Post a message. Passing a user id as ``channel`` sends a DM from the bot.

        Raises:
            SlackApiError: If Slack rejects the message
        """
        async with self._client() as client:
            data = await self._call(
                client, "chat.postMessage", json={"channel": channel, "text": text}
            )

        self._raise_for_envelope("chat.postMessage", data, channel=channel)
        logger.info("Message posted", channel=channel)
