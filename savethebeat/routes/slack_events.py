"""
Slack Events API webhook.

Only signature verification and payload parsing happen inside the request;
mentions are handed to the mention worker and Slack gets its 200 right away.
"""

import json

from fastapi import APIRouter, Depends, Request

from savethebeat.dependencies import get_mention_worker, get_signing_secret
from savethebeat.errors import BadRequest, UnsupportedEvent
from savethebeat.infrastructure.observability.logging import get_logger
from savethebeat.jobs.mention_worker import MentionWorker
from savethebeat.models.domain.slack_domain import (
    EventCallback,
    MentionEvent,
    UrlVerification,
    parse_event_request,
)
from savethebeat.services.slack.signature import verify_slack_signature

logger = get_logger(__name__)

router = APIRouter(prefix="/slack", tags=["slack"])


@router.post("/events")
async def slack_events(
    request: Request,
    signing_secret: str | None = Depends(get_signing_secret),
    worker: MentionWorker = Depends(get_mention_worker),
):
    """
    Receive an Events API request.

    Raises:
        SignatureMissing / SignatureInvalid / SignatureExpired: 401
        BadRequest: 400 for bodies that are not valid event payloads
    """
    body = await request.body()

    verify_slack_signature(
        signing_secret,
        request.headers.get("X-Slack-Request-Timestamp"),
        body,
        request.headers.get("X-Slack-Signature"),
    )

    try:
        payload = json.loads(body)
    except ValueError:
        raise BadRequest("Invalid JSON body") from None

    parsed = parse_event_request(payload)

    if isinstance(parsed, UrlVerification):
        logger.info("Slack URL verification challenge received")
        return {"challenge": parsed.challenge}

    if isinstance(parsed, EventCallback):
        mention = MentionEvent.from_event_callback(parsed)
        if mention is None:
            raise UnsupportedEvent(f"Unsupported event type: {parsed.event_type}")

        queued = worker.enqueue(mention)
        logger.info(
            "Slack mention received",
            event_id=parsed.event_id,
            slack_workspace_id=mention.workspace_id,
            channel_id=mention.channel_id,
            queued=queued,
        )
        return {"ok": True}

    raise UnsupportedEvent(f"Unsupported request type: {payload.get('type')}")
