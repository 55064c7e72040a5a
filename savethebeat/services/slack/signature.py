"""
Slack request signature verification.

Slack signs every Events API request with HMAC-SHA256 over
``v0:<timestamp>:<raw body>`` using the app's signing secret.
"""

import hashlib
import hmac
import time

from savethebeat.errors import SignatureExpired, SignatureInvalid, SignatureMissing
from savethebeat.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_VERSION = "v0"
MAX_REQUEST_AGE_SECONDS = 300  # 5 minutes


def compute_slack_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    """Return the ``v0=<hex>`` signature Slack would send for this request."""
    basestring = f"{SIGNATURE_VERSION}:{timestamp}:".encode() + body
    digest = hmac.new(signing_secret.encode("utf-8"), basestring, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_slack_signature(
    signing_secret: str | None,
    timestamp: str | None,
    body: bytes,
    signature: str | None,
    now: float | None = None,
) -> None:
    """
    Verify that a request came from Slack.

    Args:
        signing_secret: Slack app signing secret
        timestamp: X-Slack-Request-Timestamp header
        body: Raw request body
        signature: X-Slack-Signature header
        now: Current unix time (defaults to time.time())

    Raises:
        SignatureMissing: Timestamp or signature header absent
        SignatureInvalid: Timestamp not an integer, secret unset, or mismatch
        SignatureExpired: Timestamp more than 5 minutes from now
    """
    if not timestamp or not signature:
        logger.warning(
            "Slack signature headers missing",
            has_timestamp=bool(timestamp),
            has_signature=bool(signature),
        )
        raise SignatureMissing("Missing signature headers")

    if not signing_secret:
        logger.error("SLACK_SIGNING_SECRET not configured")
        raise SignatureInvalid("Signing secret not configured")

    try:
        request_time = int(timestamp)
    except ValueError:
        logger.warning("Invalid Slack timestamp", timestamp=timestamp[:20])
        raise SignatureInvalid("Invalid timestamp format") from None

    current_time = int(now if now is not None else time.time())
    if abs(current_time - request_time) > MAX_REQUEST_AGE_SECONDS:
        logger.warning(
            "Slack request timestamp outside replay window",
            request_time=request_time,
            current_time=current_time,
        )
        raise SignatureExpired("Request timestamp too old")

    expected = compute_slack_signature(signing_secret, timestamp, body)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        logger.warning("Slack signature verification failed", body_size=len(body))
        raise SignatureInvalid("Signature mismatch")

    logger.debug("Slack signature verified", request_time=request_time)
