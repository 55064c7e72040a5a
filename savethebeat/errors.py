"""
Application error kinds and their HTTP rendering.

Every error the service can surface is a subclass of ``AppError``. The
``ERROR_RESPONSES`` table maps each kind to a status code and the message
shown to the caller; ``app_error_handler`` is the single place that renders
them, so route handlers only ever raise.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from savethebeat.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base class for all savethebeat errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class SignatureMissing(AppError):
    """Slack signature or timestamp header absent."""


class SignatureInvalid(AppError):
    """Slack signature malformed or not matching."""


class SignatureExpired(AppError):
    """Slack request timestamp outside the replay window."""


class BadRequest(AppError):
    """Request payload could not be parsed."""


class UnsupportedEvent(AppError):
    """Event type the bot does not act on."""


class Unauthenticated(AppError):
    """No linked Spotify account for the Slack user."""

    def __init__(self, workspace_id: str, user_id: str):
        super().__init__("User not authenticated with Spotify")
        self.workspace_id = workspace_id
        self.user_id = user_id


class ProviderError(AppError):
    """A call to Slack or Spotify failed or returned a non-ok result."""

    source = "provider"

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


class SlackApiError(ProviderError):
    source = "slack"


class SpotifyApiError(ProviderError):
    source = "spotify"


class StorageConflict(AppError):
    """Uniqueness violation when appending to the action log."""


class OAuthStateNotFound(AppError):
    """OAuth state unknown, already used or expired."""


ERROR_RESPONSES: dict[type[Exception], tuple[int, str]] = {
    SignatureMissing: (status.HTTP_401_UNAUTHORIZED, "Missing signature headers"),
    SignatureInvalid: (status.HTTP_401_UNAUTHORIZED, "Invalid signature"),
    SignatureExpired: (status.HTTP_401_UNAUTHORIZED, "Signature expired"),
    BadRequest: (status.HTTP_400_BAD_REQUEST, "Invalid request"),
    UnsupportedEvent: (status.HTTP_200_OK, "Event ignored"),
    Unauthenticated: (status.HTTP_401_UNAUTHORIZED, "Spotify account not connected"),
    SlackApiError: (status.HTTP_502_BAD_GATEWAY, "Slack API error"),
    SpotifyApiError: (status.HTTP_502_BAD_GATEWAY, "Spotify API error"),
    ProviderError: (status.HTTP_502_BAD_GATEWAY, "Upstream provider error"),
    StorageConflict: (status.HTTP_409_CONFLICT, "Conflicting request"),
    OAuthStateNotFound: (status.HTTP_400_BAD_REQUEST, "Invalid or expired OAuth state"),
    AppError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"),
}


def resolve_error_response(exc: Exception) -> tuple[int, str]:
    """Find the most specific table entry for an exception."""
    for cls in type(exc).__mro__:
        if cls in ERROR_RESPONSES:
            return ERROR_RESPONSES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"


async def app_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code, message = resolve_error_response(exc)

    if status_code < 400:
        log = logger.debug
    elif status_code < 500:
        log = logger.warning
    else:
        log = logger.error
    log(
        "Request failed",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
        error=str(exc),
    )

    if isinstance(exc, BadRequest) and exc.message:
        message = exc.message

    return JSONResponse(status_code=status_code, content={"error": message})
