import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from savethebeat.errors import SpotifyApiError
from savethebeat.services.spotify.client import SpotifyClient
from savethebeat.services.spotify.oauth_service import SpotifyOAuthService


def _oauth(handler) -> SpotifyOAuthService:
    return SpotifyOAuthService(
        client_id="cid",
        client_secret="csecret",
        redirect_uri="https://beat.example.com/spotify/callback",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.mark.asyncio
async def test_save_track_puts_track_id():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    client = SpotifyClient(timeout=1.0, transport=httpx.MockTransport(handler))
    await client.save_track("token-1", "TRACK1")

    request = calls[0]
    assert request.method == "PUT"
    assert request.url.path == "/v1/me/tracks"
    assert request.url.params["ids"] == "TRACK1"
    assert request.headers["Authorization"] == "Bearer token-1"


@pytest.mark.asyncio
async def test_save_track_error_carries_payload():
    payload = {"error": {"status": 401, "message": "The access token expired"}}

    def handler(request):
        return httpx.Response(401, json=payload)

    client = SpotifyClient(timeout=1.0, transport=httpx.MockTransport(handler))
    with pytest.raises(SpotifyApiError) as exc_info:
        await client.save_track("token-1", "TRACK1")

    assert exc_info.value.response_data == payload
    assert exc_info.value.error_code == "401"
    assert "access token expired" in str(exc_info.value)


@pytest.mark.asyncio
async def test_save_track_timeout_is_provider_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = SpotifyClient(timeout=1.0, transport=httpx.MockTransport(handler))
    with pytest.raises(SpotifyApiError):
        await client.save_track("token-1", "TRACK1")


@pytest.mark.asyncio
async def test_get_current_user():
    def handler(request):
        assert request.url.path == "/v1/me"
        return httpx.Response(200, json={"id": "sp-user", "display_name": "Someone"})

    client = SpotifyClient(timeout=1.0, transport=httpx.MockTransport(handler))
    profile = await client.get_current_user("token-1")

    assert profile["id"] == "sp-user"


def test_authorize_url_contains_scope_and_state():
    service = _oauth(lambda request: httpx.Response(500))
    url = urlparse(service.authorize_url("state-abc"))
    params = parse_qs(url.query)

    assert url.netloc == "accounts.spotify.com"
    assert params["scope"] == ["user-library-modify"]
    assert params["state"] == ["state-abc"]
    assert params["response_type"] == ["code"]
    assert params["redirect_uri"] == ["https://beat.example.com/spotify/callback"]


@pytest.mark.asyncio
async def test_refresh_uses_basic_auth_and_keeps_refresh_token():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"access_token": "new", "expires_in": 3600})

    response = await _oauth(handler).refresh_access_token("refresh-1")

    assert response.access_token == "new"
    assert response.refresh_token == "refresh-1"
    request = requests[0]
    expected_auth = base64.b64encode(b"cid:csecret").decode()
    assert request.headers["Authorization"] == f"Basic {expected_auth}"
    assert _form(request) == {"grant_type": "refresh_token", "refresh_token": "refresh-1"}


@pytest.mark.asyncio
async def test_refresh_missing_expires_in_is_error():
    def handler(request):
        return httpx.Response(200, json={"access_token": "new"})

    with pytest.raises(SpotifyApiError):
        await _oauth(handler).refresh_access_token("refresh-1")


@pytest.mark.asyncio
async def test_refresh_revoked_grant_is_error():
    def handler(request):
        return httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Refresh token revoked"}
        )

    with pytest.raises(SpotifyApiError) as exc_info:
        await _oauth(handler).refresh_access_token("refresh-1")

    assert exc_info.value.error_code == "invalid_grant"


@pytest.mark.asyncio
async def test_refresh_is_single_attempt():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    with pytest.raises(SpotifyApiError):
        await _oauth(handler).refresh_access_token("refresh-1")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_exchange_code_sends_redirect_uri():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(
            200, json={"access_token": "a", "refresh_token": "r", "expires_in": 3600}
        )

    response = await _oauth(handler).exchange_code("code-1")

    assert response.refresh_token == "r"
    form = _form(requests[0])
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "code-1"
    assert form["redirect_uri"] == "https://beat.example.com/spotify/callback"
