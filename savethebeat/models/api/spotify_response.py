# savethebeat/models/api/spotify_response.py
"""
Spotify account-linking API response models.
"""

from pydantic import BaseModel, Field


class SpotifyVerifyResponse(BaseModel):
    """Result of checking a linked Spotify account end to end."""

    success: bool = Field(..., description="Token is valid and the profile call succeeded")
    spotify_user_id: str = Field(..., description="Spotify account id")
    display_name: str | None = Field(default=None, description="Spotify display name")
