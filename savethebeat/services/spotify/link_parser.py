"""
Spotify track link extraction.

Recognises web links (``https://open.spotify.com/track/<id>``, optionally
locale-prefixed and with a query string) and URIs (``spotify:track:<id>``).
Playlists, albums and other resource types never match.
"""

import re
from collections.abc import Iterable

TRACK_URL_PATTERN = re.compile(
    r"https?://open\.spotify\.com/(?:intl-[A-Za-z-]+/)?track/([A-Za-z0-9]+)"
)
TRACK_URI_PATTERN = re.compile(r"spotify:track:([A-Za-z0-9]+)")


def extract_track_id(text: str | None) -> str | None:
    """Return the first track id in ``text``; web links win over URIs."""
    if not text:
        return None

    match = TRACK_URL_PATTERN.search(text)
    if match:
        return match.group(1)

    match = TRACK_URI_PATTERN.search(text)
    if match:
        return match.group(1)

    return None


def find_first_track(messages: Iterable[str | None]) -> str | None:
    """Track id from the earliest message (in iteration order) that has one."""
    for text in messages:
        track_id = extract_track_id(text)
        if track_id:
            return track_id
    return None
