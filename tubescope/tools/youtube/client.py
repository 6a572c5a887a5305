"""HTTP client and identifier helpers for the YouTube upstream.

Provides:
- create_http_client: httpx.AsyncClient configured from Settings
- extract_video_id / validate_video_id: accept URLs or bare IDs
- TranscriptError: base class for user-facing transcript problems
"""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

import httpx

from tubescope.config import Settings, get_settings

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


class TranscriptError(Exception):
    """A transcript could not be acquired or processed."""


def create_http_client(settings: Settings | None = None) -> httpx.AsyncClient:
    """Create an async HTTP client for upstream requests.

    Args:
        settings: Optional settings; defaults to the cached global settings.

    Returns:
        Configured httpx.AsyncClient. The caller owns it and must close it.
    """
    settings = settings or get_settings()
    return httpx.AsyncClient(
        timeout=settings.http_timeout,
        follow_redirects=True,
        headers={"Accept-Language": settings.accept_language},
    )


def extract_video_id(url_or_id: str) -> str:
    """Extract a video ID from a YouTube URL, or return a bare ID unchanged.

    Handles watch URLs, youtu.be short links, /embed/ and /shorts/ paths.

    Args:
        url_or_id: A YouTube URL or an 11 character video ID.

    Returns:
        The video ID (whitespace stripped).
    """
    value = url_or_id.strip()
    if "youtube.com" not in value and "youtu.be" not in value:
        return value

    parsed = urlparse(value if "://" in value else f"https://{value}")
    if parsed.hostname and parsed.hostname.endswith("youtu.be"):
        return parsed.path.lstrip("/").split("/")[0]

    query_id = parse_qs(parsed.query).get("v")
    if query_id:
        return query_id[0]

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) >= 2 and parts[0] in ("embed", "shorts", "live", "v"):
        return parts[1]
    return value


def validate_video_id(video_id: str) -> str:
    """Normalize and validate a video ID.

    Raises:
        ValueError: If the ID is empty or not 11 URL-safe characters.
    """
    if not video_id or not isinstance(video_id, str) or not video_id.strip():
        raise ValueError("video_id must be a non-empty string")
    video_id = extract_video_id(video_id)
    if not VIDEO_ID_PATTERN.match(video_id):
        raise ValueError(f"Invalid video ID format: {video_id!r}")
    return video_id
