"""Caption track resolution.

Caption tracks are discovered through an ordered ladder of independent
strategies. The first strategy that yields at least one track wins; every
attempt is recorded in the diagnostics trail regardless of outcome.

Strategies:
    innertube_android: POST to the innertube player endpoint as the Android
        app. Web-client responses carry locators that demand a
        proof-of-origin token; the Android identity does not.
    page_scrape: Read the player response out of the watch page, first from
        the dedicated ``ytInitialPlayerResponse`` script, then by scanning
        inline scripts for a ``"captionTracks"`` array.

Example:
    >>> resolution = await resolve_tracks("dQw4w9WgXcQ")
    >>> track = select_track(resolution.tracks)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any

import httpx

from tubescope.config import Settings, get_settings
from tubescope.tools.youtube.client import create_http_client, validate_video_id
from tubescope.tools.youtube.diagnostics import AcquisitionFailure, Diagnostics
from tubescope.tools.youtube.models import Track

logger = logging.getLogger(__name__)

CAPTION_TRACKS_KEY = '"captionTracks"'
NO_CAPTIONS_MESSAGE = "No captions found. This video may not have a transcript."


@dataclass
class TrackResolution:
    """Tracks discovered for a video plus the trail of attempts."""

    tracks: list[Track]
    diagnostics: Diagnostics


@dataclass(frozen=True)
class TrackStrategy:
    """A named rung of the track resolution ladder."""

    label: str
    name: str
    fetch: Callable[[str], Awaitable[list[Track]]]


# =============================================================================
# Parsing helpers
# =============================================================================


def tracks_from_player_response(data: Any) -> list[Track]:
    """Pull caption tracks out of a player response JSON tree."""
    if not isinstance(data, dict):
        return []
    renderer = (data.get("captions") or {}).get("playerCaptionsTracklistRenderer") or {}
    raw_tracks = renderer.get("captionTracks")
    if not isinstance(raw_tracks, list):
        return []
    return [
        Track.from_caption_track(entry)
        for entry in raw_tracks
        if isinstance(entry, dict) and entry.get("baseUrl")
    ]


def extract_json_array(source: str, key: str = CAPTION_TRACKS_KEY) -> list[Any]:
    """Extract the JSON array that follows ``key`` in ``source``.

    Nested arrays and objects defeat fixed regular expressions, so the
    closing bracket is found by counting depth. Brackets inside JSON string
    literals are ignored, including strings with escaped quotes.

    Args:
        source: Raw script text.
        key: The quoted JSON key preceding the array.

    Returns:
        The decoded array, or an empty list if it cannot be located or parsed.
    """
    key_index = source.find(key)
    if key_index == -1:
        return []
    array_start = source.find("[", key_index + len(key))
    if array_start == -1:
        return []

    depth = 0
    in_string = False
    escaped = False
    array_end = -1

    for position in range(array_start, len(source)):
        char = source[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                array_end = position
                break

    if array_end == -1:
        return []

    try:
        value = json.loads(source[array_start : array_end + 1])
    except json.JSONDecodeError as e:
        logger.debug(f"Bracket-counted captionTracks array did not parse: {e}")
        return []
    return value if isinstance(value, list) else []


class _ScriptCollector(HTMLParser):
    """Collect the text content of every <script> element, keyed by id."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.scripts: list[tuple[str | None, str]] = []
        self._current_id: str | None = None
        self._buffer: list[str] | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == "script":
            self._current_id = dict(attrs).get("id")
            self._buffer = []

    def handle_data(self, data: str) -> None:
        if self._buffer is not None:
            self._buffer.append(data)

    def handle_endtag(self, tag: str) -> None:
        if tag == "script" and self._buffer is not None:
            self.scripts.append((self._current_id, "".join(self._buffer)))
            self._buffer = None
            self._current_id = None


def tracks_from_page_html(html: str) -> list[Track]:
    """Read caption tracks from a watch page.

    Stage 1 parses ``<script id="ytInitialPlayerResponse">`` as JSON.
    Stage 2 scans all inline scripts mentioning ``"captionTracks"``.

    Raises:
        LookupError: If no stage finds any track.
    """
    collector = _ScriptCollector()
    collector.feed(html)
    collector.close()

    for script_id, text in collector.scripts:
        if script_id == "ytInitialPlayerResponse" and text.strip():
            try:
                tracks = tracks_from_player_response(json.loads(text))
            except json.JSONDecodeError:
                logger.debug("ytInitialPlayerResponse script is not plain JSON")
                tracks = []
            if tracks:
                return tracks

    for _, text in collector.scripts:
        if CAPTION_TRACKS_KEY not in text:
            continue
        tracks = [
            Track.from_caption_track(entry)
            for entry in extract_json_array(text)
            if isinstance(entry, dict) and entry.get("baseUrl")
        ]
        if tracks:
            return tracks

    raise LookupError(NO_CAPTIONS_MESSAGE)


def select_track(tracks: list[Track]) -> Track:
    """Pick the preferred track: manual English, any English, then the first."""
    if not tracks:
        raise ValueError("No caption tracks available to select")
    for track in tracks:
        if track.language_code == "en" and track.is_manual:
            return track
    for track in tracks:
        if track.language_code == "en":
            return track
    return tracks[0]


def summarize_tracks(tracks: list[Track]) -> str:
    if not tracks:
        return "Returned 0 tracks"
    described = ", ".join(track.describe() for track in tracks)
    return f"Found {len(tracks)} track(s): {described}"


# =============================================================================
# Strategies
# =============================================================================


async def fetch_tracks_innertube(
    video_id: str,
    client: httpx.AsyncClient,
    settings: Settings,
) -> list[Track]:
    """Ask the innertube player endpoint for tracks, posing as the Android app.

    Client identity lives in the request body; the headers mirror what the
    app itself sends. Without the Android user agent the endpoint answers 403.
    """
    body = {
        "context": {
            "client": {
                "clientName": settings.innertube_client_name,
                "clientVersion": settings.innertube_client_version,
                "androidSdkVersion": settings.innertube_android_sdk_version,
                "hl": settings.innertube_hl,
                "gl": settings.innertube_gl,
            }
        },
        "videoId": video_id,
    }
    headers = {
        "Content-Type": "application/json",
        "User-Agent": settings.innertube_user_agent,
        "X-YouTube-Client-Name": settings.innertube_client_name_id,
        "X-YouTube-Client-Version": settings.innertube_client_version,
    }
    response = await client.post(settings.innertube_url, json=body, headers=headers)
    if response.status_code >= 400:
        raise RuntimeError(f"Innertube player returned {response.status_code}")
    return tracks_from_player_response(response.json())


async def fetch_tracks_from_page(
    video_id: str,
    client: httpx.AsyncClient,
    settings: Settings,
    page_html: str | None = None,
) -> list[Track]:
    """Scrape tracks from the already-loaded page, or fetch the watch page."""
    if page_html is None:
        response = await client.get(settings.watch_url, params={"v": video_id})
        if response.status_code >= 400:
            raise RuntimeError(f"Watch page returned {response.status_code}")
        page_html = response.text
    return tracks_from_page_html(page_html)


def build_strategies(
    client: httpx.AsyncClient,
    settings: Settings,
    page_html: str | None = None,
) -> list[TrackStrategy]:
    """Return the resolution ladder in priority order."""

    async def innertube(video_id: str) -> list[Track]:
        return await fetch_tracks_innertube(video_id, client, settings)

    async def page(video_id: str) -> list[Track]:
        return await fetch_tracks_from_page(video_id, client, settings, page_html)

    return [
        TrackStrategy("Innertube caption tracks", "Innertube", innertube),
        TrackStrategy("Page scrape caption tracks", "Page", page),
    ]


async def run_track_ladder(
    video_id: str,
    strategies: list[TrackStrategy],
    diagnostics: Diagnostics,
) -> list[Track]:
    """Run strategies in order until one yields tracks.

    Raises:
        AcquisitionFailure: If every strategy fails or yields nothing. The
            message embeds each strategy's failure.
    """
    failures: list[str] = []
    for strategy in strategies:
        try:
            tracks = await strategy.fetch(video_id)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.debug(f"{strategy.label} failed for {video_id}: {message}")
            diagnostics.error(strategy.label, message)
            failures.append(f"{strategy.name}: {message}")
            continue

        if tracks:
            diagnostics.ok(strategy.label, summarize_tracks(tracks))
            return tracks
        diagnostics.warn(strategy.label, summarize_tracks(tracks))
        failures.append(f"{strategy.name}: returned 0 tracks")

    raise AcquisitionFailure(
        "Could not find any caption tracks.\n" + "\n".join(failures),
        diagnostics,
    )


async def resolve_tracks(
    video_id: str,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
    page_html: str | None = None,
    diagnostics: Diagnostics | None = None,
) -> TrackResolution:
    """Resolve the caption tracks available for a video.

    Args:
        video_id: Video ID or URL.
        client: Optional shared HTTP client; one is created (and closed) if omitted.
        settings: Optional settings override.
        page_html: Already-loaded watch page markup for the scrape fallback.
        diagnostics: Optional trail to append to.

    Returns:
        TrackResolution with a non-empty track list.

    Raises:
        ValueError: If the video ID is invalid.
        AcquisitionFailure: If all strategies fail.
    """
    video_id = validate_video_id(video_id)
    settings = settings or get_settings()
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    owns_client = client is None
    http = client or create_http_client(settings)
    try:
        tracks = await run_track_ladder(
            video_id, build_strategies(http, settings, page_html), diagnostics
        )
    finally:
        if owns_client:
            await http.aclose()

    logger.info(f"Resolved {len(tracks)} caption track(s) for {video_id}")
    return TrackResolution(tracks=tracks, diagnostics=diagnostics)
