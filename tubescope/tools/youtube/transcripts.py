"""Transcript acquisition pipeline and timestamp helpers.

``fetch_transcript`` composes track resolution, track selection, cue
fetching and chunking, strictly in that order, sharing one HTTP client and
one diagnostics trail. Only exhaustion of a fallback ladder escapes, as an
AcquisitionFailure carrying every recorded step.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from tubescope.config import Settings, get_settings
from tubescope.tools.youtube.client import create_http_client, validate_video_id
from tubescope.tools.youtube.cues import fetch_cues
from tubescope.tools.youtube.diagnostics import AcquisitionFailure, Diagnostics
from tubescope.tools.youtube.models import Chunk, Cue, Track
from tubescope.tools.youtube.semantic.chunker import chunk_cues
from tubescope.tools.youtube.semantic.config import get_semantic_config
from tubescope.tools.youtube.tracks import resolve_tracks, select_track

logger = logging.getLogger(__name__)

TIMESTAMP_PATTERN = re.compile(r"(\[\d+:\d{2}(?::\d{2})?\]|\(\d+:\d{2}(?::\d{2})?\))")
_TIMESTAMP_PARTS = re.compile(r"^[\[(](\d+):(\d{2})(?::(\d{2}))?[\])]$")


@dataclass
class TranscriptResult:
    """A fetched transcript: chunks for retrieval plus their provenance."""

    video_id: str
    chunks: list[Chunk]
    cues: list[Cue]
    track: Track
    track_count: int
    diagnostics: Diagnostics

    def to_dict(self) -> dict[str, Any]:
        return {
            "video_id": self.video_id,
            "track": self.track.to_dict(),
            "track_count": self.track_count,
            "cue_count": len(self.cues),
            "chunk_count": len(self.chunks),
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "diagnostics": self.diagnostics.to_list(),
        }


async def fetch_transcript(
    video_id: str,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
    page_html: str | None = None,
    target_words: int | None = None,
) -> TranscriptResult:
    """Fetch a video's transcript and chunk it for retrieval.

    Args:
        video_id: Video ID or URL.
        client: Optional shared HTTP client.
        settings: Optional settings override.
        page_html: Already-loaded watch page markup for the scrape fallback.
        target_words: Override the chunk word budget.

    Returns:
        TranscriptResult with chunks, raw cues, selected track and diagnostics.

    Raises:
        ValueError: If the video ID is invalid.
        AcquisitionFailure: If no track could be found or no format yielded cues.
    """
    video_id = validate_video_id(video_id)
    settings = settings or get_settings()
    words = target_words or get_semantic_config().chunk_target_words
    diagnostics = Diagnostics()

    owns_client = client is None
    http = client or create_http_client(settings)
    try:
        resolution = await resolve_tracks(
            video_id,
            client=http,
            settings=settings,
            page_html=page_html,
            diagnostics=diagnostics,
        )
        track = select_track(resolution.tracks)
        diagnostics.ok(
            "Select track",
            f'Using "{track.name or "unknown"}" '
            f"(lang={track.language_code}, kind={track.kind or 'manual'})",
        )
        fetched = await fetch_cues(track, diagnostics, client=http)
    finally:
        if owns_client:
            await http.aclose()

    chunks = chunk_cues(fetched.cues, words)
    if not chunks:
        diagnostics.error("Chunk transcript", "All cues were blank")
        raise AcquisitionFailure("Transcript contained no text.", diagnostics)
    diagnostics.ok("Chunk transcript", f"{len(fetched.cues)} cues -> {len(chunks)} chunks")

    logger.info(
        f"Fetched transcript for {video_id}: {len(fetched.cues)} cues, {len(chunks)} chunks"
    )
    return TranscriptResult(
        video_id=video_id,
        chunks=chunks,
        cues=fetched.cues,
        track=track,
        track_count=len(resolution.tracks),
        diagnostics=diagnostics,
    )


# =============================================================================
# Timestamps
# =============================================================================


def format_timestamp(seconds: float) -> str:
    """Format seconds as M:SS, or H:MM:SS from one hour on."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_timestamp(token: str) -> int | None:
    """Parse ``[M:SS]``, ``[H:MM:SS]``, ``(M:SS)`` or ``(H:MM:SS)`` into seconds."""
    match = _TIMESTAMP_PARTS.match(token.strip())
    if not match or (token.strip()[0] == "[") != (token.strip()[-1] == "]"):
        return None
    first, second, third = match.groups()
    if third is not None:
        return int(first) * 3600 + int(second) * 60 + int(third)
    return int(first) * 60 + int(second)


@dataclass(frozen=True)
class Citation:
    """A timestamp cited in generated text, ready for click-to-seek."""

    label: str
    seconds: int


def extract_citations(text: str) -> list[Citation]:
    """Find every bracketed or parenthesized timestamp in ``text``."""
    citations: list[Citation] = []
    for token in TIMESTAMP_PATTERN.findall(text):
        seconds = parse_timestamp(token)
        if seconds is not None:
            citations.append(Citation(label=token, seconds=seconds))
    return citations
