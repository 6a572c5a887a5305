"""Timed-text cue fetching.

A track's locator may carry an ``exp=xpe`` flag that switches on
proof-of-origin token enforcement. Without a token the server answers
HTTP 200 with an empty body. The flag is not part of the signed parameter
set, so it is stripped before any request.

Payload formats are tried in order, each behind its own parser:
    json3: ``&fmt=json3`` event list (``events[].segs[].utf8``).
    xml: the default markup, either ``<p t d><s/></p>`` (milliseconds) or
        ``<text start dur>`` (seconds).

Every attempt records status code, content-length header, actual body size
and a short preview so empty bodies are distinguishable from network errors.
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from tubescope.tools.youtube.client import create_http_client
from tubescope.tools.youtube.diagnostics import AcquisitionFailure, Diagnostics
from tubescope.tools.youtube.models import Cue, Track

logger = logging.getLogger(__name__)

POT_FLAG_PARAM = "exp"
POT_FLAG_VALUES = frozenset({"xpe", "xpv"})
PREVIEW_CHARS = 200

_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&#39;", "'"),
    ("&quot;", '"'),
    ("&amp;", "&"),
)


class ParseFailure(ValueError):
    """An upstream payload could not be turned into cues."""


@dataclass
class CueFetchResult:
    cues: list[Cue]
    diagnostics: Diagnostics


@dataclass(frozen=True)
class CueFormat:
    """One rung of the payload format ladder."""

    label: str
    build_url: Callable[[str], str]
    parse: Callable[[str], list[Cue]]


# =============================================================================
# Locator sanitizing
# =============================================================================


def has_pot_flag(url: str) -> bool:
    query = urlsplit(url).query
    return any(
        key == POT_FLAG_PARAM and value in POT_FLAG_VALUES
        for key, value in parse_qsl(query, keep_blank_values=True)
    )


def strip_pot_flag(url: str) -> str:
    """Remove the proof-of-origin gating flag from a locator.

    All other query parameters keep their order and values. Applying this
    twice yields the same URL as applying it once.
    """
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(key, value) for key, value in params if key != POT_FLAG_PARAM]
    if len(kept) == len(params):
        return url
    return urlunsplit(parts._replace(query=urlencode(kept)))


def with_format(url: str, fmt: str) -> str:
    separator = "&" if urlsplit(url).query else "?"
    return f"{url}{separator}fmt={fmt}"


# =============================================================================
# Parsers
# =============================================================================


def clean_text(raw: str) -> str:
    """Decode the five standard entities and collapse newlines."""
    text = raw
    for entity, replacement in _ENTITIES:
        text = text.replace(entity, replacement)
    return re.sub(r"\s*\n\s*", " ", text).strip()


def parse_json3(body: str) -> list[Cue]:
    """Parse the compact json3 event list.

    Raises:
        ParseFailure: If the body is empty or not the expected JSON shape.
    """
    if not body.strip():
        raise ParseFailure("empty body")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseFailure("json3 payload is not an object")

    cues: list[Cue] = []
    try:
        for event in data.get("events") or []:
            segs = event.get("segs") if isinstance(event, dict) else None
            if not segs:
                continue
            text = clean_text("".join(str(seg.get("utf8", "")) for seg in segs))
            if not text:
                continue
            cues.append(
                Cue(
                    text=text,
                    start=float(event.get("tStartMs", 0)) / 1000,
                    duration=max(0.0, float(event.get("dDurationMs", 0)) / 1000),
                )
            )
    except (AttributeError, TypeError, ValueError, KeyError) as e:
        raise ParseFailure(f"malformed json3 event: {e}") from e
    return cues


def _element_text(element: ET.Element) -> str:
    """Concatenate an element's text, joining <s> children when present."""
    children = element.findall(".//s")
    if children:
        return "".join("".join(child.itertext()) for child in children)
    return "".join(element.itertext())


def _timed_cue(text: str, start: str, duration: str, per_second: int) -> Cue:
    try:
        start_value = float(start) / per_second
        duration_value = float(duration) / per_second
    except ValueError as e:
        raise ParseFailure(f"malformed timing attribute: {e}") from e
    return Cue(text=text, start=start_value, duration=max(0.0, duration_value))


def parse_timedtext_xml(body: str) -> list[Cue]:
    """Parse either timed-text markup variant.

    The block format (``<p t="ms" d="ms">`` with ``<s>`` children) is tried
    first; if it yields nothing the legacy ``<text start dur>`` format is used.

    Raises:
        ParseFailure: If the body is not XML or yields zero cues.
    """
    if not body.strip():
        raise ParseFailure("empty body")
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise ParseFailure(f"invalid XML: {e}") from e

    cues: list[Cue] = []
    for node in root.iter("p"):
        text = clean_text(_element_text(node))
        if text:
            cues.append(_timed_cue(text, node.get("t", "0"), node.get("d", "0"), 1000))
    if cues:
        return cues

    for node in root.iter("text"):
        text = clean_text("".join(node.itertext()))
        if text:
            cues.append(_timed_cue(text, node.get("start", "0"), node.get("dur", "0"), 1))
    if not cues:
        raise ParseFailure(f"XML parsed but yielded 0 cues. XML snippet: {body[:300]}")
    return cues


CUE_FORMATS: list[CueFormat] = [
    CueFormat("JSON3", lambda url: with_format(url, "json3"), parse_json3),
    CueFormat("XML", lambda url: url, parse_timedtext_xml),
]


# =============================================================================
# Fetch ladder
# =============================================================================


def _describe_response(response: httpx.Response) -> str:
    body = response.text
    content_length = response.headers.get("content-length", "unknown")
    return (
        f"status={response.status_code}, content-length={content_length}, "
        f"body={len(response.content)} bytes, "
        f"preview: {json.dumps(body[:PREVIEW_CHARS])}"
    )


async def run_cue_ladder(
    url: str,
    formats: list[CueFormat],
    client: httpx.AsyncClient,
    diagnostics: Diagnostics,
) -> list[Cue]:
    """Try each payload format in order until one yields cues.

    Raises:
        AcquisitionFailure: If every format fails.
    """
    last_error = "no formats attempted"
    for position, fmt in enumerate(formats):
        is_last = position == len(formats) - 1
        attempt_label = f"Fetch {fmt.label} transcript"
        try:
            response = await client.get(fmt.build_url(url))
        except httpx.HTTPError as e:
            last_error = f"{e.__class__.__name__}: {e}"
            diagnostics.record(attempt_label, "error" if is_last else "warn", last_error)
            continue

        diagnostics.record(
            f"HTTP response ({fmt.label})",
            "ok" if response.content else "error",
            _describe_response(response),
        )

        try:
            if response.status_code >= 400:
                raise ParseFailure(f"HTTP {response.status_code}")
            cues = fmt.parse(response.text)
            if not cues:
                raise ParseFailure("0 cues after filtering")
        except ParseFailure as e:
            last_error = str(e)
            detail = f"{len(response.content)} bytes, {last_error}"
            if is_last:
                diagnostics.error(attempt_label, detail)
            else:
                diagnostics.warn(attempt_label, f"{detail} - falling back")
            continue

        diagnostics.ok(attempt_label, f"{len(cues)} cues, {len(response.content)} bytes")
        return cues

    raise AcquisitionFailure(
        f"Transcript could not be fetched in any format: {last_error}", diagnostics
    )


async def fetch_cues(
    track: Track | str,
    diagnostics: Diagnostics | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    formats: list[CueFormat] | None = None,
) -> CueFetchResult:
    """Fetch and parse the cues for a track.

    Args:
        track: Selected track or its raw locator.
        diagnostics: Optional trail to append to.
        client: Optional shared HTTP client.
        formats: Override the payload format ladder.

    Returns:
        CueFetchResult with non-empty cues.

    Raises:
        AcquisitionFailure: If all formats fail.
    """
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    base_url = track.base_url if isinstance(track, Track) else track

    if has_pot_flag(base_url):
        diagnostics.warn(
            "POT token flag",
            "Locator requires a proof-of-origin token; stripping the exp flag before fetching.",
        )
    url = strip_pot_flag(base_url)

    owns_client = client is None
    http = client or create_http_client()
    try:
        cues = await run_cue_ladder(url, formats or CUE_FORMATS, http, diagnostics)
    finally:
        if owns_client:
            await http.aclose()

    logger.debug(f"Fetched {len(cues)} cues")
    return CueFetchResult(cues=cues, diagnostics=diagnostics)
