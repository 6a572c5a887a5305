#!/usr/bin/env python3
"""tubescope MCP server.

Serves the transcript pipeline over MCP: caption track discovery with a
diagnostics trail, chunked transcripts, hybrid exact + semantic search over
the open video, a titled timeline, and a question-answering agent that
searches the transcript before it answers.

Usage:
    tubescope-mcp                                  # stdio, for desktop MCP clients
    tubescope-mcp --transport sse --port 8000      # SSE, for web clients

Settings come from TUBESCOPE_* and SEMANTIC_* environment variables or a
.env file; see tubescope.config and tubescope.tools.youtube.semantic.config.
"""

from __future__ import annotations

import argparse
import logging
import math
import sys
from typing import Any

from pydantic import BaseModel, Field

try:
    from fastmcp import FastMCP
except ImportError:
    print(
        "Error: FastMCP is not installed. Install with:\n  uv sync\n",
        file=sys.stderr,
    )
    sys.exit(1)

from mcp_refcache import PreviewConfig, PreviewStrategy, RefCache
from mcp_refcache.fastmcp import cache_guide_prompt, cache_instructions, with_cache_docs

from tubescope.agent.loop import Conversation
from tubescope.agent.providers import GenerationFailure, available_providers, create_chat_provider
from tubescope.config import get_settings
from tubescope.tools.youtube.diagnostics import AcquisitionFailure
from tubescope.tools.youtube.semantic.embeddings import get_embeddings
from tubescope.tools.youtube.semantic.session import VideoController, VideoSession
from tubescope.tools.youtube.semantic.titles import TimelineTitler, TitleCache
from tubescope.tools.youtube.tracks import resolve_tracks
from tubescope.tools.youtube.transcripts import extract_citations, fetch_transcript

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPT_PAGE_SIZE = 20

# =============================================================================
# Initialize FastMCP Server
# =============================================================================

mcp = FastMCP(
    name="tubescope",
    instructions=f"""Search, segment and ask questions about YouTube video transcripts.

Available tools:
- list_caption_tracks: Caption tracks for a video, with the acquisition trail
- get_transcript: Chunked transcript for a video (cached in public namespace)
- open_video: Load a video as the current session (chunks + embeddings)
- search_transcript: Exact + semantic search over the open video
- get_timeline: Titled timeline blocks for the open video
- regenerate_timeline_titles: Discard cached titles and write new ones
- ask_video: Ask a question; the answer cites [MM:SS] timestamps
- get_transcript_page: Page through a transcript returned by reference

{cache_instructions()}
""",
)

# =============================================================================
# Initialize RefCache
# =============================================================================

cache = RefCache(
    name="tubescope",
    default_ttl=3600,  # 1 hour TTL
    preview_config=PreviewConfig(
        max_size=64,
        default_strategy=PreviewStrategy.SAMPLE,
    ),
)

# =============================================================================
# Session state
# =============================================================================

controller = VideoController(embeddings_factory=get_embeddings)
conversations: dict[str, Conversation] = {}
_titler: TimelineTitler | None = None


def get_titler() -> TimelineTitler | None:
    """Lazily build the titler; None when no chat provider is configured."""
    global _titler
    if _titler is None:
        settings = get_settings()
        try:
            provider = create_chat_provider(settings=settings)
        except (GenerationFailure, ValueError, ImportError) as e:
            logger.info(f"Timeline titles disabled: {e}")
            return None
        _titler = TimelineTitler(provider, TitleCache(settings.title_cache_directory))
    return _titler


def require_session() -> VideoSession:
    session = controller.snapshot()
    if session is None:
        raise ValueError("No video is open. Call open_video first.")
    return session


def failure_response(video_id: str, error: AcquisitionFailure) -> dict[str, Any]:
    return {
        "video_id": video_id,
        "error": str(error),
        "diagnostics": error.diagnostics.to_list(),
    }


# =============================================================================
# Pydantic Models for Tool Inputs
# =============================================================================


class SearchInput(BaseModel):
    """Input model for transcript search."""

    query: str = Field(description="Words, phrases or a description to look for", min_length=1)
    top_k: int | None = Field(
        default=None,
        ge=1,
        le=50,
        description="Maximum semantic matches (defaults to SEMANTIC_SEARCH_TOP_K)",
    )


class QuestionInput(BaseModel):
    """Input model for questions to the transcript agent."""

    question: str = Field(description="Question about the open video", min_length=1)
    provider: str | None = Field(default=None, description="Chat provider id")
    model: str | None = Field(default=None, description="Model id for the provider")


class TranscriptPageInput(BaseModel):
    """Input model for paging through a cached transcript."""

    ref_id: str = Field(description="Reference returned by get_transcript")
    page: int | None = Field(default=None, ge=1, description="1-indexed page of transcript chunks")
    page_size: int | None = Field(default=None, ge=1, le=100, description="Chunks per page")


# =============================================================================
# Transcript Tools
# =============================================================================


@mcp.tool
async def list_caption_tracks(video_id: str) -> dict[str, Any]:
    """List the caption tracks available for a video.

    Args:
        video_id: YouTube video ID or URL.

    Returns:
        Tracks (language, kind, name) and the diagnostics trail, or an
        error with the trail when no strategy found any tracks.
    """
    try:
        resolution = await resolve_tracks(video_id)
    except AcquisitionFailure as e:
        return failure_response(video_id, e)

    return {
        "video_id": video_id,
        "tracks": [
            {key: value for key, value in track.to_dict().items() if key != "base_url"}
            for track in resolution.tracks
        ],
        "diagnostics": resolution.diagnostics.to_list(),
    }


@cache.cached(namespace="public")
async def cached_transcript(video_id: str) -> dict[str, Any]:
    """Fetch a transcript and cache it. AcquisitionFailure propagates and nothing is cached."""
    result = await fetch_transcript(video_id)
    return result.to_dict()


@mcp.tool
async def get_transcript(video_id: str) -> dict[str, Any]:
    """Fetch a video's transcript as timestamped chunks.

    Args:
        video_id: YouTube video ID or URL.

    Returns:
        Selected track, chunks (index, text, start, duration) and the
        diagnostics trail.

    Large transcripts come back as a reference with a preview. Failures
    are not cached, so a later call retries acquisition.

    **Pagination:** Use `get_transcript_page` with `page` and `page_size`
    to read the chunks.
    """
    try:
        return await cached_transcript(video_id)
    except AcquisitionFailure as e:
        return failure_response(video_id, e)


@mcp.tool
async def open_video(video_id: str) -> dict[str, Any]:
    """Load a video as the current session.

    Replaces any previously open video. Embeds the chunks for semantic
    search when embeddings are available; otherwise search is exact only.

    Args:
        video_id: YouTube video ID or URL.

    Returns:
        Session summary with chunk count, search mode and diagnostics.
    """
    try:
        session = await controller.open(video_id)
    except AcquisitionFailure as e:
        return failure_response(video_id, e)

    conversations.pop(session.video_id, None)
    return {
        "video_id": session.video_id,
        "track": session.track.describe() if session.track else None,
        "chunk_count": len(session.chunks),
        "search_mode": "hybrid" if session.semantic_ready else "exact",
        "diagnostics": session.diagnostics.to_list(),
    }


@mcp.tool
async def search_transcript(query: str, top_k: int | None = None) -> dict[str, Any]:
    """Search the open video's transcript.

    Exact (case-insensitive substring) matches come first in transcript
    order, followed by semantic matches above the similarity threshold.

    Args:
        query: Words, phrases or a description to look for.
        top_k: Maximum semantic matches.

    Returns:
        Matches with text, start, duration, score and match_type.
    """
    validated = SearchInput(query=query, top_k=top_k)
    session = require_session()
    results = await session.search(validated.query, top_k=validated.top_k)
    return {
        "video_id": session.video_id,
        "query": validated.query,
        "search_mode": "hybrid" if session.semantic_ready else "exact",
        "results": [result.to_dict() for result in results],
    }


# =============================================================================
# Timeline Tools
# =============================================================================


@mcp.tool
async def get_timeline() -> dict[str, Any]:
    """Segment the open video into titled timeline blocks.

    Titles come from the title cache when available. Otherwise generation
    is started in the background and blocks are returned untitled; call
    again shortly to pick the titles up.

    Returns:
        Blocks (start, end, title, chunk indices) and the segmentation method.
    """
    session = require_session()
    blocks, method = session.timeline()

    titles_status = "unavailable"
    titler = get_titler()
    if titler is not None and blocks:
        if titler.apply_cached(session.video_id, method, blocks):
            titles_status = "cached"
        else:
            titler.schedule(session.video_id, method, blocks)
            titles_status = "generating"

    return {
        "video_id": session.video_id,
        "method": method,
        "titles": titles_status,
        "blocks": [block.to_dict() for block in blocks],
    }


@mcp.tool
async def regenerate_timeline_titles() -> dict[str, Any]:
    """Discard cached titles for the open video's timeline and write new ones.

    Returns:
        The retitled blocks, or an error when no chat provider is configured.
    """
    session = require_session()
    titler = get_titler()
    if titler is None:
        return {"video_id": session.video_id, "error": "No chat provider configured"}

    blocks, method = session.timeline()
    try:
        await titler.regenerate(session.video_id, method, blocks)
    except Exception as e:
        logger.warning(f"Title regeneration failed for {session.video_id}: {e}")
        return {"video_id": session.video_id, "error": str(e)}

    return {
        "video_id": session.video_id,
        "method": method,
        "blocks": [block.to_dict() for block in blocks],
    }


# =============================================================================
# Question Answering
# =============================================================================


@mcp.tool
async def ask_video(
    question: str,
    provider: str | None = None,
    model: str | None = None,
) -> dict[str, Any]:
    """Ask a question about the open video.

    The agent searches the transcript (up to three times) before answering
    and cites timestamps as [MM:SS] or [H:MM:SS]. Conversation history is
    kept per video until another video is opened.

    Args:
        question: The question.
        provider: Chat provider id (anthropic, openai, google, groq, mistral, ollama).
        model: Model id; defaults to the configured model.

    Returns:
        Answer text, parsed citations and the searches the agent ran.
    """
    validated = QuestionInput(question=question, provider=provider, model=model)
    session = require_session()

    conversation = conversations.get(session.video_id)
    if conversation is None or validated.provider or validated.model:
        try:
            chat_provider = create_chat_provider(validated.provider, validated.model)
        except GenerationFailure as e:
            return {"video_id": session.video_id, "error": str(e)}
        history = conversation.messages if conversation is not None else []
        conversation = Conversation(chat_provider)
        conversation.messages = list(history)
        conversations[session.video_id] = conversation

    state = await conversation.send(validated.question, session)
    if state.error is not None:
        return {"video_id": session.video_id, "error": state.error, "searches": state.searches}

    return {
        "video_id": session.video_id,
        "answer": state.text,
        "citations": [
            {"label": citation.label, "seconds": citation.seconds}
            for citation in extract_citations(state.text)
        ],
        "searches": state.searches,
    }


@mcp.tool
def list_chat_providers() -> list[dict[str, Any]]:
    """List chat providers usable with the configured API keys.

    Returns:
        Provider ids, labels and model options.
    """
    return [
        {
            "id": provider.id,
            "label": provider.label,
            "models": [{"id": option.id, "label": option.label} for option in provider.models],
        }
        for provider in available_providers()
    ]


# =============================================================================
# Cached Transcripts
# =============================================================================


@mcp.tool
@with_cache_docs(accepts_references=True, supports_pagination=True)
async def get_transcript_page(
    ref_id: str,
    page: int | None = None,
    page_size: int | None = None,
) -> dict[str, Any]:
    """Read a page of chunks from a transcript that get_transcript returned by reference.

    Args:
        ref_id: Reference from a previous get_transcript call.
        page: Page to read, starting at 1.
        page_size: Chunks per page (default 20).

    Returns:
        The chunks on the page with paging totals, or an error when the
        reference is unknown or expired.
    """
    validated = TranscriptPageInput(ref_id=ref_id, page=page, page_size=page_size)

    try:
        transcript = cache.resolve(validated.ref_id, actor="agent")
    except (PermissionError, KeyError) as e:
        logger.info(f"Transcript reference {validated.ref_id} unavailable: {e}")
        return {"ref_id": validated.ref_id, "error": "Transcript reference not found or expired"}

    if not isinstance(transcript, dict) or not isinstance(transcript.get("chunks"), list):
        return {"ref_id": validated.ref_id, "error": "Reference does not hold a transcript"}

    chunks = transcript["chunks"]
    page_number = validated.page or 1
    size = validated.page_size or DEFAULT_TRANSCRIPT_PAGE_SIZE
    start = (page_number - 1) * size
    return {
        "ref_id": validated.ref_id,
        "video_id": transcript.get("video_id"),
        "items": chunks[start : start + size],
        "total_items": len(chunks),
        "page": page_number,
        "total_pages": math.ceil(len(chunks) / size),
    }


# =============================================================================
# Health Check
# =============================================================================


@mcp.tool
def health_check() -> dict[str, Any]:
    """Report server status and the currently open video.

    Returns:
        Health status plus the open video, if any.
    """
    session = controller.snapshot()
    return {
        "status": "healthy",
        "server": "tubescope",
        "cache": cache.name,
        "open_video": session.video_id if session else None,
        "semantic_search": controller.semantic_enabled,
    }


# =============================================================================
# Prompts for Guidance
# =============================================================================


@mcp.prompt
def tubescope_guide() -> str:
    """Guide for using the tubescope server."""
    return f"""# tubescope Guide

1. `open_video("https://www.youtube.com/watch?v=...")` loads a video.
   If it fails, the `diagnostics` list shows every attempt that was made.
2. `search_transcript("cache invalidation")` finds exact and semantic matches.
3. `get_timeline()` returns the video split into titled blocks.
4. `ask_video("What does the speaker say about X?")` answers with
   clickable [MM:SS] citations.

---

{cache_guide_prompt()}
"""


# =============================================================================
# Main Entry Point
# =============================================================================


def main() -> None:
    """Run the MCP server."""
    parser = argparse.ArgumentParser(
        description="tubescope MCP server",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="SSE listen port",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="SSE bind address",
    )

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(
            transport="sse",
            host=args.host,
            port=args.port,
        )


if __name__ == "__main__":
    main()
