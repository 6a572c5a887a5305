"""Tests for the tubescope server module."""

from __future__ import annotations

import math
from collections.abc import Callable
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from tubescope import server
from tubescope.agent.events import ProviderTextDelta, ProviderToolCall
from tubescope.agent.prompts import SEARCH_TOOL_NAME
from tubescope.agent.providers import GenerationFailure, get_provider
from tubescope.config import Settings
from tubescope.server import cache, mcp
from tubescope.tools.youtube.diagnostics import AcquisitionFailure, Diagnostics
from tubescope.tools.youtube.models import Chunk, Track
from tubescope.tools.youtube.semantic.session import VideoController, VideoSession
from tubescope.tools.youtube.semantic.titles import TimelineTitler, TitleCache
from tubescope.tools.youtube.tracks import TrackResolution


def unwrap(tool):
    """Return the plain function behind a FunctionTool wrapper."""
    return tool.fn if hasattr(tool, "fn") else tool


@pytest.fixture
def open_session(monkeypatch, sample_chunks: list[Chunk]) -> VideoSession:
    """Install a session for the sample chunks as the open video."""
    session = VideoSession(video_id="dQw4w9WgXcQ", chunks=tuple(sample_chunks))
    monkeypatch.setattr(server.controller, "current", session)
    monkeypatch.setattr(server, "conversations", {})
    return session


@pytest.fixture
def no_session(monkeypatch) -> None:
    monkeypatch.setattr(server.controller, "current", None)


class TestServerInitialization:
    """Tests for server initialization."""

    def test_mcp_instance_exists(self) -> None:
        """Test that FastMCP instance is created."""
        assert mcp is not None
        assert mcp.name == "tubescope"

    def test_cache_instance_exists(self) -> None:
        """Test that RefCache instance is created."""
        assert cache is not None
        assert cache.name == "tubescope"

    def test_instructions_mention_caching(self) -> None:
        """Test that instructions mention caching."""
        assert "cach" in mcp.instructions.lower()

    def test_instructions_list_tools(self) -> None:
        """Test that instructions name the search and question tools."""
        assert "search_transcript" in mcp.instructions
        assert "ask_video" in mcp.instructions


class TestHealthCheck:
    """Tests for health_check tool."""

    def test_health_check_without_video(self, no_session: None) -> None:
        """Test the healthy status with nothing open."""
        result = unwrap(server.health_check)()

        assert result["status"] == "healthy"
        assert result["server"] == "tubescope"
        assert result["cache"] == "tubescope"
        assert result["open_video"] is None

    def test_health_check_reports_open_video(self, open_session: VideoSession) -> None:
        """Test that the open video id is reported."""
        assert unwrap(server.health_check)()["open_video"] == "dQw4w9WgXcQ"


class TestListCaptionTracks:
    """Tests for list_caption_tracks tool."""

    @pytest.mark.asyncio
    async def test_locators_are_hidden(self) -> None:
        """Test that track locators are not returned to the client."""
        diagnostics = Diagnostics()
        diagnostics.ok("Innertube caption tracks", "Found 1 track(s)")
        resolution = TrackResolution(
            tracks=[Track("https://x.test/tt?lang=en", "en", "asr", "English")],
            diagnostics=diagnostics,
        )

        with patch("tubescope.server.resolve_tracks", AsyncMock(return_value=resolution)):
            result = await unwrap(server.list_caption_tracks)("dQw4w9WgXcQ")

        assert result["tracks"] == [{"language_code": "en", "kind": "asr", "name": "English"}]
        assert result["diagnostics"][0]["status"] == "ok"


class TestGetTranscript:
    """Tests for the get_transcript tool."""

    @pytest.fixture(autouse=True)
    def _setup_and_teardown(self) -> None:
        """Clear cache before and after each test."""
        cache.clear()
        yield
        cache.clear()

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self) -> None:
        """Test that a failed fetch is retried on the next call."""
        diagnostics = Diagnostics()
        diagnostics.error("Innertube caption tracks", "HTTP 403")
        failure = AcquisitionFailure("Could not find any caption tracks", diagnostics)
        fetch = AsyncMock(side_effect=[failure, failure])

        with patch("tubescope.server.fetch_transcript", fetch):
            first = await unwrap(server.get_transcript)("dQw4w9WgXcQ")
            second = await unwrap(server.get_transcript)("dQw4w9WgXcQ")

        assert fetch.await_count == 2
        assert first["error"] == "Could not find any caption tracks"
        assert second["diagnostics"][0]["status"] == "error"
        assert "ref_id" not in second


class TestOpenVideo:
    """Tests for open_video tool."""

    @pytest.mark.asyncio
    async def test_open_installs_session(
        self,
        monkeypatch,
        upstream: Callable[..., httpx.AsyncClient],
        settings: Settings,
    ) -> None:
        """Test a successful load with semantic search disabled."""
        settings.semantic_search_enabled = False
        controller = VideoController(settings=settings, client=upstream())
        monkeypatch.setattr(server, "controller", controller)
        monkeypatch.setattr(server, "conversations", {"dQw4w9WgXcQ": object()})

        result = await unwrap(server.open_video)("https://youtu.be/dQw4w9WgXcQ")

        assert result["video_id"] == "dQw4w9WgXcQ"
        assert result["chunk_count"] == 1
        assert result["search_mode"] == "exact"
        assert controller.current is not None
        assert server.conversations == {}

    @pytest.mark.asyncio
    async def test_open_failure_returns_trail(
        self,
        monkeypatch,
        upstream: Callable[..., httpx.AsyncClient],
        settings: Settings,
    ) -> None:
        """Test that an acquisition failure returns the diagnostics trail."""
        controller = VideoController(settings=settings, client=upstream(player=403))
        monkeypatch.setattr(server, "controller", controller)

        result = await unwrap(server.open_video)("dQw4w9WgXcQ")

        assert "Could not find any caption tracks" in result["error"]
        assert [step["label"] for step in result["diagnostics"]] == [
            "Innertube caption tracks",
            "Page scrape caption tracks",
        ]
        assert controller.current is None


class TestSearchTranscript:
    """Tests for search_transcript tool."""

    @pytest.mark.asyncio
    async def test_exact_results(self, open_session: VideoSession) -> None:
        """Test exact matches in transcript order."""
        result = await unwrap(server.search_transcript)("database")

        assert result["search_mode"] == "exact"
        assert [hit["index"] for hit in result["results"]] == [1, 3]
        assert all(hit["match_type"] == "exact" for hit in result["results"])

    @pytest.mark.asyncio
    async def test_requires_open_video(self, no_session: None) -> None:
        """Test that searching with nothing open raises ValueError."""
        with pytest.raises(ValueError, match="No video is open"):
            await unwrap(server.search_transcript)("database")

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, open_session: VideoSession) -> None:
        """Test that input validation rejects an empty query."""
        with pytest.raises(ValueError):
            await unwrap(server.search_transcript)("")


class TestGetTimeline:
    """Tests for get_timeline tool."""

    @pytest.mark.asyncio
    async def test_without_titler(self, monkeypatch, open_session: VideoSession) -> None:
        """Test untitled blocks when no chat provider is configured."""
        monkeypatch.setattr(server, "get_titler", lambda: None)

        result = await unwrap(server.get_timeline)()

        assert result["method"] == "fixed"
        assert result["titles"] == "unavailable"
        assert result["blocks"][0]["start"] == 0.0
        assert result["blocks"][-1]["end"] == 16.0

    @pytest.mark.asyncio
    async def test_generates_then_serves_cached_titles(
        self,
        monkeypatch,
        tmp_path,
        make_provider,
        open_session: VideoSession,
    ) -> None:
        """Test background generation followed by a cache hit."""
        provider = make_provider([[ProviderTextDelta('["Caching", "Storage", "Wrap up"]')]])
        titler = TimelineTitler(provider, TitleCache(tmp_path))
        monkeypatch.setattr(server, "get_titler", lambda: titler)

        first = await unwrap(server.get_timeline)()
        assert first["titles"] == "generating"
        for task in list(titler._tasks.values()):
            await task

        second = await unwrap(server.get_timeline)()

        assert second["titles"] == "cached"
        assert all(block["title"] for block in second["blocks"])
        assert len(provider.calls) == 1


class TestAskVideo:
    """Tests for ask_video tool."""

    @pytest.mark.asyncio
    async def test_answer_with_citations(self, make_provider, open_session: VideoSession) -> None:
        """Test that the agent searches and the answer's timestamps are parsed."""
        provider = make_provider(
            [
                [ProviderToolCall(call_id="c1", name=SEARCH_TOOL_NAME, arguments={"query": "music"})],
                [ProviderTextDelta("Music comes up at [0:08].")],
            ]
        )

        with patch("tubescope.server.create_chat_provider", return_value=provider):
            result = await unwrap(server.ask_video)("Is there music?")

        assert result["answer"] == "Music comes up at [0:08]."
        assert result["citations"] == [{"label": "[0:08]", "seconds": 8}]
        assert result["searches"] == ["music"]

    @pytest.mark.asyncio
    async def test_history_is_kept_per_video(self, make_provider, open_session: VideoSession) -> None:
        """Test that a second question reuses the conversation."""
        provider = make_provider([[ProviderTextDelta("One")], [ProviderTextDelta("Two")]])

        with patch("tubescope.server.create_chat_provider", return_value=provider) as factory:
            await unwrap(server.ask_video)("first?")
            await unwrap(server.ask_video)("second?")

        factory.assert_called_once()
        assert [message.content for message in provider.calls[1]["messages"]] == [
            "first?",
            "One",
            "second?",
        ]

    @pytest.mark.asyncio
    async def test_provider_error(self, make_provider, open_session: VideoSession) -> None:
        """Test that a failed generation returns an error and no answer."""
        provider = make_provider([[GenerationFailure("invalid api key")]])

        with patch("tubescope.server.create_chat_provider", return_value=provider):
            result = await unwrap(server.ask_video)("anything?")

        assert result["error"] == "invalid api key"
        assert "answer" not in result

    @pytest.mark.asyncio
    async def test_missing_key(self, open_session: VideoSession) -> None:
        """Test the error returned when the provider cannot be built."""
        with patch(
            "tubescope.server.create_chat_provider",
            side_effect=GenerationFailure("No API key configured for OpenAI"),
        ):
            result = await unwrap(server.ask_video)("anything?", provider="openai")

        assert result["error"] == "No API key configured for OpenAI"


class TestListChatProviders:
    """Tests for list_chat_providers tool."""

    def test_lists_available_providers(self) -> None:
        """Test the provider and model listing."""
        with patch("tubescope.server.available_providers", return_value=[get_provider("ollama")]):
            result = unwrap(server.list_chat_providers)()

        assert [provider["id"] for provider in result] == ["ollama"]
        assert result[0]["models"][0] == {"id": "llama3.2", "label": "Llama 3.2"}


class TestGetTranscriptPage:
    """Tests for the get_transcript_page tool."""

    @pytest.fixture(autouse=True)
    def _setup_and_teardown(self) -> None:
        """Clear cache before and after each test."""
        cache.clear()
        yield
        cache.clear()

    @pytest.mark.asyncio
    async def test_unknown_reference(self) -> None:
        """Test that invalid reference returns error dict."""
        result = await unwrap(server.get_transcript_page)("nonexistent:ref")

        assert "error" in result
        assert result["ref_id"] == "nonexistent:ref"

    @pytest.mark.asyncio
    async def test_pages_over_chunks(self, sample_chunks: list[Chunk]) -> None:
        """Test that page and page_size count transcript chunks."""
        transcript = {
            "video_id": "dQw4w9WgXcQ",
            "track": {"language_code": "en", "kind": "", "name": "English"},
            "track_count": 1,
            "cue_count": 20,
            "chunk_count": len(sample_chunks),
            "chunks": [chunk.to_dict() for chunk in sample_chunks],
            "diagnostics": [],
        }
        reference = cache.set("transcript:dQw4w9WgXcQ", transcript, namespace="public")

        result = await unwrap(server.get_transcript_page)(reference.ref_id, page=2, page_size=2)

        assert result["video_id"] == "dQw4w9WgXcQ"
        assert [item["index"] for item in result["items"]] == [2, 3]
        assert result["total_items"] == len(sample_chunks)
        assert result["page"] == 2
        assert result["total_pages"] == math.ceil(len(sample_chunks) / 2)

    @pytest.mark.asyncio
    async def test_non_transcript_reference(self) -> None:
        """Test that a reference to some other value is rejected."""
        reference = cache.set("numbers", [1, 2, 3], namespace="public")

        result = await unwrap(server.get_transcript_page)(reference.ref_id)

        assert result["error"] == "Reference does not hold a transcript"


class TestMain:
    """Tests for the main entry point."""

    def test_main_with_stdio_transport(self) -> None:
        """Test main function with stdio transport."""
        with (
            patch("sys.argv", ["tubescope-mcp"]),
            patch("tubescope.server.mcp.run") as mock_run,
        ):
            server.main()

            mock_run.assert_called_once_with(transport="stdio")

    def test_main_with_sse_transport(self) -> None:
        """Test main function with SSE transport."""
        with (
            patch("sys.argv", ["tubescope-mcp", "--transport", "sse", "--port", "9000"]),
            patch("tubescope.server.mcp.run") as mock_run,
        ):
            server.main()

            mock_run.assert_called_once_with(transport="sse", host="127.0.0.1", port=9000)
