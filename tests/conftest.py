"""Pytest configuration and fixtures for tubescope tests."""

from __future__ import annotations

import json
import math
from collections.abc import AsyncIterator, Callable, Sequence
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from langchain_core.embeddings import Embeddings

from tubescope.agent.events import ChatMessage, ProviderEvent
from tubescope.config import Settings
from tubescope.tools.youtube.models import Chunk, Cue
from tubescope.tools.youtube.semantic.config import SemanticSearchConfig

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def clear_cached_singletons() -> Generator[None, None, None]:
    """Clear lru_cache on settings, config and embeddings between tests.

    A test that reads the real singleton would otherwise leak it into a
    later test that patches the environment.
    """
    from tubescope.config import get_settings
    from tubescope.tools.youtube.semantic.config import get_semantic_config
    from tubescope.tools.youtube.semantic.embeddings import get_embeddings

    get_settings.cache_clear()
    get_semantic_config.cache_clear()
    get_embeddings.cache_clear()

    yield

    get_settings.cache_clear()
    get_semantic_config.cache_clear()
    get_embeddings.cache_clear()


# =============================================================================
# Fakes
# =============================================================================


class KeywordEmbeddings(Embeddings):
    """Deterministic embeddings: one dimension per keyword stem.

    A text's vector counts the stems it contains (case-insensitive substring
    match), plus a trailing "other" dimension set when none match. Vectors
    are L2-normalized. ``calls`` records every embedded text; the document
    and query paths are also recorded separately.
    """

    def __init__(self, stems: Sequence[str]) -> None:
        self.stems = [stem.lower() for stem in stems]
        self.calls: list[str] = []
        self.document_calls: list[str] = []
        self.query_calls: list[str] = []

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        vector = [float(lowered.count(stem)) for stem in self.stems]
        vector.append(0.0 if any(vector) else 1.0)
        norm = math.sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.extend(texts)
        self.document_calls.extend(texts)
        return [self._vector(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        self.calls.append(text)
        self.query_calls.append(text)
        return self._vector(text)


class FailingEmbeddings(Embeddings):
    """Embeddings that fail after ``fail_after`` successful calls."""

    def __init__(self, fail_after: int = 0) -> None:
        self.fail_after = fail_after
        self.count = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        if self.count >= self.fail_after:
            raise RuntimeError("embedding service unavailable")
        self.count += 1
        return [1.0, 0.0]


class ScriptedProvider:
    """Chat provider that replays a scripted list of steps.

    Each step is a list of provider events; an exception instance in a step
    is raised at that point in the stream. Every call is recorded.
    """

    def __init__(self, steps: Sequence[Sequence[ProviderEvent | Exception]]) -> None:
        self.steps = [list(step) for step in steps]
        self.calls: list[dict[str, Any]] = []

    async def stream(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ProviderEvent]:
        self.calls.append(
            {"system": system, "messages": list(messages), "tools": tools}
        )
        step = self.steps.pop(0) if self.steps else []
        for item in step:
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture
def keyword_embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings(["cach", "database", "music"])


# =============================================================================
# Data fixtures
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment's .env file."""
    return Settings(_env_file=None, title_cache_directory=str(tmp_path / "titles"))


@pytest.fixture
def semantic_config() -> SemanticSearchConfig:
    return SemanticSearchConfig()


@pytest.fixture
def sample_cues() -> list[Cue]:
    return [
        Cue("we talk about cache invalidation", 0.0, 4.0),
        Cue("the database stores rows", 4.0, 4.0),
        Cue("music is nice", 8.0, 4.0),
        Cue("cache and database together", 12.0, 4.0),
    ]


@pytest.fixture
def sample_chunks(sample_cues: list[Cue]) -> list[Chunk]:
    return [
        Chunk(text=cue.text, start=cue.start, duration=cue.duration, index=position)
        for position, cue in enumerate(sample_cues)
    ]


# =============================================================================
# Upstream HTTP fixtures
# =============================================================================

TIMEDTEXT_URL = "https://www.youtube.com/api/timedtext?v=dQw4w9WgXcQ&lang=en&exp=xpe&sig=abc"

PLAYER_RESPONSE: dict[str, Any] = {
    "captions": {
        "playerCaptionsTracklistRenderer": {
            "captionTracks": [
                {
                    "baseUrl": TIMEDTEXT_URL,
                    "languageCode": "en",
                    "kind": "asr",
                    "name": {"runs": [{"text": "English (auto-generated)"}]},
                },
                {
                    "baseUrl": "https://www.youtube.com/api/timedtext?v=dQw4w9WgXcQ&lang=de",
                    "languageCode": "de",
                    "name": {"simpleText": "German"},
                },
            ]
        }
    }
}

LEGACY_XML = (
    '<?xml version="1.0" encoding="utf-8" ?><transcript>'
    '<text start="0.5" dur="2.0">hello &amp;amp; welcome</text>'
    '<text start="2.5" dur="3.0">to the show</text>'
    "</transcript>"
)

JSON3_BODY = json.dumps(
    {
        "events": [
            {"tStartMs": 0, "dDurationMs": 1500, "segs": [{"utf8": "hello"}]},
            {"tStartMs": 1500, "dDurationMs": 2000, "segs": [{"utf8": "world"}, {"utf8": "\n"}]},
            {"tStartMs": 3500, "dDurationMs": 100},
        ]
    }
)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def upstream_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def upstream(upstream_requests: list[httpx.Request]) -> Callable[..., httpx.AsyncClient]:
    """Build a mock upstream.

    Keyword arguments choose each endpoint's behaviour: ``player`` (JSON or
    status code), ``watch_html``, ``json3`` and ``xml`` bodies.
    """

    def build(
        player: dict[str, Any] | int = PLAYER_RESPONSE,
        watch_html: str = "<html></html>",
        json3: str = "",
        xml: str = LEGACY_XML,
    ) -> httpx.AsyncClient:
        def handler(request: httpx.Request) -> httpx.Response:
            upstream_requests.append(request)
            if request.method == "POST":
                if isinstance(player, int):
                    return httpx.Response(player, json={"error": "denied"})
                return httpx.Response(200, json=player)
            if request.url.path == "/watch":
                return httpx.Response(200, text=watch_html)
            if request.url.params.get("fmt") == "json3":
                return httpx.Response(200, content=json3.encode())
            return httpx.Response(200, content=xml.encode())

        return make_client(handler)

    return build


@pytest.fixture
def player_response() -> dict[str, Any]:
    return json.loads(json.dumps(PLAYER_RESPONSE))


@pytest.fixture
def timedtext_url() -> str:
    return TIMEDTEXT_URL


@pytest.fixture
def make_provider() -> type[ScriptedProvider]:
    """The scripted provider class, for tests to build with their own steps."""
    return ScriptedProvider


@pytest.fixture
def failing_embeddings() -> FailingEmbeddings:
    return FailingEmbeddings()


@pytest.fixture
def json3_body() -> str:
    return JSON3_BODY


@pytest.fixture
def legacy_xml() -> str:
    return LEGACY_XML
