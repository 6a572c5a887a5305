"""Per-video session state.

A ``VideoSession`` is an immutable snapshot of one loaded video: its chunks,
optionally their embeddings, and how they were acquired. Queries always run
against the snapshot handed to them, so replacing the current session while
a query is in flight cannot change that query's view.

``VideoController`` owns the single "current video" reference and runs the
load pipeline (resolve -> fetch -> chunk -> optionally embed). A load that is
superseded by a newer ``open`` or by ``close`` finishes quietly and its
result is never installed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from tubescope.config import Settings, get_settings
from tubescope.tools.youtube.diagnostics import Diagnostics
from tubescope.tools.youtube.models import Chunk, EmbeddedChunk, SearchResult, TimelineBlock, Track
from tubescope.tools.youtube.semantic.config import SemanticSearchConfig, get_semantic_config
from tubescope.tools.youtube.semantic.embeddings import EmbeddingFailure, embed_chunks
from tubescope.tools.youtube.semantic.search import exact_search, hybrid_search
from tubescope.tools.youtube.semantic.segmenter import SegmentationMethod, segment_with_method
from tubescope.tools.youtube.transcripts import fetch_transcript

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoSession:
    """Snapshot of a loaded video's retrieval state."""

    video_id: str
    chunks: tuple[Chunk, ...]
    embedded: tuple[EmbeddedChunk, ...] | None = None
    embeddings: Embeddings | None = None
    track: Track | None = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    config: SemanticSearchConfig = field(default_factory=get_semantic_config)

    @property
    def semantic_ready(self) -> bool:
        return bool(self.embedded) and self.embeddings is not None

    @property
    def retrieval_chunks(self) -> tuple[Chunk, ...]:
        """Embedded chunks when available, plain chunks otherwise."""
        return self.embedded if self.embedded else self.chunks

    def without_embeddings(self) -> VideoSession:
        return VideoSession(
            video_id=self.video_id,
            chunks=self.chunks,
            track=self.track,
            diagnostics=self.diagnostics,
            config=self.config,
        )

    async def search(self, query: str, top_k: int | None = None) -> list[SearchResult]:
        """Hybrid search when embeddings exist, exact search otherwise.

        A failure embedding the query degrades this call to exact search.
        """
        embedded, embeddings = self.embedded, self.embeddings
        if not embedded or embeddings is None:
            return exact_search(query, self.chunks)
        try:
            return await hybrid_search(
                query,
                embedded,
                embeddings,
                top_k=top_k or self.config.search_top_k,
                threshold=self.config.semantic_score_threshold,
            )
        except Exception as e:
            logger.warning(f"Semantic query failed for {self.video_id}, using exact search: {e}")
            return exact_search(query, self.chunks)

    def timeline(self) -> tuple[list[TimelineBlock], SegmentationMethod]:
        return segment_with_method(self.retrieval_chunks, self.semantic_ready, self.config)


class VideoController:
    """Loads videos and holds the current session.

    Attributes:
        current: The installed session, or None before the first load / after close.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        config: SemanticSearchConfig | None = None,
        embeddings_factory: Callable[[], Embeddings] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.config = config or get_semantic_config()
        self.embeddings_factory = embeddings_factory
        self.client = client
        self.current: VideoSession | None = None
        self._generation = 0

    @property
    def semantic_enabled(self) -> bool:
        return self.settings.semantic_search_enabled and self.embeddings_factory is not None

    def snapshot(self) -> VideoSession | None:
        return self.current

    def close(self) -> None:
        """Detach from the current video; in-flight loads will be discarded."""
        self._generation += 1
        self.current = None

    async def open(
        self,
        video_id: str,
        *,
        page_html: str | None = None,
        on_progress: Callable[[int], None] | None = None,
    ) -> VideoSession:
        """Run the load pipeline for a video.

        Returns:
            The loaded session. It becomes ``current`` only if no newer
            ``open``/``close`` happened meanwhile.

        Raises:
            AcquisitionFailure: If the transcript could not be acquired.
        """
        self._generation += 1
        generation = self._generation

        transcript = await fetch_transcript(
            video_id,
            client=self.client,
            settings=self.settings,
            page_html=page_html,
            target_words=self.config.chunk_target_words,
        )

        embedded: list[EmbeddedChunk] | None = None
        embeddings: Embeddings | None = None
        factory = self.embeddings_factory if self.settings.semantic_search_enabled else None
        if factory is not None:
            try:
                embeddings = factory()
                embedded = await embed_chunks(transcript.chunks, embeddings, on_progress)
                transcript.diagnostics.ok("Embed chunks", f"{len(embedded)} chunks embedded")
            except EmbeddingFailure as e:
                logger.warning(f"Embedding failed for {transcript.video_id}; exact search only: {e}")
                transcript.diagnostics.warn("Embed chunks", f"{e} - semantic search disabled")
                embedded, embeddings = None, None
            except Exception as e:
                logger.warning(f"Embeddings unavailable for {transcript.video_id}: {e}")
                transcript.diagnostics.warn("Embed chunks", f"Embeddings unavailable: {e}")
                embedded, embeddings = None, None

        session = VideoSession(
            video_id=transcript.video_id,
            chunks=tuple(transcript.chunks),
            embedded=tuple(embedded) if embedded else None,
            embeddings=embeddings,
            track=transcript.track,
            diagnostics=transcript.diagnostics,
            config=self.config,
        )

        if generation != self._generation:
            logger.info(f"Discarding stale load of {transcript.video_id}")
            return session

        self.current = session
        return session
