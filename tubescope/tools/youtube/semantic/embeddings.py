"""Chunk embeddings.

The embedding collaborator is any LangChain ``Embeddings`` implementation;
by default Nomic Matryoshka embeddings configured from SemanticSearchConfig.

Embedding a transcript is one suspend point per chunk, so ``EmbeddingJob``
runs it as a background task that publishes percentage progress. A caller
can render progress, detach from the stream, or cancel the job without the
job knowing anything about who is watching.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from functools import lru_cache
from typing import TYPE_CHECKING

from langchain_nomic import NomicEmbeddings

from tubescope.tools.youtube.models import Chunk, EmbeddedChunk
from tubescope.tools.youtube.semantic.config import (
    SemanticSearchConfig,
    get_semantic_config,
)

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

_DONE = object()


class EmbeddingFailure(RuntimeError):
    """The embedding collaborator failed while indexing a transcript."""


def create_embeddings(config: SemanticSearchConfig) -> Embeddings:
    """Create Nomic embeddings from configuration.

    Args:
        config: Semantic search configuration.

    Returns:
        A LangChain Embeddings instance.
    """
    return NomicEmbeddings(
        model=config.embedding_model,
        dimensionality=config.embedding_dimensionality,
        inference_mode=config.embedding_inference_mode,
    )


@lru_cache
def get_embeddings() -> Embeddings:
    """Get the cached process-wide embeddings instance."""
    return create_embeddings(get_semantic_config())


async def embed_text(text: str, embeddings: Embeddings) -> list[float]:
    """Embed one string with the collaborator's async query path."""
    return list(await embeddings.aembed_query(text))


async def embed_document(text: str, embeddings: Embeddings) -> list[float]:
    """Embed one transcript chunk with the collaborator's document path.

    Nomic embeds documents and queries with different task prefixes, so
    chunks must not go through ``embed_text``.
    """
    vectors = await embeddings.aembed_documents([text])
    return list(vectors[0])


class EmbeddingJob:
    """Background embedding of a chunk list with a progress stream.

    Example:
        >>> job = EmbeddingJob(chunks, get_embeddings()).start()
        >>> async for pct in job.progress():
        ...     print(f"{pct}%")
        >>> embedded = await job.result()
    """

    def __init__(self, chunks: list[Chunk], embeddings: Embeddings) -> None:
        self.chunks = list(chunks)
        self.embeddings = embeddings
        self.percent = 0
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[list[EmbeddedChunk]] | None = None

    def _ensure_task(self) -> asyncio.Task[list[EmbeddedChunk]]:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self._task

    def start(self) -> EmbeddingJob:
        self._ensure_task()
        return self

    async def _run(self) -> list[EmbeddedChunk]:
        embedded: list[EmbeddedChunk] = []
        total = len(self.chunks)
        try:
            for position, chunk in enumerate(self.chunks):
                try:
                    vector = await embed_document(chunk.text, self.embeddings)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    raise EmbeddingFailure(
                        f"Embedding failed at chunk {chunk.index}: {e}"
                    ) from e
                embedded.append(EmbeddedChunk.from_chunk(chunk, vector))
                self.percent = round((position + 1) / total * 100)
                self._queue.put_nowait(self.percent)
        finally:
            self._queue.put_nowait(_DONE)
        return embedded

    async def progress(self) -> AsyncIterator[int]:
        """Yield percentage updates until the job ends (successfully or not)."""
        while True:
            item = await self._queue.get()
            if item is _DONE:
                return
            yield int(item)  # type: ignore[call-overload]

    async def result(self) -> list[EmbeddedChunk]:
        """Wait for the embedded chunks.

        Raises:
            EmbeddingFailure: If the collaborator errored.
            asyncio.CancelledError: If the job was cancelled.
        """
        return await self._ensure_task()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            # A task cancelled before its first step never reaches its finally.
            self._queue.put_nowait(_DONE)

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()


async def embed_chunks(
    chunks: list[Chunk],
    embeddings: Embeddings,
    on_progress: Callable[[int], None] | None = None,
) -> list[EmbeddedChunk]:
    """Embed every chunk, reporting progress through an optional callback.

    Raises:
        EmbeddingFailure: If the collaborator errored.
    """
    job = EmbeddingJob(chunks, embeddings).start()
    async for percent in job.progress():
        if on_progress is not None:
            on_progress(percent)
    embedded = await job.result()
    logger.debug(f"Embedded {len(embedded)} chunks")
    return embedded
