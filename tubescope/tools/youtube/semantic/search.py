"""Exact and hybrid transcript search.

Hybrid results come in two tiers. Every exact substring hit ranks above
every semantic hit, whatever the semantic score; exact hits keep transcript
order and semantic hits are sorted by descending cosine similarity. A chunk
never appears twice.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

from tubescope.tools.youtube.models import Chunk, EmbeddedChunk, SearchResult
from tubescope.tools.youtube.semantic.config import SEMANTIC_SCORE_THRESHOLD
from tubescope.tools.youtube.semantic.embeddings import embed_text

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 8


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 1.0 if either has zero norm."""
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 1.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def exact_search(query: str, chunks: Sequence[Chunk]) -> list[SearchResult]:
    """Case-insensitive substring search in transcript order.

    A blank query matches nothing.
    """
    needle = query.strip().lower()
    if not needle:
        return []
    return [
        SearchResult(chunk=chunk, index=chunk.index, score=1.0, match_type="exact")
        for chunk in chunks
        if needle in chunk.text.lower()
    ]


def semantic_search(
    query_vector: Sequence[float],
    chunks: Sequence[EmbeddedChunk],
    top_k: int = DEFAULT_TOP_K,
) -> list[tuple[EmbeddedChunk, float]]:
    """Return the ``top_k`` chunks most similar to the query vector."""
    scored = [(chunk, cosine_similarity(query_vector, chunk.embedding)) for chunk in chunks]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:top_k]


async def hybrid_search(
    query: str,
    chunks: Sequence[EmbeddedChunk],
    embeddings: Embeddings,
    top_k: int = DEFAULT_TOP_K,
    threshold: float = SEMANTIC_SCORE_THRESHOLD,
) -> list[SearchResult]:
    """Exact matches first, then thresholded semantic matches.

    Args:
        query: Free-text query.
        chunks: Embedded chunks of the current video.
        embeddings: Collaborator used to embed the query.
        top_k: Semantic candidates considered before thresholding.
        threshold: Semantic candidates must score strictly above this.

    Returns:
        Deduplicated results, exact tier then semantic tier.
    """
    if not query.strip():
        return []

    exact = exact_search(query, chunks)
    seen = {result.index for result in exact}

    query_vector = await embed_text(query, embeddings)
    semantic: list[SearchResult] = []
    for chunk, score in semantic_search(query_vector, chunks, top_k):
        if chunk.index in seen or score <= threshold:
            continue
        seen.add(chunk.index)
        semantic.append(
            SearchResult(chunk=chunk, index=chunk.index, score=score, match_type="semantic")
        )
    semantic.sort(key=lambda result: result.score, reverse=True)

    logger.debug(
        f"Hybrid search {query!r}: {len(exact)} exact, {len(semantic)} semantic"
    )
    return exact + semantic


def highlight_text(text: str, query: str) -> str:
    """Wrap case-insensitive occurrences of ``query`` in <mark> tags."""
    if not query.strip():
        return text
    pattern = re.compile(f"({re.escape(query)})", re.IGNORECASE)
    return pattern.sub(r"<mark>\1</mark>", text)
