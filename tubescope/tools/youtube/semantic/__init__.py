"""Transcript retrieval and segmentation.

Provides word-budget chunking, Nomic embeddings, exact + semantic hybrid
search and timeline segmentation over a single video's transcript. Nothing
is persisted except timeline titles.

Components:
    SemanticSearchConfig: Pydantic settings for embeddings, search and segmentation.
    TranscriptChunker: Merges cues into chunks of about ``chunk_target_words`` words.
    get_embeddings: Factory for NomicEmbeddings with Matryoshka dimensionality.
    hybrid_search: Exact matches first, then semantic matches above the threshold.
    segment_timeline: TextTiling-style blocks, or fixed-duration cuts.

Session state and the agent-facing ``search_tool`` live in ``session`` and
``tools`` and are imported from there directly.
"""

from tubescope.tools.youtube.semantic.chunker import TranscriptChunker, chunk_cues
from tubescope.tools.youtube.semantic.config import (
    SemanticSearchConfig,
    get_semantic_config,
)
from tubescope.tools.youtube.semantic.embeddings import (
    EmbeddingFailure,
    create_embeddings,
    get_embeddings,
)
from tubescope.tools.youtube.semantic.search import exact_search, hybrid_search
from tubescope.tools.youtube.semantic.segmenter import segment_timeline

__all__ = [
    "EmbeddingFailure",
    "SemanticSearchConfig",
    "TranscriptChunker",
    "chunk_cues",
    "create_embeddings",
    "exact_search",
    "get_embeddings",
    "get_semantic_config",
    "hybrid_search",
    "segment_timeline",
]
