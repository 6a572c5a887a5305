"""Transcript-aware chunker for retrieval.

Caption cues are often sub-sentence fragments. The chunker merges
consecutive cues into chunks sized by a word budget:
- Greedy single pass, never splits a cue
- A chunk closes once its buffer reaches the target word count and the
  next cue starts later than the chunk does
- Start is the first cue's start; duration runs to the last cue's end
- Whitespace-only cues are skipped, nothing else is dropped

Example:
    >>> from tubescope.tools.youtube.semantic.chunker import TranscriptChunker
    >>> from tubescope.tools.youtube.semantic.config import get_semantic_config
    >>> chunker = TranscriptChunker(get_semantic_config())
    >>> chunks = chunker.chunk([Cue("hello", 0.0, 2.0), Cue("world", 2.0, 2.0)])
    >>> chunks[0].text
    'hello world'
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tubescope.tools.youtube.models import Chunk, Cue

if TYPE_CHECKING:
    from tubescope.tools.youtube.semantic.config import SemanticSearchConfig

DEFAULT_TARGET_WORDS = 80


def count_words(text: str) -> int:
    return len(text.split())


def chunk_cues(cues: list[Cue], target_words: int = DEFAULT_TARGET_WORDS) -> list[Chunk]:
    """Merge cues into chunks of roughly ``target_words`` words.

    Args:
        cues: Cues in temporal order.
        target_words: Word count at which the running buffer is closed.

    Returns:
        Chunks indexed from 0 in temporal order.
    """
    if target_words < 1:
        raise ValueError("target_words must be at least 1")

    chunks: list[Chunk] = []
    buffer: list[Cue] = []
    buffer_words = 0

    for cue in cues:
        text = cue.text.strip()
        if not text:
            continue

        # Chunk starts are strictly increasing.
        if buffer_words >= target_words and cue.start > buffer[0].start:
            chunks.append(_finalize_chunk(buffer, len(chunks)))
            buffer = []
            buffer_words = 0

        buffer.append(cue)
        buffer_words += count_words(text)

    if buffer:
        chunks.append(_finalize_chunk(buffer, len(chunks)))

    return chunks


def _finalize_chunk(cues: list[Cue], index: int) -> Chunk:
    start = cues[0].start
    end = max(cue.end for cue in cues)
    return Chunk(
        text=" ".join(cue.text.strip() for cue in cues),
        start=start,
        duration=max(0.0, end - start),
        index=index,
    )


class TranscriptChunker:
    """Word-budget chunker driven by SemanticSearchConfig.

    Attributes:
        config: Semantic search configuration with chunk_target_words.
    """

    def __init__(self, config: SemanticSearchConfig) -> None:
        self.config = config

    @property
    def target_words(self) -> int:
        return self.config.chunk_target_words

    def chunk(self, cues: list[Cue]) -> list[Chunk]:
        """Chunk cues using the configured word budget."""
        return chunk_cues(cues, self.target_words)
