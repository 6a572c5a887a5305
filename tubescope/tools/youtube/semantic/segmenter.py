"""Topic segmentation of a chunked transcript into timeline blocks.

Two methods:

semantic
    Boundary detection over the similarity signal between adjacent windows
    of chunk embeddings. For each interior position ``i`` the mean embedding
    of the ``W`` chunks before ``i`` is compared with the mean of the ``W``
    chunks from ``i`` on. Local minima of that curve are topic breaks; the
    deepest are accepted first, subject to a minimum spacing from the video
    start, the video end and every boundary already accepted.

fixed
    Cut whenever the duration accumulated since the last cut reaches the
    target block duration. Used when there are no embeddings or too few
    chunks to fill both windows.

Either way the result holds between ``min_blocks`` and ``max_blocks`` blocks
whenever there are at least two chunks.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Literal

from tubescope.tools.youtube.models import Chunk, EmbeddedChunk, TimelineBlock
from tubescope.tools.youtube.semantic.config import (
    SemanticSearchConfig,
    get_semantic_config,
)
from tubescope.tools.youtube.semantic.search import cosine_similarity

logger = logging.getLogger(__name__)

SegmentationMethod = Literal["semantic", "fixed"]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def total_duration(chunks: Sequence[Chunk]) -> float:
    if not chunks:
        return 0.0
    return max(chunk.end for chunk in chunks) - chunks[0].start


def target_block_count(duration: float, config: SemanticSearchConfig | None = None) -> int:
    """Number of blocks to aim for: duration / target, clamped to the bounds."""
    config = config or get_semantic_config()
    estimate = _round_half_up(duration / config.target_block_seconds)
    return max(config.min_blocks, min(config.max_blocks, estimate))


def segmentation_method(
    chunks: Sequence[Chunk],
    embeddings_present: bool,
    config: SemanticSearchConfig | None = None,
) -> SegmentationMethod:
    """Which method ``segment_timeline`` will attempt for these inputs."""
    config = config or get_semantic_config()
    if not embeddings_present or len(chunks) < 2 * config.window_size + 2:
        return "fixed"
    if not all(isinstance(chunk, EmbeddedChunk) and chunk.embedding for chunk in chunks):
        return "fixed"
    return "semantic"


# =============================================================================
# Semantic boundary detection
# =============================================================================


def mean_vector(vectors: Sequence[Sequence[float]]) -> list[float]:
    if not vectors:
        return []
    dimensions = len(vectors[0])
    sums = [0.0] * dimensions
    for vector in vectors:
        for position, value in enumerate(vector):
            sums[position] += value
    return [value / len(vectors) for value in sums]


def boundary_scores(
    chunks: Sequence[EmbeddedChunk], window: int
) -> list[tuple[int, float]]:
    """Similarity between the windows either side of each interior position.

    Returns:
        ``(position, score)`` pairs for positions ``window .. n - window``;
        a boundary at ``position`` means a cut right before that chunk.
    """
    scores: list[tuple[int, float]] = []
    for position in range(window, len(chunks) - window + 1):
        before = mean_vector([chunk.embedding for chunk in chunks[position - window : position]])
        after = mean_vector([chunk.embedding for chunk in chunks[position : position + window]])
        scores.append((position, cosine_similarity(before, after)))
    return scores


def find_local_minima(scores: Sequence[tuple[int, float]]) -> list[tuple[int, float]]:
    """Points scoring strictly below both neighbours on the curve."""
    return [
        scores[k]
        for k in range(1, len(scores) - 1)
        if scores[k][1] < scores[k - 1][1] and scores[k][1] < scores[k + 1][1]
    ]


def select_boundaries(
    chunks: Sequence[Chunk],
    minima: Sequence[tuple[int, float]],
    max_boundaries: int,
    min_spacing: float,
) -> list[int]:
    """Greedily accept the deepest minima that respect the spacing floor.

    Returns:
        Accepted chunk positions in ascending order.
    """
    video_start = chunks[0].start
    video_end = max(chunk.end for chunk in chunks)
    accepted: list[int] = []

    for position, _score in sorted(minima, key=lambda pair: pair[1]):
        if len(accepted) >= max_boundaries:
            break
        timestamp = chunks[position].start
        if timestamp - video_start < min_spacing or video_end - timestamp < min_spacing:
            continue
        if any(abs(timestamp - chunks[other].start) < min_spacing for other in accepted):
            continue
        accepted.append(position)

    return sorted(accepted)


def blocks_from_boundaries(chunks: Sequence[Chunk], boundaries: Sequence[int]) -> list[TimelineBlock]:
    cuts = [0, *boundaries, len(chunks)]
    blocks: list[TimelineBlock] = []
    for begin, finish in zip(cuts, cuts[1:]):
        members = list(chunks[begin:finish])
        if members:
            blocks.append(
                TimelineBlock(
                    start=members[0].start,
                    end=max(chunk.end for chunk in members),
                    chunks=members,
                )
            )
    return blocks


def semantic_segments(
    chunks: Sequence[EmbeddedChunk], config: SemanticSearchConfig
) -> list[TimelineBlock] | None:
    """Segment with boundary detection; None when no boundary survives."""
    target = target_block_count(total_duration(chunks), config)
    minima = find_local_minima(boundary_scores(chunks, config.window_size))
    boundaries = select_boundaries(chunks, minima, target - 1, config.min_block_seconds)
    logger.debug(
        f"Semantic segmentation: {len(minima)} minima, "
        f"{len(boundaries)} accepted, target {target} blocks"
    )
    if not boundaries:
        return None
    return blocks_from_boundaries(chunks, boundaries)


# =============================================================================
# Fixed-duration fallback
# =============================================================================


def fixed_segments(chunks: Sequence[Chunk], config: SemanticSearchConfig) -> list[TimelineBlock]:
    """Cut every ``target_block_seconds`` of accumulated duration."""
    if not chunks:
        return []

    duration = total_duration(chunks)
    block_seconds = max(config.target_block_seconds, duration / config.max_blocks)

    boundaries: list[int] = []
    block_start = chunks[0].start
    for position, chunk in enumerate(chunks[:-1]):
        if chunk.end - block_start >= block_seconds:
            boundaries.append(position + 1)
            block_start = chunks[position + 1].start

    # Fold a short tail into the block before it.
    end = max(chunk.end for chunk in chunks)
    if boundaries and end - chunks[boundaries[-1]].start < config.min_block_seconds:
        boundaries.pop()

    if not boundaries and len(chunks) >= 2:
        midpoint = chunks[0].start + duration / 2
        split = next(
            (position for position, chunk in enumerate(chunks) if chunk.start >= midpoint),
            len(chunks) - 1,
        )
        boundaries = [min(max(split, 1), len(chunks) - 1)]

    blocks = blocks_from_boundaries(chunks, boundaries)
    return _cap_blocks(blocks, config.max_blocks)


def _cap_blocks(blocks: list[TimelineBlock], max_blocks: int) -> list[TimelineBlock]:
    """Merge the shortest adjacent pairs until at most ``max_blocks`` remain."""
    while len(blocks) > max_blocks:
        durations = [
            blocks[k + 1].end - blocks[k].start for k in range(len(blocks) - 1)
        ]
        k = durations.index(min(durations))
        merged = TimelineBlock(
            start=blocks[k].start,
            end=max(blocks[k].end, blocks[k + 1].end),
            chunks=blocks[k].chunks + blocks[k + 1].chunks,
        )
        blocks[k : k + 2] = [merged]
    return blocks


# =============================================================================
# Entry point
# =============================================================================


def segment_with_method(
    chunks: Sequence[Chunk],
    embeddings_present: bool,
    config: SemanticSearchConfig | None = None,
) -> tuple[list[TimelineBlock], SegmentationMethod]:
    """Segment and report which method actually produced the blocks."""
    config = config or get_semantic_config()
    if not chunks:
        return [], "fixed"

    if segmentation_method(chunks, embeddings_present, config) == "semantic":
        blocks = semantic_segments(chunks, config)  # type: ignore[arg-type]
        if blocks is not None:
            logger.info(f"Segmented {len(chunks)} chunks into {len(blocks)} semantic blocks")
            return blocks, "semantic"
        logger.debug("No semantic boundary survived the spacing floor; using fixed cuts")

    blocks = fixed_segments(chunks, config)
    logger.info(f"Segmented {len(chunks)} chunks into {len(blocks)} fixed blocks")
    return blocks, "fixed"


def segment_timeline(
    chunks: Sequence[Chunk],
    embeddings_present: bool,
    config: SemanticSearchConfig | None = None,
) -> list[TimelineBlock]:
    """Group chunks into topic blocks.

    Args:
        chunks: Chunks in temporal order; EmbeddedChunk instances for the
            semantic method.
        embeddings_present: Whether chunk embeddings are available.
        config: Optional configuration override.

    Returns:
        Blocks with ``title=None``, covering every chunk in order.
    """
    blocks, _method = segment_with_method(chunks, embeddings_present, config)
    return blocks
