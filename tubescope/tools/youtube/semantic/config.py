"""Configuration for transcript chunking, search and segmentation.

Settings cover:
- The Nomic embedding model and its Matryoshka output size
- Word-budget chunking
- Hybrid search cutoffs
- Topic segmentation windows and durations
- Agent tool budget

Environment Variables:
    SEMANTIC_EMBEDDING_MODEL: Embedding model name (default: nomic-embed-text-v1.5)
    SEMANTIC_EMBEDDING_DIMENSIONALITY: Matryoshka dimension (default: 512)
    SEMANTIC_EMBEDDING_INFERENCE_MODE: local, remote, or dynamic (default: local)
    SEMANTIC_CHUNK_TARGET_WORDS: Words per chunk before it is closed (default: 80)
    SEMANTIC_SEARCH_TOP_K: Semantic candidates considered per query (default: 8)
    SEMANTIC_SEMANTIC_SCORE_THRESHOLD: Minimum cosine score for semantic hits (default: 0.3)
    SEMANTIC_WINDOW_SIZE: Chunks per side when scoring boundaries (default: 3)
    SEMANTIC_MIN_BLOCK_SECONDS: Duration floor between boundaries (default: 90)
    SEMANTIC_TARGET_BLOCK_SECONDS: Target block duration (default: 150)
    SEMANTIC_TOOL_MAX_RESULTS: Lines returned to the chat agent (default: 15)
    SEMANTIC_AGENT_MAX_TOOL_CALLS: Tool calls allowed per chat turn (default: 3)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SEMANTIC_SCORE_THRESHOLD = 0.3


class SemanticSearchConfig(BaseSettings):
    """Configuration for chunking, hybrid search and timeline segmentation."""

    model_config = SettingsConfigDict(
        env_prefix="SEMANTIC_",
        case_sensitive=False,
        extra="ignore",
    )

    # Embedding model configuration
    embedding_model: str = Field(
        default="nomic-embed-text-v1.5",
        description="Nomic model used for chunk and query vectors.",
    )
    embedding_dimensionality: Literal[64, 128, 256, 512, 768] = Field(
        default=512,
        description="Matryoshka output size; smaller vectors compare faster.",
    )
    embedding_inference_mode: Literal["local", "remote", "dynamic"] = Field(
        default="local",
        description="Where Nomic runs: on this machine, via the API, or whichever is available.",
    )

    # Chunking configuration
    chunk_target_words: int = Field(
        default=80,
        ge=1,
        le=2000,
        description="A chunk is closed once its buffer reaches this many words.",
    )

    # Search configuration
    search_top_k: int = Field(
        default=8,
        ge=1,
        le=200,
        description="Number of semantic candidates taken before thresholding.",
    )
    semantic_score_threshold: float = Field(
        default=SEMANTIC_SCORE_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Semantic hits must score strictly above this cosine similarity.",
    )

    # Segmentation configuration
    window_size: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Chunks averaged on each side of a candidate boundary.",
    )
    min_block_seconds: float = Field(
        default=90.0,
        gt=0,
        description="No two boundaries (or a boundary and either end) may be closer than this.",
    )
    target_block_seconds: float = Field(
        default=150.0,
        gt=0,
        description="Target block duration used for the block count and the fixed cut.",
    )
    min_blocks: int = Field(default=2, ge=1)
    max_blocks: int = Field(default=25, ge=1)

    # Agent configuration
    tool_max_results: int = Field(
        default=15,
        ge=1,
        le=100,
        description="Maximum transcript lines returned by one search tool call.",
    )
    agent_max_tool_calls: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Tool invocations allowed before the final text-only step.",
    )
    title_text_chars: int = Field(
        default=600,
        ge=50,
        le=5000,
        description="Transcript characters per block sent for title generation.",
    )

    @model_validator(mode="after")
    def check_segmentation_bounds(self) -> SemanticSearchConfig:
        """Ensure block bounds and durations are consistent."""
        if self.min_blocks > self.max_blocks:
            raise ValueError("min_blocks must not exceed max_blocks")
        if self.min_block_seconds > self.target_block_seconds:
            raise ValueError("min_block_seconds must not exceed target_block_seconds")
        return self


@lru_cache
def get_semantic_config() -> SemanticSearchConfig:
    """Process-wide SemanticSearchConfig read from SEMANTIC_* variables."""
    return SemanticSearchConfig()
