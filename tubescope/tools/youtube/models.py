"""Core transcript data types.

Cues come straight from the upstream timed-text payloads. Chunks are merged
runs of cues and are the unit of retrieval; their ``index`` is the join key
between search results and positions in the transcript view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

MatchType = Literal["exact", "semantic"]


@dataclass(frozen=True)
class Cue:
    """A single timestamped caption fragment."""

    text: str
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "start": self.start, "duration": self.duration}


@dataclass(frozen=True)
class Chunk:
    """A run of consecutive cues merged up to a word budget."""

    text: str
    start: float
    duration: float
    index: int

    @property
    def end(self) -> float:
        return self.start + self.duration

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "text": self.text,
            "start": self.start,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class EmbeddedChunk(Chunk):
    """A chunk carrying its L2-normalized embedding vector."""

    embedding: tuple[float, ...] = ()

    @classmethod
    def from_chunk(cls, chunk: Chunk, embedding: list[float]) -> EmbeddedChunk:
        return cls(
            text=chunk.text,
            start=chunk.start,
            duration=chunk.duration,
            index=chunk.index,
            embedding=tuple(float(value) for value in embedding),
        )


@dataclass(frozen=True)
class Track:
    """One caption stream offered by the upstream player response.

    Attributes:
        base_url: Timed-text locator for the track.
        language_code: BCP-47-ish language code, e.g. "en".
        kind: "asr" for auto-generated tracks, None for manual ones.
        name: Human readable track name.
    """

    base_url: str
    language_code: str
    kind: str | None = None
    name: str = ""

    @property
    def is_manual(self) -> bool:
        return not self.kind

    @classmethod
    def from_caption_track(cls, data: dict[str, Any]) -> Track:
        """Build a Track from an upstream ``captionTracks`` entry."""
        name_data = data.get("name") or {}
        if isinstance(name_data, dict):
            name = name_data.get("simpleText") or "".join(
                run.get("text", "") for run in name_data.get("runs", [])
            )
        else:
            name = str(name_data)
        return cls(
            base_url=str(data.get("baseUrl", "")),
            language_code=str(data.get("languageCode", "")),
            kind=data.get("kind") or None,
            name=name,
        )

    def describe(self) -> str:
        return f"{self.language_code} [{self.kind}]" if self.kind else self.language_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_url": self.base_url,
            "language_code": self.language_code,
            "kind": self.kind or "manual",
            "name": self.name,
        }


@dataclass(frozen=True)
class SearchResult:
    """A ranked hit for one query."""

    chunk: Chunk
    index: int
    score: float
    match_type: MatchType

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "text": self.chunk.text,
            "start": self.chunk.start,
            "duration": self.chunk.duration,
            "score": round(self.score, 4),
            "match_type": self.match_type,
        }


@dataclass
class TimelineBlock:
    """A topic segment of the timeline; ``title`` stays None until generated."""

    start: float
    end: float
    chunks: list[Chunk] = field(default_factory=list)
    title: str | None = None

    @property
    def text(self) -> str:
        return " ".join(chunk.text for chunk in self.chunks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "title": self.title,
            "chunk_indices": [chunk.index for chunk in self.chunks],
        }
