"""tubescope - YouTube transcript retrieval, timelines and chat as an MCP server."""

from importlib.metadata import version

from tubescope.tools.youtube.semantic.search import exact_search, hybrid_search
from tubescope.tools.youtube.semantic.segmenter import segment_timeline
from tubescope.tools.youtube.semantic.tools import search_tool
from tubescope.tools.youtube.tracks import resolve_tracks
from tubescope.tools.youtube.transcripts import TranscriptResult, fetch_transcript

# Package name must match [project].name in pyproject.toml
__version__ = version("tubescope-mcp")

__all__ = [
    "TranscriptResult",
    "__version__",
    "exact_search",
    "fetch_transcript",
    "hybrid_search",
    "resolve_tracks",
    "search_tool",
    "segment_timeline",
]
