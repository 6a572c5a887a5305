"""Agent-facing transcript search.

``search_tool`` is what the chat agent's ``search_transcript`` capability
executes. It never raises: when there is no session to search, or the
search itself fails, it returns a literal sentence the model can read and
keep generating from.

Output is one passage per line, prefixed with the timestamp grammar the
viewer turns into seek buttons:

    [1:05] and that is why the cache is invalidated here
    [1:02:10] to recap the whole talk
"""

from __future__ import annotations

import logging

from tubescope.tools.youtube.models import SearchResult
from tubescope.tools.youtube.semantic.session import VideoSession
from tubescope.tools.youtube.transcripts import format_timestamp

logger = logging.getLogger(__name__)

NO_SESSION_MESSAGE = (
    "No transcript is loaded for the current video, so the transcript could not be searched."
)
NO_RESULTS_MESSAGE = "No matching transcript passages found."


def format_results(results: list[SearchResult], limit: int) -> str:
    lines = [
        f"[{format_timestamp(result.chunk.start)}] {result.chunk.text}"
        for result in results[:limit]
    ]
    return "\n".join(lines)


async def search_tool(query: str, session: VideoSession | None) -> str:
    """Search the given session's transcript and format hits for the model.

    Args:
        query: The model's search query.
        session: Snapshot of the video to search, passed explicitly by the caller.

    Returns:
        Up to ``tool_max_results`` timestamped lines, or an explanatory sentence.
    """
    if session is None:
        return NO_SESSION_MESSAGE

    try:
        results = await session.search(query)
    except Exception as e:
        logger.warning(f"search_transcript failed for {session.video_id}: {e}")
        return NO_RESULTS_MESSAGE

    if not results:
        return NO_RESULTS_MESSAGE

    logger.debug(f"search_transcript {query!r}: {len(results)} result(s)")
    return format_results(results, session.config.tool_max_results)
