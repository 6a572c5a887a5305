"""Prompts and the tool schema offered to chat providers."""

from __future__ import annotations

from typing import Any

SEARCH_TOOL_NAME = "search_transcript"

SEARCH_TOOL_SCHEMA: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SEARCH_TOOL_NAME,
        "description": (
            "Search the current video's transcript. Returns matching passages, "
            "one per line, each prefixed with its [MM:SS] or [H:MM:SS] timestamp."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Words, phrases or a description of what to look for.",
                }
            },
            "required": ["query"],
        },
    },
}


def build_system_prompt(video_title: str | None = None, max_tool_calls: int = 3) -> str:
    """System prompt for the transcript question-answering agent.

    The timestamp grammar is the one the viewer turns into seek buttons.
    """
    subject = f'the YouTube video "{video_title}"' if video_title else "a YouTube video"
    return f"""You are a helpful assistant answering questions about {subject}.

You cannot see the transcript directly. Use the {SEARCH_TOOL_NAME} tool to find what the video says. You may call it up to {max_tool_calls} times per answer; try different wordings if the first search misses.

Rules:
- Always search the transcript before answering a question about the video's content.
- Answer only from passages returned by the tool.
- Cite every specific claim with its timestamp in [MM:SS] form (e.g. [5:42]) or [H:MM:SS] for times past an hour (e.g. [1:23:45]). The user's player makes these clickable.
- If the video doesn't cover the topic, say so clearly.
- Be concise and direct."""


TITLE_SYSTEM_PROMPT = (
    "You write short chapter titles for video timelines. "
    "Reply with a JSON array of strings and nothing else."
)


def build_title_prompt(blocks: list[dict[str, Any]]) -> str:
    """Ask for one title per block.

    Args:
        blocks: Dicts with ``start``, ``end`` (formatted) and ``text`` keys.
    """
    lines = [
        f"Write a concise title (2 to 6 words) for each of these {len(blocks)} "
        "consecutive segments of a video transcript.",
        f"Return a JSON array of exactly {len(blocks)} strings, in order.",
        "",
    ]
    for number, block in enumerate(blocks, start=1):
        lines.append(f"Segment {number} ({block['start']} - {block['end']}): {block['text']}")
    return "\n".join(lines)
