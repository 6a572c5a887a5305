"""Timeline block titles.

Titles are generated by a chat provider after segmentation and cached on
disk per ``(video_id, segmentation method)``. A cache entry only applies
to a timeline with the same number of blocks; anything else is treated as
a miss.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable
from pathlib import Path

from tubescope.agent.events import ChatMessage, ProviderTextDelta
from tubescope.agent.prompts import TITLE_SYSTEM_PROMPT, build_title_prompt
from tubescope.agent.providers import ChatProvider
from tubescope.tools.youtube.models import TimelineBlock
from tubescope.tools.youtube.semantic.config import SemanticSearchConfig, get_semantic_config
from tubescope.tools.youtube.transcripts import format_timestamp

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def cache_key(video_id: str, method: str) -> str:
    return f"{video_id}:{method}"


class TitleCache:
    """One JSON file per ``video_id:method`` key under ``directory``."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path_for(self, video_id: str, method: str) -> Path:
        filename = _UNSAFE_CHARS.sub("_", cache_key(video_id, method))
        return self.directory / f"{filename}.json"

    def get(self, video_id: str, method: str, block_count: int) -> list[str] | None:
        """Cached titles, or None on a miss or block-count mismatch."""
        path = self.path_for(video_id, method)
        if not path.exists():
            return None
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable title cache {path}: {e}")
            return None

        if not isinstance(entry, dict):
            return None
        titles = entry.get("titles")
        if entry.get("block_count") != block_count or not isinstance(titles, list):
            return None
        if len(titles) != block_count:
            return None
        return [str(title) for title in titles]

    def put(self, video_id: str, method: str, titles: list[str]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(video_id, method)
        entry = {"block_count": len(titles), "titles": titles}
        path.write_text(json.dumps(entry, ensure_ascii=False), encoding="utf-8")
        logger.debug(f"Cached {len(titles)} titles for {cache_key(video_id, method)}")

    def invalidate(self, video_id: str, method: str) -> None:
        self.path_for(video_id, method).unlink(missing_ok=True)


def parse_titles(reply: str, block_count: int) -> list[str]:
    """Parse a model reply into exactly ``block_count`` titles.

    Accepts a bare JSON array or one wrapped in a markdown code fence.
    Missing or blank entries become ``Segment N``; extras are dropped.
    """
    text = _CODE_FENCE.sub("", reply.strip()).strip()
    start, end = text.find("["), text.rfind("]")
    parsed: list[object] = []
    if start != -1 and end > start:
        try:
            value = json.loads(text[start : end + 1])
            if isinstance(value, list):
                parsed = value
        except json.JSONDecodeError:
            logger.warning("Title reply was not valid JSON; using placeholders")

    titles = []
    for number in range(1, block_count + 1):
        candidate = parsed[number - 1] if number <= len(parsed) else None
        title = str(candidate).strip() if candidate is not None else ""
        titles.append(title or f"Segment {number}")
    return titles


def apply_titles(blocks: list[TimelineBlock], titles: list[str]) -> None:
    for block, title in zip(blocks, titles):
        block.title = title


class TimelineTitler:
    """Generate, cache and apply block titles."""

    def __init__(
        self,
        provider: ChatProvider,
        cache: TitleCache,
        config: SemanticSearchConfig | None = None,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.config = config or get_semantic_config()
        self._tasks: dict[str, asyncio.Task[list[str]]] = {}

    def _forget(self, key: str, task: asyncio.Task[list[str]]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def apply_cached(self, video_id: str, method: str, blocks: list[TimelineBlock]) -> bool:
        """Fill titles from the cache. Returns True on a hit."""
        titles = self.cache.get(video_id, method, len(blocks))
        if titles is None:
            return False
        apply_titles(blocks, titles)
        return True

    def build_prompt(self, blocks: list[TimelineBlock]) -> str:
        limit = self.config.title_text_chars
        return build_title_prompt(
            [
                {
                    "start": format_timestamp(block.start),
                    "end": format_timestamp(block.end),
                    "text": block.text[:limit],
                }
                for block in blocks
            ]
        )

    async def generate(self, video_id: str, method: str, blocks: list[TimelineBlock]) -> list[str]:
        """Ask the provider for titles, apply them to ``blocks`` and cache them."""
        if not blocks:
            return []

        prompt = self.build_prompt(blocks)
        parts: list[str] = []
        async for event in self.provider.stream(
            TITLE_SYSTEM_PROMPT, [ChatMessage(role="user", content=prompt)], None
        ):
            if isinstance(event, ProviderTextDelta):
                parts.append(event.text)

        titles = parse_titles("".join(parts), len(blocks))
        apply_titles(blocks, titles)
        self.cache.put(video_id, method, titles)
        logger.info(f"Generated {len(titles)} timeline titles for {video_id} ({method})")
        return titles

    async def regenerate(
        self, video_id: str, method: str, blocks: list[TimelineBlock]
    ) -> list[str]:
        self.cache.invalidate(video_id, method)
        return await self.generate(video_id, method, blocks)

    def schedule(
        self,
        video_id: str,
        method: str,
        blocks: list[TimelineBlock],
        on_done: Callable[[list[str]], None] | None = None,
    ) -> asyncio.Task[list[str]]:
        """Generate titles in the background; one task per cache key.

        Must be called from a running event loop. Failures are logged and
        leave the blocks untitled.
        """
        key = cache_key(video_id, method)
        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            return existing

        async def run() -> list[str]:
            try:
                titles = await self.generate(video_id, method, blocks)
            except Exception as e:
                logger.warning(f"Title generation failed for {key}: {e}")
                return []
            if on_done is not None:
                on_done(titles)
            return titles

        task = asyncio.get_running_loop().create_task(run())
        self._tasks[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return task
