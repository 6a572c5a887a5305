"""Tests for timeline title caching and generation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tubescope.agent.events import ProviderTextDelta
from tubescope.agent.prompts import TITLE_SYSTEM_PROMPT
from tubescope.tools.youtube.models import Chunk, TimelineBlock
from tubescope.tools.youtube.semantic.titles import (
    TimelineTitler,
    TitleCache,
    parse_titles,
)

VIDEO_ID = "dQw4w9WgXcQ"


def make_blocks(count: int, text: str = "some words") -> list[TimelineBlock]:
    blocks = []
    for k in range(count):
        chunk = Chunk(text=f"{text} {k}", start=k * 150.0, duration=150.0, index=k)
        blocks.append(TimelineBlock(start=chunk.start, end=chunk.end, chunks=[chunk]))
    return blocks


@pytest.fixture
def title_cache(tmp_path: Path) -> TitleCache:
    return TitleCache(tmp_path / "titles")


class TestTitleCache:
    """Tests for TitleCache."""

    def test_round_trip(self, title_cache: TitleCache) -> None:
        """Test that stored titles are returned for the same block count."""
        title_cache.put(VIDEO_ID, "semantic", ["Intro", "Outro"])

        assert title_cache.get(VIDEO_ID, "semantic", 2) == ["Intro", "Outro"]

    def test_block_count_mismatch_is_a_miss(self, title_cache: TitleCache) -> None:
        """Test that titles for a different block count are ignored."""
        title_cache.put(VIDEO_ID, "semantic", ["Intro", "Outro"])

        assert title_cache.get(VIDEO_ID, "semantic", 3) is None

    def test_keyed_by_method(self, title_cache: TitleCache) -> None:
        """Test that semantic and fixed timelines are cached separately."""
        title_cache.put(VIDEO_ID, "semantic", ["Intro", "Outro"])

        assert title_cache.get(VIDEO_ID, "fixed", 2) is None

    def test_invalidate(self, title_cache: TitleCache) -> None:
        """Test that invalidation removes the entry, and tolerates a missing one."""
        title_cache.put(VIDEO_ID, "fixed", ["A", "B"])

        title_cache.invalidate(VIDEO_ID, "fixed")
        title_cache.invalidate(VIDEO_ID, "fixed")

        assert title_cache.get(VIDEO_ID, "fixed", 2) is None

    def test_file_name_is_filesystem_safe(self, title_cache: TitleCache) -> None:
        """Test that the colon in the key does not reach the file name."""
        path = title_cache.path_for("a/b:c", "semantic")

        assert path.parent == title_cache.directory
        assert ":" not in path.name
        assert "/" not in path.name

    def test_entry_layout(self, title_cache: TitleCache) -> None:
        """Test the on-disk JSON layout."""
        title_cache.put(VIDEO_ID, "semantic", ["Intro", "Outro"])

        entry = json.loads(title_cache.path_for(VIDEO_ID, "semantic").read_text())

        assert entry == {"block_count": 2, "titles": ["Intro", "Outro"]}

    def test_corrupt_entry_is_a_miss(self, title_cache: TitleCache) -> None:
        """Test that unreadable JSON is treated as a miss."""
        title_cache.directory.mkdir(parents=True)
        title_cache.path_for(VIDEO_ID, "semantic").write_text("{not json")

        assert title_cache.get(VIDEO_ID, "semantic", 2) is None


class TestParseTitles:
    """Tests for parse_titles."""

    def test_plain_array(self) -> None:
        """Test a bare JSON array."""
        assert parse_titles('["Intro", "Setup"]', 2) == ["Intro", "Setup"]

    def test_code_fenced_array(self) -> None:
        """Test an array wrapped in a markdown code fence."""
        reply = '```json\n["Intro", "Setup"]\n```'

        assert parse_titles(reply, 2) == ["Intro", "Setup"]

    def test_pads_missing_titles(self) -> None:
        """Test that short replies are padded with numbered placeholders."""
        assert parse_titles('["Intro", ""]', 3) == ["Intro", "Segment 2", "Segment 3"]

    def test_drops_extra_titles(self) -> None:
        """Test that extra titles are ignored."""
        assert parse_titles('["A", "B", "C"]', 2) == ["A", "B"]

    def test_garbage_reply(self) -> None:
        """Test that a reply without an array yields placeholders."""
        assert parse_titles("I cannot do that.", 2) == ["Segment 1", "Segment 2"]


class TestTimelineTitler:
    """Tests for TimelineTitler."""

    @pytest.mark.asyncio
    async def test_generate_applies_and_caches(self, make_provider, title_cache: TitleCache) -> None:
        """Test that generated titles are applied to blocks and written to the cache."""
        provider = make_provider(
            [[ProviderTextDelta('```json\n["Intro", '), ProviderTextDelta('"Main part"]\n```')]]
        )
        titler = TimelineTitler(provider, title_cache)
        blocks = make_blocks(2)

        titles = await titler.generate(VIDEO_ID, "semantic", blocks)

        assert titles == ["Intro", "Main part"]
        assert [block.title for block in blocks] == ["Intro", "Main part"]
        assert title_cache.get(VIDEO_ID, "semantic", 2) == ["Intro", "Main part"]
        call = provider.calls[0]
        assert call["system"] == TITLE_SYSTEM_PROMPT
        assert call["tools"] is None
        assert "Segment 2 (2:30 - 5:00)" in call["messages"][0].content

    @pytest.mark.asyncio
    async def test_prompt_truncates_block_text(self, make_provider, title_cache: TitleCache) -> None:
        """Test that each block contributes at most title_text_chars characters."""
        provider = make_provider([[ProviderTextDelta('["Only"]')]])
        titler = TimelineTitler(provider, title_cache)
        blocks = make_blocks(1, text="x" * 2000)

        await titler.generate(VIDEO_ID, "fixed", blocks)

        prompt = provider.calls[0]["messages"][0].content
        assert "x" * 600 in prompt
        assert "x" * 601 not in prompt

    def test_apply_cached(self, make_provider, title_cache: TitleCache) -> None:
        """Test that cached titles are applied only on a block-count match."""
        title_cache.put(VIDEO_ID, "semantic", ["A", "B"])
        titler = TimelineTitler(make_provider([]), title_cache)

        two = make_blocks(2)
        three = make_blocks(3)

        assert titler.apply_cached(VIDEO_ID, "semantic", two) is True
        assert [block.title for block in two] == ["A", "B"]
        assert titler.apply_cached(VIDEO_ID, "semantic", three) is False
        assert all(block.title is None for block in three)

    @pytest.mark.asyncio
    async def test_regenerate_replaces_cache(self, make_provider, title_cache: TitleCache) -> None:
        """Test that regenerate ignores and overwrites cached titles."""
        title_cache.put(VIDEO_ID, "semantic", ["Old 1", "Old 2"])
        titler = TimelineTitler(make_provider([[ProviderTextDelta('["New 1", "New 2"]')]]), title_cache)
        blocks = make_blocks(2)

        await titler.regenerate(VIDEO_ID, "semantic", blocks)

        assert title_cache.get(VIDEO_ID, "semantic", 2) == ["New 1", "New 2"]

    @pytest.mark.asyncio
    async def test_schedule_runs_in_background(self, make_provider, title_cache: TitleCache) -> None:
        """Test that scheduled generation completes and reports its titles."""
        titler = TimelineTitler(make_provider([[ProviderTextDelta('["A", "B"]')]]), title_cache)
        blocks = make_blocks(2)
        received: list[list[str]] = []

        task = titler.schedule(VIDEO_ID, "fixed", blocks, on_done=received.append)
        same = titler.schedule(VIDEO_ID, "fixed", blocks)
        titles = await task

        assert same is task
        assert titles == ["A", "B"]
        assert received == [["A", "B"]]

    @pytest.mark.asyncio
    async def test_schedule_swallows_provider_failure(
        self, make_provider, title_cache: TitleCache
    ) -> None:
        """Test that a failing provider leaves blocks untitled without raising."""
        titler = TimelineTitler(make_provider([[RuntimeError("rate limited")]]), title_cache)
        blocks = make_blocks(2)

        titles = await titler.schedule(VIDEO_ID, "fixed", blocks)

        assert titles == []
        assert all(block.title is None for block in blocks)
        assert title_cache.get(VIDEO_ID, "fixed", 2) is None
