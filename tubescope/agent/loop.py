"""Bounded tool-using chat loop.

Within one turn the model may call ``search_transcript`` up to
``agent_max_tool_calls`` times. Once the budget is spent the next step is
offered no tools at all, so it can only answer in text. Every step streams
its text immediately; tool calls run between steps against the session
snapshot the turn was started with.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field

from tubescope.agent.events import (
    ChatMessage,
    ProviderTextDelta,
    ProviderToolCall,
    TextDelta,
    ToolCallStarted,
    ToolResult,
    TurnEvent,
    TurnFailed,
    TurnFinished,
)
from tubescope.agent.prompts import SEARCH_TOOL_NAME, SEARCH_TOOL_SCHEMA, build_system_prompt
from tubescope.agent.providers import ChatProvider
from tubescope.tools.youtube.semantic.config import SemanticSearchConfig, get_semantic_config
from tubescope.tools.youtube.semantic.session import VideoSession
from tubescope.tools.youtube.semantic.tools import search_tool

logger = logging.getLogger(__name__)

SEARCHING_STATUS = "Searching transcript…"


async def run_agent_turn(
    provider: ChatProvider,
    session: VideoSession | None,
    history: Sequence[ChatMessage],
    *,
    config: SemanticSearchConfig | None = None,
    system_prompt: str | None = None,
) -> AsyncIterator[TurnEvent]:
    """Run one conversational turn, yielding events in order.

    Args:
        provider: Chat provider to stream from.
        session: Snapshot of the video the tool searches; None if nothing is loaded.
        history: Conversation so far, ending with the new user message.
        config: Optional configuration (tool budget, result caps).
        system_prompt: Override the default agent system prompt.

    Yields:
        TextDelta, ToolCallStarted and ToolResult events, then exactly one
        TurnFinished or TurnFailed.
    """
    config = config or get_semantic_config()
    budget = config.agent_max_tool_calls
    system = system_prompt or build_system_prompt(max_tool_calls=budget)
    messages = list(history)
    answer_parts: list[str] = []
    calls_made = 0

    for step in range(budget + 1):
        tools = [SEARCH_TOOL_SCHEMA] if calls_made < budget else None
        step_text: list[str] = []
        requested: list[ProviderToolCall] = []

        try:
            async for item in provider.stream(system, messages, tools):
                if isinstance(item, ProviderTextDelta):
                    step_text.append(item.text)
                    yield TextDelta(item.text)
                elif isinstance(item, ProviderToolCall):
                    requested.append(item)
        except Exception as e:
            logger.warning(f"Chat provider failed on step {step + 1}: {e}")
            yield TurnFailed(str(e) or e.__class__.__name__)
            return

        text = "".join(step_text)
        answer_parts.append(text)

        if tools is None or not requested:
            yield TurnFinished(text="".join(answer_parts), tool_calls=calls_made)
            return

        executed = requested[: budget - calls_made]
        messages.append(ChatMessage(role="assistant", content=text, tool_calls=tuple(executed)))

        for call in executed:
            query = str(call.arguments.get("query", ""))
            yield ToolCallStarted(call_id=call.call_id, query=query)
            if call.name == SEARCH_TOOL_NAME:
                output = await search_tool(query, session)
            else:
                output = f"Unknown tool: {call.name}"
            calls_made += 1
            messages.append(ChatMessage(role="tool", content=output, tool_call_id=call.call_id))
            yield ToolResult(call_id=call.call_id, query=query, output=output)

    yield TurnFinished(text="".join(answer_parts), tool_calls=calls_made)


@dataclass
class ChatTurnState:
    """Display state for a turn in progress, driven purely by events."""

    text: str = ""
    status: str | None = None
    searches: list[str] = field(default_factory=list)
    error: str | None = None
    finished: bool = False

    def apply(self, event: TurnEvent) -> None:
        if isinstance(event, TextDelta):
            self.status = None
            self.text += event.text
        elif isinstance(event, ToolCallStarted):
            self.status = SEARCHING_STATUS
            self.searches.append(event.query)
        elif isinstance(event, ToolResult):
            pass
        elif isinstance(event, TurnFinished):
            self.status = None
            self.text = event.text
            self.finished = True
        elif isinstance(event, TurnFailed):
            self.status = None
            self.text = ""
            self.error = event.error
            self.finished = True


class Conversation:
    """Message history for one video's chat.

    A failed turn leaves no assistant message behind; the error is kept in
    ``error`` until the next successful turn.
    """

    def __init__(
        self,
        provider: ChatProvider,
        *,
        config: SemanticSearchConfig | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self.system_prompt = system_prompt
        self.messages: list[ChatMessage] = []
        self.error: str | None = None

    async def send(
        self,
        text: str,
        session: VideoSession | None,
        on_event: Callable[[TurnEvent, ChatTurnState], None] | None = None,
    ) -> ChatTurnState:
        """Send a user message and run the turn to completion."""
        if not text.strip():
            raise ValueError("message must be a non-empty string")

        self.messages.append(ChatMessage(role="user", content=text.strip()))
        state = ChatTurnState()

        async for event in run_agent_turn(
            self.provider,
            session,
            list(self.messages),
            config=self.config,
            system_prompt=self.system_prompt,
        ):
            state.apply(event)
            if on_event is not None:
                on_event(event, state)

        if state.error is not None:
            self.error = state.error
        else:
            self.error = None
            self.messages.append(ChatMessage(role="assistant", content=state.text))
        return state
