"""Event types for one streamed chat turn.

A turn is a single ordered stream of these events. Consumers switch on the
event type instead of inspecting ad hoc message payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class TextDelta:
    """An incremental piece of assistant text."""

    text: str


@dataclass(frozen=True)
class ToolCallStarted:
    """The model asked for a transcript search."""

    call_id: str
    query: str


@dataclass(frozen=True)
class ToolResult:
    """The formatted output returned to the model for a tool call."""

    call_id: str
    query: str
    output: str


@dataclass(frozen=True)
class TurnFinished:
    """The turn ended with a complete assistant answer."""

    text: str
    tool_calls: int = 0


@dataclass(frozen=True)
class TurnFailed:
    """Generation failed; any partial answer must be discarded."""

    error: str


TurnEvent = TextDelta | ToolCallStarted | ToolResult | TurnFinished | TurnFailed


# =============================================================================
# Provider-level stream items and messages
# =============================================================================


@dataclass(frozen=True)
class ProviderTextDelta:
    text: str


@dataclass(frozen=True)
class ProviderToolCall:
    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


ProviderEvent = ProviderTextDelta | ProviderToolCall


@dataclass(frozen=True)
class ChatMessage:
    """A provider-neutral conversation message.

    Attributes:
        role: "user", "assistant" or "tool".
        content: Message text (tool output for role "tool").
        tool_calls: Tool calls requested by an assistant message.
        tool_call_id: The call a "tool" message answers.
    """

    role: Literal["user", "assistant", "tool"]
    content: str
    tool_calls: tuple[ProviderToolCall, ...] = ()
    tool_call_id: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}
