"""Chat providers.

A chat provider streams text deltas and discrete tool calls for a system
prompt plus message history. ``LangChainChatProvider`` adapts any LangChain
chat model; ``create_chat_provider`` builds one for a named provider id.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from tubescope.agent.events import (
    ChatMessage,
    ProviderEvent,
    ProviderTextDelta,
    ProviderToolCall,
)
from tubescope.config import Settings, get_settings

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)


class GenerationFailure(RuntimeError):
    """The chat provider failed (bad key, rate limit, network, ...)."""


class ChatProvider(Protocol):
    """Anything that can stream a chat completion with optional tools."""

    def stream(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ProviderEvent]: ...


# =============================================================================
# Provider catalog
# =============================================================================


@dataclass(frozen=True)
class ModelOption:
    id: str
    label: str


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    label: str
    models: tuple[ModelOption, ...]
    requires_key: bool = True


PROVIDERS: tuple[ProviderConfig, ...] = (
    ProviderConfig(
        "anthropic",
        "Claude (Anthropic)",
        (
            ModelOption("claude-opus-4-6", "Claude Opus 4.6"),
            ModelOption("claude-sonnet-4-6", "Claude Sonnet 4.6"),
            ModelOption("claude-haiku-4-5-20251001", "Claude Haiku 4.5"),
        ),
    ),
    ProviderConfig(
        "openai",
        "OpenAI",
        (
            ModelOption("gpt-4o", "GPT-4o"),
            ModelOption("gpt-4o-mini", "GPT-4o mini"),
            ModelOption("o3-mini", "o3-mini"),
        ),
    ),
    ProviderConfig(
        "google",
        "Google Gemini",
        (
            ModelOption("gemini-2.0-flash", "Gemini 2.0 Flash"),
            ModelOption("gemini-1.5-pro", "Gemini 1.5 Pro"),
            ModelOption("gemini-1.5-flash", "Gemini 1.5 Flash"),
        ),
    ),
    ProviderConfig(
        "groq",
        "Groq (fast)",
        (
            ModelOption("llama-3.3-70b-versatile", "Llama 3.3 70B"),
            ModelOption("llama-3.1-8b-instant", "Llama 3.1 8B (fast)"),
        ),
    ),
    ProviderConfig(
        "mistral",
        "Mistral",
        (
            ModelOption("mistral-large-latest", "Mistral Large"),
            ModelOption("mistral-small-latest", "Mistral Small"),
        ),
    ),
    ProviderConfig(
        "ollama",
        "Ollama (local)",
        (
            ModelOption("llama3.2", "Llama 3.2"),
            ModelOption("mistral", "Mistral"),
            ModelOption("qwen2.5", "Qwen 2.5"),
        ),
        requires_key=False,
    ),
)


def get_provider(provider_id: str) -> ProviderConfig | None:
    return next((provider for provider in PROVIDERS if provider.id == provider_id), None)


def available_providers(settings: Settings | None = None) -> list[ProviderConfig]:
    """Providers usable with the configured credentials."""
    settings = settings or get_settings()
    return [
        provider
        for provider in PROVIDERS
        if not provider.requires_key or settings.api_key_for(provider.id)
    ]


# =============================================================================
# LangChain adapter
# =============================================================================


def to_langchain_messages(system: str, messages: Sequence[ChatMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = [SystemMessage(content=system)]
    for message in messages:
        if message.role == "user":
            converted.append(HumanMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(
                AIMessage(
                    content=message.content,
                    tool_calls=[
                        {"id": call.call_id, "name": call.name, "args": call.arguments}
                        for call in message.tool_calls
                    ],
                )
            )
        else:
            converted.append(
                ToolMessage(content=message.content, tool_call_id=message.tool_call_id or "")
            )
    return converted


def chunk_text(chunk: AIMessageChunk) -> str:
    """Text carried by a streamed chunk; content may be a list of blocks."""
    content = chunk.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


class LangChainChatProvider:
    """Stream a LangChain chat model as provider events.

    Text is forwarded as it arrives; tool calls are emitted once the stream
    ends and their argument fragments have been assembled.
    """

    def __init__(self, model: BaseChatModel) -> None:
        self.model = model

    async def stream(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ProviderEvent]:
        runnable = self.model.bind_tools(list(tools)) if tools else self.model
        gathered: AIMessageChunk | None = None

        async for chunk in runnable.astream(to_langchain_messages(system, messages)):
            if not isinstance(chunk, AIMessageChunk):
                continue
            text = chunk_text(chunk)
            if text:
                yield ProviderTextDelta(text)
            gathered = chunk if gathered is None else gathered + chunk

        if gathered is None:
            return
        for call in gathered.tool_calls:
            yield ProviderToolCall(
                call_id=call.get("id") or call["name"],
                name=call["name"],
                arguments=dict(call.get("args") or {}),
            )


def create_chat_model(
    provider_id: str,
    model: str,
    settings: Settings | None = None,
) -> BaseChatModel:
    """Build the LangChain chat model for a provider id.

    Raises:
        ValueError: For an unknown provider id.
        GenerationFailure: If the provider needs an API key that is not set.
    """
    settings = settings or get_settings()
    provider = get_provider(provider_id)
    if provider is None:
        raise ValueError(f"Unknown provider: {provider_id}")

    api_key = settings.api_key_for(provider_id)
    if provider.requires_key and not api_key:
        raise GenerationFailure(f"No API key configured for {provider.label}")

    if provider_id == "anthropic":
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(model=model, api_key=api_key)
    if provider_id == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(model=model, api_key=api_key)
    if provider_id == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(model=model, google_api_key=api_key)
    if provider_id == "groq":
        from langchain_groq import ChatGroq

        return ChatGroq(model=model, api_key=api_key)
    if provider_id == "mistral":
        from langchain_mistralai import ChatMistralAI

        return ChatMistralAI(model=model, api_key=api_key)

    from langchain_ollama import ChatOllama

    return ChatOllama(model=model, base_url=settings.ollama_base_url)


def create_chat_provider(
    provider_id: str | None = None,
    model: str | None = None,
    settings: Settings | None = None,
) -> LangChainChatProvider:
    """Chat provider for a provider id and model, defaulting to settings."""
    settings = settings or get_settings()
    provider_id = provider_id or settings.default_provider
    model = model or settings.default_model
    logger.debug(f"Creating chat provider {provider_id}/{model}")
    return LangChainChatProvider(create_chat_model(provider_id, model, settings))
