"""Castor: one async interface to many chat-completion APIs.

Public API:
    - send(): Complete a conversation in one response
    - stream(): Complete a conversation as a stream of chunks
    - ask() / stream_ask(): Single-question shortcuts
    - LLMConfig, Options: Request configuration
    - set_default_transport(): Swap the HTTP layer process-wide
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import TYPE_CHECKING

from castor.capabilities import (
    get_response_type,
    has_reasoning,
    has_text_content,
    has_tool_calls,
    is_complex_response,
    is_openai_compatible,
    is_reasoning_response,
    is_text_response,
    is_tool_call_response,
    requires_api_key,
    supports_bearer_auth,
)
from castor.config import LLMConfig, resolve_api_key
from castor.errors import (
    CastorError,
    ConfigurationError,
    ConversationFlowError,
    ProviderError,
    RateLimitError,
    StreamParseError,
    ToolResultError,
    TransportError,
    UnsupportedServiceError,
)
from castor.options import Options
from castor.providers import get_adapter
from castor.streaming import StreamingResponse
from castor.transport import (
    HttpxTransport,
    get_default_transport,
    resolve_transport,
    set_default_transport,
)
from castor.types import (
    Capabilities,
    ContentPart,
    LLMResponse,
    Message,
    StreamChunk,
    Tool,
    ToolCall,
    Usage,
)
from castor.validation import validate_config

if TYPE_CHECKING:
    from castor.providers import ProviderAdapter

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def send(config: LLMConfig, options: Options | None = None) -> LLMResponse:
    """Send a conversation and wait for the complete response.

    Args:
        config: Provider, model, credentials and conversation.
        options: Optional per-call overrides (tools, temperature, max_tokens,
            transport). Fields set here win over the config.

    Returns:
        LLMResponse whose ``messages`` is the input conversation plus the
        assistant turn.

    Raises:
        ConfigurationError: The merged config is invalid.
        ProviderError: The provider answered with an error status.

    Example:
        config = LLMConfig(
            service="openai",
            model="gpt-4o-mini",
            api_key=resolve_api_key("openai"),
            messages=[Message(role="user", content="Hello!")],
        )
        response = await send(config)
        print(response.content)
    """
    adapter, merged = _prepare(config, options)
    return await adapter.call(merged)


async def stream(
    config: LLMConfig, options: Options | None = None
) -> StreamingResponse:
    """Send a conversation and return a handle over its streamed chunks.

    Example:
        async with await stream(config) as response:
            async for chunk in response:
                if chunk.type == "content":
                    print(chunk.content, end="")
    """
    adapter, merged = _prepare(config, options)
    return await adapter.stream(merged)


async def ask(
    config: LLMConfig, question: str, options: Options | None = None
) -> LLMResponse:
    """Ask one question, ignoring any messages already on *config*.

    ``options.system_prompt`` becomes a leading system message.
    """
    return await send(_question_config(config, question, options), options)


async def stream_ask(
    config: LLMConfig, question: str, options: Options | None = None
) -> StreamingResponse:
    """Streaming variant of `ask()`."""
    return await stream(_question_config(config, question, options), options)


def _question_config(
    config: LLMConfig, question: str, options: Options | None
) -> LLMConfig:
    messages: list[Message] = []
    if options is not None and options.system_prompt:
        messages.append(Message(role="system", content=options.system_prompt))
    messages.append(Message(role="user", content=question))
    return replace(config, messages=messages)


def _merge_options(config: LLMConfig, options: Options | None) -> LLMConfig:
    """Overlay the option fields that are set onto *config*, resolving the transport."""
    overrides: dict[str, object] = {}
    if options is not None:
        if options.tools is not None:
            overrides["tools"] = options.tools
        if options.temperature is not None:
            overrides["temperature"] = options.temperature
        if options.max_tokens is not None:
            overrides["max_tokens"] = options.max_tokens
    overrides["transport"] = resolve_transport(
        options.transport if options is not None else None, config.transport
    )
    return replace(config, **overrides)  # type: ignore[arg-type]


def _prepare(
    config: LLMConfig, options: Options | None
) -> tuple[ProviderAdapter, LLMConfig]:
    adapter = get_adapter(config.service)
    merged = _merge_options(config, options)
    validate_config(merged)
    logger.debug("Prepared %s request for model=%s", merged.service, merged.model)
    return adapter, merged


__all__ = [
    "Capabilities",
    "CastorError",
    "ConfigurationError",
    "ContentPart",
    "ConversationFlowError",
    "HttpxTransport",
    "LLMConfig",
    "LLMResponse",
    "Message",
    "Options",
    "ProviderError",
    "RateLimitError",
    "StreamChunk",
    "StreamParseError",
    "StreamingResponse",
    "Tool",
    "ToolCall",
    "ToolResultError",
    "TransportError",
    "UnsupportedServiceError",
    "Usage",
    "ask",
    "get_default_transport",
    "get_response_type",
    "has_reasoning",
    "has_text_content",
    "has_tool_calls",
    "is_complex_response",
    "is_openai_compatible",
    "is_reasoning_response",
    "is_text_response",
    "is_tool_call_response",
    "requires_api_key",
    "resolve_api_key",
    "send",
    "set_default_transport",
    "stream",
    "stream_ask",
    "supports_bearer_auth",
]
