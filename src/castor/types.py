"""Unified conversation, tool, response and stream types.

These records are provider-agnostic. Adapters translate them to and from
vendor wire formats; nothing here knows about a specific vendor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from collections.abc import Mapping

    from pydantic import BaseModel

ServiceName = Literal[
    "openai", "anthropic", "google", "ollama", "groq", "deepseek", "xai"
]
SERVICES: tuple[ServiceName, ...] = (
    "openai",
    "anthropic",
    "google",
    "ollama",
    "groq",
    "deepseek",
    "xai",
)

MessageRole = Literal["user", "assistant", "system", "tool_call", "tool_result"]
MESSAGE_ROLES: frozenset[str] = frozenset(
    {"user", "assistant", "system", "tool_call", "tool_result"}
)

ContentType = Literal["text", "image", "audio", "video", "file"]
ChunkType = Literal["content", "reasoning", "tool_call", "usage", "complete"]
ReasoningEffort = Literal["low", "medium", "high", "default", "none"]
ReasoningFormat = Literal["raw", "parsed"]


@dataclass(frozen=True)
class ContentPart:
    """One typed piece of a multi-part message.

    ``content`` holds text, a URL, a data URL, or bare base64 (in which case
    ``metadata["mimeType"]`` names the media type).
    """

    type: ContentType
    content: str
    metadata: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """A single conversation turn.

    ``content`` is plain text, a list of :class:`ContentPart`, or (for
    ``tool_result``) a structured payload that encoders JSON-stringify.
    """

    role: MessageRole
    content: str | list[ContentPart] | dict[str, Any] | None = ""
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] | None = None
    #: Function name; used to link tool results for Google.
    name: str | None = None
    #: Reasoning text recorded on assistant turns returned by Castor.
    reasoning: str | None = None


@dataclass(frozen=True)
class Tool:
    """A function the model may call."""

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @classmethod
    def from_model(
        cls, name: str, description: str, model: type[BaseModel]
    ) -> Tool:
        """Build a tool whose parameters schema comes from a Pydantic model."""
        return cls(name=name, description=description, parameters=model.model_json_schema())


@dataclass(frozen=True)
class Usage:
    """Token accounting for one request."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int | None = None
    input_cost: float | None = None
    output_cost: float | None = None
    total_cost: float | None = None


@dataclass(frozen=True)
class Capabilities:
    """Which kinds of content a response carries."""

    has_text: bool = False
    has_reasoning: bool = False
    has_tool_calls: bool = False


@dataclass(frozen=True)
class LLMResponse:
    """Unified non-streaming result.

    ``messages`` is the request conversation plus the new assistant turn.
    """

    service: ServiceName
    model: str
    content: str
    usage: Usage
    messages: list[Message]
    reasoning: str | None = None
    tool_calls: list[ToolCall] | None = None
    capabilities: Capabilities = field(default_factory=Capabilities)


@dataclass(frozen=True)
class StreamChunk:
    """One event on a streaming response; the populated field matches ``type``."""

    type: ChunkType
    content: str | None = None
    reasoning: str | None = None
    tool_call: ToolCall | None = None
    usage: Usage | None = None
    final_response: LLMResponse | None = None
