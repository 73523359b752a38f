"""Configuration: the unified request record and opt-in key resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from castor.transport import Transport
    from castor.types import (
        Message,
        ReasoningEffort,
        ReasoningFormat,
        ServiceName,
        Tool,
    )

# Conventional environment variable per service. Ollama runs unauthenticated.
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "groq": "GROQ_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "xai": "XAI_API_KEY",
}


@dataclass(frozen=True)
class LLMConfig:
    """Everything needed to call one provider.

    ``service`` is the discriminant that selects the adapter. Fields that a
    provider does not understand are ignored by its adapter.

    Example:
        config = LLMConfig(
            service="anthropic",
            model="claude-3-5-sonnet-latest",
            api_key=resolve_api_key("anthropic"),
            messages=[Message(role="user", content="Hello!")],
        )
    """

    service: ServiceName
    model: str
    messages: list[Message] = field(default_factory=list)
    api_key: str | None = None
    base_url: str | None = None
    #: Extra HTTP headers, merged after the auth headers.
    headers: dict[str, str] | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    tools: list[Tool] | None = None
    #: Sent as a leading system instruction; not added to ``messages``.
    system_prompt: str | None = None
    transport: Transport | None = None
    is_browser: bool = False
    reasoning_effort: ReasoningEffort | None = None
    reasoning_format: ReasoningFormat | None = None
    #: Google 2.5 thinking budget; also the Anthropic thinking budget.
    thinking_budget: int | None = None
    include_thoughts: bool | None = None
    #: Anthropic only.
    enable_thinking: bool = False

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"LLMConfig(service={self.service!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"messages={len(self.messages)})"
        )

    __repr__ = __str__


def resolve_api_key(service: str) -> str | None:
    """Look up the conventional API key variable for *service*.

    Loads a ``.env`` file first. This is opt-in: Castor itself never reads
    the environment.
    """
    env_var = API_KEY_ENV_VARS.get(service)
    if env_var is None:
        return None
    load_dotenv()
    return os.environ.get(env_var) or None
