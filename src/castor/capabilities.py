"""Response content predicates and service capability checks."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from castor.types import LLMResponse

OPENAI_COMPATIBLE_SERVICES: frozenset[str] = frozenset(
    {"openai", "groq", "deepseek", "xai"}
)

PROVIDER_DISPLAY_NAMES: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "ollama": "Ollama",
    "groq": "Groq",
    "deepseek": "DeepSeek",
    "xai": "xAI",
}


def display_name(service: str) -> str:
    """Human-readable provider name used in error messages."""
    return PROVIDER_DISPLAY_NAMES.get(service, str(service))


# =============================================================================
# Service checks
# =============================================================================


def is_openai_compatible(service: str) -> bool:
    """Whether *service* speaks the OpenAI chat-completions format."""
    return service in OPENAI_COMPATIBLE_SERVICES


def requires_api_key(service: str) -> bool:
    """Whether *service* needs an API key (everything except Ollama)."""
    return service != "ollama"


def supports_bearer_auth(service: str) -> bool:
    """Whether *service* authenticates with ``Authorization: Bearer``."""
    return is_openai_compatible(service)


# =============================================================================
# Response predicates
# =============================================================================


def has_text_content(response: LLMResponse) -> bool:
    return response.capabilities.has_text and bool(response.content)


def has_reasoning(response: LLMResponse) -> bool:
    return response.capabilities.has_reasoning and bool(response.reasoning)


def has_tool_calls(response: LLMResponse) -> bool:
    return response.capabilities.has_tool_calls and bool(response.tool_calls)


def is_text_response(response: LLMResponse) -> bool:
    """True when the response carries text and nothing else."""
    return (
        has_text_content(response)
        and not has_reasoning(response)
        and not has_tool_calls(response)
    )


def is_tool_call_response(response: LLMResponse) -> bool:
    return has_tool_calls(response)


def is_reasoning_response(response: LLMResponse) -> bool:
    return has_reasoning(response)


def is_complex_response(response: LLMResponse) -> bool:
    """True when more than one capability flag is set."""
    caps = response.capabilities
    return sum((caps.has_text, caps.has_reasoning, caps.has_tool_calls)) > 1


def get_response_type(response: LLMResponse) -> str:
    """Describe the content kinds, e.g. ``"reasoning + tool_calls"`` or ``"empty"``."""
    caps = response.capabilities
    kinds = []
    if caps.has_reasoning:
        kinds.append("reasoning")
    if caps.has_tool_calls:
        kinds.append("tool_calls")
    if caps.has_text:
        kinds.append("text")
    return " + ".join(kinds) or "empty"
