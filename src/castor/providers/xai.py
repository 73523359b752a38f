"""xAI (Grok) adapter (OpenAI-compatible)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from castor.providers.openai import OpenAICompatibleAdapter

if TYPE_CHECKING:
    from castor.config import LLMConfig


class XAIAdapter(OpenAICompatibleAdapter):
    """xAI chat completions. Only Grok 3 models take ``reasoning_effort``."""

    name = "xai"
    default_base_url = "https://api.x.ai/v1"

    def apply_reasoning(self, body: dict[str, Any], config: LLMConfig) -> None:
        if config.reasoning_effort and "grok-3" in config.model:
            body["reasoning_effort"] = config.reasoning_effort
