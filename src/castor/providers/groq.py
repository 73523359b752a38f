"""Groq adapter (OpenAI-compatible)."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from castor.providers.openai import OpenAICompatibleAdapter

if TYPE_CHECKING:
    from castor.config import LLMConfig
    from castor.types import Message

_GROQ_REASONING_MODEL_RE = re.compile(r"qwen|deepseek")
# Groq's thinking mode expects this temperature unless the caller picks one.
_GROQ_THINKING_TEMPERATURE = 0.6


class GroqAdapter(OpenAICompatibleAdapter):
    """Groq chat completions; Qwen and DeepSeek models accept reasoning options."""

    name = "groq"
    default_base_url = "https://api.groq.com/openai/v1"

    def encode_tool_result(self, message: Message) -> dict[str, Any]:
        encoded = super().encode_tool_result(message)
        if message.name:
            encoded["name"] = message.name
        return encoded

    def apply_reasoning(self, body: dict[str, Any], config: LLMConfig) -> None:
        if not _GROQ_REASONING_MODEL_RE.search(config.model):
            return
        if config.reasoning_format:
            body["reasoning_format"] = config.reasoning_format
        if config.reasoning_effort:
            body["reasoning_effort"] = config.reasoning_effort
        if config.reasoning_effort == "default" and config.temperature is None:
            body["temperature"] = _GROQ_THINKING_TEMPERATURE
