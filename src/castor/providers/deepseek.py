"""DeepSeek adapter (OpenAI-compatible).

``deepseek-reasoner`` streams its chain of thought as ``reasoning_content``,
which the shared decoder already surfaces as reasoning.
"""

from __future__ import annotations

from castor.providers.openai import OpenAICompatibleAdapter


class DeepSeekAdapter(OpenAICompatibleAdapter):
    name = "deepseek"
    default_base_url = "https://api.deepseek.com/v1"
