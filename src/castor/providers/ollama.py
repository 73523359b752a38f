"""Ollama ``/api/chat`` adapter for locally served models."""

from __future__ import annotations

from contextlib import aclosing
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import ProviderError
from castor.providers._utils import stringify_content
from castor.providers.base import (
    MALFORMED_CHUNK_ERRORS,
    HTTPAdapter,
    build_response,
    chunk_text,
    iter_json_payloads,
    log_malformed_chunk,
)
from castor.streaming import iter_ndjson_lines
from castor.types import StreamChunk, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.config import LLMConfig
    from castor.transport import ByteReader
    from castor.types import LLMResponse, Message

log = logging.getLogger(__name__)

_ROLE_MAP = {
    "system": "system",
    "user": "user",
    "assistant": "assistant",
    "tool_call": "assistant",
    "tool_result": "tool",
}


class OllamaAdapter(HTTPAdapter):
    """Unauthenticated ``POST {base_url}/api/chat`` streaming NDJSON."""

    name = "ollama"
    default_base_url = "http://localhost:11434"

    def endpoint(self, config: LLMConfig, *, stream: bool) -> str:
        return f"{self.base_url(config)}/api/chat"

    def encode(self, config: LLMConfig, *, stream: bool) -> dict[str, Any]:
        if config.tools:
            log.debug(
                "Ollama adapter ignores %d tool definition(s)", len(config.tools)
            )

        body: dict[str, Any] = {
            "model": config.model,
            "messages": [_encode_message(m) for m in config.messages],
            "stream": stream,
        }
        if config.system_prompt:
            body["messages"].insert(0, {"role": "system", "content": config.system_prompt})

        options: dict[str, Any] = {}
        if config.temperature is not None:
            options["temperature"] = config.temperature
        if config.max_tokens is not None:
            options["num_predict"] = config.max_tokens
        if options:
            body["options"] = options
        return body

    def decode(self, payload: dict[str, Any], config: LLMConfig) -> LLMResponse:
        if payload.get("error"):
            raise ProviderError(
                f"{self.provider} API error: {payload['error']}",
                provider=self.provider,
                retryable=False,
            )
        message = payload.get("message") or {}
        return build_response(
            config,
            content=message.get("content") or "",
            usage=_decode_usage(payload),
            reasoning=message.get("thinking"),
            model=payload.get("model"),
        )

    async def decode_stream(
        self, reader: ByteReader, config: LLMConfig
    ) -> AsyncIterator[StreamChunk]:
        model = config.model
        content: list[str] = []
        reasoning: list[str] = []
        usage: Usage | None = None
        payloads = iter_json_payloads(iter_ndjson_lines(reader), self.provider)

        async with aclosing(payloads):
            async for payload in payloads:
                if payload.get("error"):
                    raise ProviderError(
                        f"{self.provider} API error: {payload['error']}",
                        provider=self.provider,
                        retryable=False,
                    )
                try:
                    message = payload.get("message") or {}
                    thinking = chunk_text(message.get("thinking"))
                    text = chunk_text(message.get("content"))
                    final_usage = _decode_usage(payload) if payload.get("done") else None
                except MALFORMED_CHUNK_ERRORS as e:
                    log_malformed_chunk(self.provider, payload, e)
                    continue

                if isinstance(payload.get("model"), str):
                    model = payload["model"]
                if thinking:
                    reasoning.append(thinking)
                    yield StreamChunk(type="reasoning", reasoning=thinking)
                if text:
                    content.append(text)
                    yield StreamChunk(type="content", content=text)
                if final_usage is not None:
                    usage = final_usage
                    yield StreamChunk(type="usage", usage=usage)
                    break

        yield StreamChunk(
            type="complete",
            final_response=build_response(
                config,
                content="".join(content),
                usage=usage,
                reasoning="".join(reasoning),
                model=model,
            ),
        )


def _decode_usage(payload: dict[str, Any]) -> Usage:
    input_tokens = int(payload.get("prompt_eval_count") or 0)
    output_tokens = int(payload.get("eval_count") or 0)
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


def _encode_message(message: Message) -> dict[str, Any]:
    return {
        "role": _ROLE_MAP.get(message.role, "user"),
        "content": stringify_content(message.content),
    }
