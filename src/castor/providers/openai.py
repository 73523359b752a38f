"""OpenAI chat-completions adapter, shared by every OpenAI-compatible vendor.

Groq, DeepSeek and xAI subclass ``OpenAICompatibleAdapter`` and only change
the base URL and the reasoning parameters they accept.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
import json
import logging
import re
from typing import TYPE_CHECKING, Any

from castor.errors import ProviderError
from castor.providers._utils import (
    omit_none,
    parse_tool_arguments,
    stringify_content,
    to_data_url,
)
from castor.providers.base import (
    MALFORMED_CHUNK_ERRORS,
    HTTPAdapter,
    build_response,
    chunk_text,
    iter_json_payloads,
    log_malformed_chunk,
)
from castor.streaming import ToolCallAccumulator, parse_sse_stream
from castor.types import Message, StreamChunk, ToolCall, Usage
from castor.validation import (
    sanitize_tools,
    validate_conversation_flow,
    validate_tool_result_message,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.config import LLMConfig
    from castor.transport import ByteReader
    from castor.types import LLMResponse

log = logging.getLogger(__name__)

_OPENAI_REASONING_MODEL_RE = re.compile(r"^(o1|o3)")


class OpenAICompatibleAdapter(HTTPAdapter):
    """Bearer-authenticated ``POST {base_url}/chat/completions``."""

    def endpoint(self, config: LLMConfig, *, stream: bool) -> str:
        return f"{self.base_url(config)}/chat/completions"

    def auth_headers(self, config: LLMConfig) -> dict[str, str]:
        return {"Authorization": f"Bearer {config.api_key}"}

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode(self, config: LLMConfig, *, stream: bool) -> dict[str, Any]:
        messages = validate_conversation_flow(config.messages, self.provider)
        for position, message in enumerate(messages):
            validate_tool_result_message(message, self.name, position=position)

        if config.is_browser:
            log.warning(
                "%s API may not work directly from browsers due to CORS policy; "
                "consider using a proxy server.",
                self.provider,
            )

        if config.system_prompt:
            messages = [Message(role="system", content=config.system_prompt), *messages]

        body = omit_none(
            {
                "model": config.model,
                "messages": [self.encode_message(m) for m in messages],
                "temperature": config.temperature,
                "max_tokens": config.max_tokens,
                "tools": self.encode_tools(config),
                "stream": stream,
            }
        )
        if stream:
            body["stream_options"] = {"include_usage": True}
        self.apply_reasoning(body, config)
        return body

    def encode_message(self, message: Message) -> dict[str, Any]:
        if message.role == "tool_result":
            return self.encode_tool_result(message)

        if message.role in ("assistant", "tool_call") and message.tool_calls:
            return {
                "role": "assistant",
                "content": stringify_content(message.content) or None,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.input),
                        },
                    }
                    for tc in message.tool_calls
                ],
            }

        role = "assistant" if message.role == "tool_call" else message.role
        content = message.content
        if isinstance(content, list):
            return {"role": role, "content": [_encode_part(part) for part in content]}
        return {"role": role, "content": stringify_content(content)}

    def encode_tool_result(self, message: Message) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": stringify_content(message.content),
        }

    def encode_tools(self, config: LLMConfig) -> list[dict[str, Any]] | None:
        if not config.tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["parameters"],
                },
            }
            for tool in sanitize_tools(config.tools)
        ]

    def apply_reasoning(self, body: dict[str, Any], config: LLMConfig) -> None:
        """Add vendor reasoning parameters; the base family has none."""

    # -------------------------------------------------------------------------
    # Unary decoding
    # -------------------------------------------------------------------------

    def decode(self, payload: dict[str, Any], config: LLMConfig) -> LLMResponse:
        choices = payload.get("choices")
        if not choices:
            raise ProviderError(
                f"{self.provider} API returned no choices",
                provider=self.provider,
                retryable=False,
            )
        message = choices[0].get("message") or {}
        content = message.get("content")
        return build_response(
            config,
            content=content if isinstance(content, str) else "",
            usage=decode_usage(payload.get("usage")),
            reasoning=message.get("reasoning_content") or message.get("reasoning"),
            tool_calls=self._decode_tool_calls(message.get("tool_calls")),
            model=payload.get("model"),
        )

    def _decode_tool_calls(self, raw: Any) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for entry in raw or []:
            function = entry.get("function") or {}
            name = function.get("name")
            arguments = parse_tool_arguments(function.get("arguments"))
            if not name or arguments is None:
                log.warning(
                    "%s response: skipping tool call %s with unparsable arguments",
                    self.provider,
                    entry.get("id"),
                )
                continue
            calls.append(ToolCall(id=entry.get("id") or name, name=name, input=arguments))
        return calls

    # -------------------------------------------------------------------------
    # Streaming decoding
    # -------------------------------------------------------------------------

    async def decode_stream(
        self, reader: ByteReader, config: LLMConfig
    ) -> AsyncIterator[StreamChunk]:
        state = _StreamState(model=config.model)
        accumulator = ToolCallAccumulator(self.provider)
        payloads = iter_json_payloads(parse_sse_stream(reader), self.provider)

        async with aclosing(payloads):
            async for payload in payloads:
                try:
                    chunks = self._decode_chunk(payload, state, accumulator)
                except MALFORMED_CHUNK_ERRORS as e:
                    log_malformed_chunk(self.provider, payload, e)
                    continue
                for chunk in chunks:
                    yield chunk

                if state.saw_finish and state.usage is not None:
                    yield self._complete(state, config)
                    return

        for call in accumulator.finalize():
            state.tool_calls.append(call)
            yield StreamChunk(type="tool_call", tool_call=call)
        yield self._complete(state, config)

    def _decode_chunk(
        self,
        payload: dict[str, Any],
        state: _StreamState,
        accumulator: ToolCallAccumulator,
    ) -> list[StreamChunk]:
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise ProviderError(
                f"{self.provider} API error: {message}",
                provider=self.provider,
                retryable=False,
            )

        # Read everything first so a bad shape leaves the state untouched.
        choices = payload.get("choices") or []
        choice = choices[0] if choices else {}
        delta = choice.get("delta") or {}
        text = chunk_text(delta.get("content"))
        reasoning = chunk_text(delta.get("reasoning_content") or delta.get("reasoning"))
        fragments = delta.get("tool_calls") or []
        if not isinstance(fragments, list) or not all(isinstance(f, dict) for f in fragments):
            raise TypeError("delta.tool_calls is not a list of objects")
        usage = decode_usage(payload["usage"]) if payload.get("usage") else None

        chunks: list[StreamChunk] = []
        if isinstance(payload.get("model"), str):
            state.model = payload["model"]
        if usage is not None:
            state.usage = usage
            chunks.append(StreamChunk(type="usage", usage=usage))

        if text:
            state.content.append(text)
            chunks.append(StreamChunk(type="content", content=text))
        if reasoning:
            state.reasoning.append(reasoning)
            chunks.append(StreamChunk(type="reasoning", reasoning=reasoning))
        for fragment in fragments:
            accumulator.feed(fragment)

        if choice.get("finish_reason"):
            state.saw_finish = True
            for call in accumulator.finalize():
                state.tool_calls.append(call)
                chunks.append(StreamChunk(type="tool_call", tool_call=call))
        return chunks

    def _complete(self, state: _StreamState, config: LLMConfig) -> StreamChunk:
        return StreamChunk(
            type="complete",
            final_response=build_response(
                config,
                content="".join(state.content),
                usage=state.usage,
                reasoning="".join(state.reasoning),
                tool_calls=state.tool_calls,
                model=state.model,
            ),
        )


@dataclass
class _StreamState:
    model: str
    content: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    saw_finish: bool = False


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI chat completions."""

    name = "openai"
    default_base_url = "https://api.openai.com/v1"

    def apply_reasoning(self, body: dict[str, Any], config: LLMConfig) -> None:
        if config.reasoning_effort and _OPENAI_REASONING_MODEL_RE.match(config.model):
            body["reasoning_effort"] = config.reasoning_effort


def decode_usage(raw: Any) -> Usage:
    """Map OpenAI-style usage counters onto ``Usage``."""
    if not isinstance(raw, dict):
        return Usage()
    input_tokens = int(raw.get("prompt_tokens") or 0)
    output_tokens = int(raw.get("completion_tokens") or 0)
    reasoning_tokens = raw.get("reasoning_tokens")
    if reasoning_tokens is None:
        details = raw.get("completion_tokens_details") or {}
        reasoning_tokens = details.get("reasoning_tokens")
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=int(raw.get("total_tokens") or input_tokens + output_tokens),
        reasoning_tokens=int(reasoning_tokens) if reasoning_tokens is not None else None,
    )


def _encode_part(part: Any) -> dict[str, Any]:
    if part.type == "text":
        return {"type": "text", "text": part.content}
    if part.type == "image":
        return {"type": "image_url", "image_url": {"url": to_data_url(part)}}
    return {"type": "text", "text": str(part.content)}
