"""Anthropic Messages API adapter."""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import ProviderError, RateLimitError
from castor.providers._utils import (
    omit_none,
    parse_tool_arguments,
    split_data_url,
    stringify_content,
)
from castor.providers.base import (
    MALFORMED_CHUNK_ERRORS,
    HTTPAdapter,
    build_response,
    chunk_text,
    iter_json_payloads,
    log_malformed_chunk,
)
from castor.streaming import parse_sse_stream
from castor.types import StreamChunk, ToolCall, Usage
from castor.validation import (
    resolve_tool_result_linking,
    sanitize_tools,
    validate_tool_result_message,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.config import LLMConfig
    from castor.transport import ByteReader
    from castor.types import ContentPart, LLMResponse, Message

log = logging.getLogger(__name__)

_ANTHROPIC_VERSION = "2023-06-01"
_ANTHROPIC_MAX_TOKENS = 4096
_THINKING_BETA_HEADER = "thinking-2024-12-03"
_DEFAULT_THINKING_BUDGET = 2048
_THINKING_BUDGETS = {
    "low": 1024,
    "medium": 2048,
    "high": 4096,
}
# Error event types that are worth retrying.
_RETRYABLE_ERROR_TYPES = frozenset({"overloaded_error", "api_error", "rate_limit_error"})


class AnthropicAdapter(HTTPAdapter):
    """``POST {base_url}/messages`` with ``x-api-key`` auth."""

    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"

    def endpoint(self, config: LLMConfig, *, stream: bool) -> str:
        return f"{self.base_url(config)}/messages"

    def auth_headers(self, config: LLMConfig) -> dict[str, str]:
        headers = {
            "x-api-key": config.api_key or "",
            "anthropic-version": _ANTHROPIC_VERSION,
        }
        if config.enable_thinking:
            headers["anthropic-beta"] = _THINKING_BETA_HEADER
        if config.is_browser:
            headers["anthropic-dangerous-direct-browser-access"] = "true"
        return headers

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode(self, config: LLMConfig, *, stream: bool) -> dict[str, Any]:
        linked = resolve_tool_result_linking(config.messages)
        for position, message in enumerate(linked):
            validate_tool_result_message(message, self.name, position=position)

        system_parts = [config.system_prompt] if config.system_prompt else []
        messages: list[dict[str, Any]] = []
        for message in linked:
            if message.role == "system":
                text = stringify_content(message.content)
                if text:
                    system_parts.append(text)
                continue
            _append_message(messages, _encode_message(message))

        max_tokens = config.max_tokens or _ANTHROPIC_MAX_TOKENS
        thinking = None
        if config.enable_thinking:
            budget = _thinking_budget(config)
            thinking = {"type": "enabled", "budget_tokens": budget}
            if config.max_tokens is None and budget >= max_tokens:
                max_tokens = budget + _ANTHROPIC_MAX_TOKENS

        tools = None
        if config.tools:
            tools = [
                {
                    "name": tool["name"],
                    "description": tool["description"],
                    "input_schema": tool["parameters"],
                }
                for tool in sanitize_tools(config.tools)
            ]

        return omit_none(
            {
                "model": config.model,
                "messages": messages,
                "system": "\n".join(system_parts) or None,
                "temperature": config.temperature,
                "max_tokens": max_tokens,
                "tools": tools,
                "thinking": thinking,
                "stream": stream,
            }
        )

    # -------------------------------------------------------------------------
    # Unary decoding
    # -------------------------------------------------------------------------

    def decode(self, payload: dict[str, Any], config: LLMConfig) -> LLMResponse:
        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        for block in payload.get("content") or []:
            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(block.get("text") or "")
            elif block_type == "thinking":
                thinking = block.get("thinking") or block.get("content")
                if isinstance(thinking, str) and thinking:
                    reasoning_parts.append(thinking)
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        input=block.get("input") or {},
                    )
                )

        return build_response(
            config,
            content="".join(text_parts),
            usage=_decode_usage(payload.get("usage")),
            reasoning="".join(reasoning_parts),
            tool_calls=tool_calls,
            model=payload.get("model"),
        )

    # -------------------------------------------------------------------------
    # Streaming decoding
    # -------------------------------------------------------------------------

    async def decode_stream(
        self, reader: ByteReader, config: LLMConfig
    ) -> AsyncIterator[StreamChunk]:
        state = _StreamState(model=config.model)
        payloads = iter_json_payloads(parse_sse_stream(reader), self.provider)

        async with aclosing(payloads):
            async for event in payloads:
                try:
                    chunks = self._decode_event(event, state)
                except MALFORMED_CHUNK_ERRORS as e:
                    log_malformed_chunk(self.provider, event, e)
                    continue
                for chunk in chunks:
                    yield chunk
                if state.stopped:
                    yield self._complete(state, config)
                    return

        for chunk in self._flush_pending(state):
            yield chunk
        yield self._complete(state, config)

    def _decode_event(self, event: dict[str, Any], state: _StreamState) -> list[StreamChunk]:
        event_type = event.get("type")

        if event_type == "message_start":
            message = event.get("message") or {}
            usage = message.get("usage") or {}
            input_tokens = int(usage.get("input_tokens") or 0)
            output_tokens = int(usage.get("output_tokens") or 0)
            if isinstance(message.get("model"), str):
                state.model = message["model"]
            state.input_tokens, state.output_tokens = input_tokens, output_tokens
            return []

        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") != "tool_use":
                return []
            pending = _PendingToolUse(
                id=chunk_text(block.get("id")), name=chunk_text(block.get("name"))
            )
            if block.get("input"):
                if not isinstance(block["input"], dict):
                    raise TypeError("tool_use input is not an object")
                call = pending.complete(block["input"])
                state.tool_calls.append(call)
                return [StreamChunk(type="tool_call", tool_call=call)]
            state.pending[event.get("index", 0)] = pending
            return []

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                text = chunk_text(delta.get("text"))
                if text:
                    state.content.append(text)
                    return [StreamChunk(type="content", content=text)]
            elif delta_type == "thinking_delta":
                thinking = chunk_text(delta.get("thinking") or delta.get("text"))
                if thinking:
                    state.reasoning.append(thinking)
                    return [StreamChunk(type="reasoning", reasoning=thinking)]
            elif delta_type == "input_json_delta":
                partial = chunk_text(delta.get("partial_json"))
                pending = state.pending.get(event.get("index", 0))
                if pending is not None:
                    pending.fragments.append(partial)
            return []

        if event_type == "content_block_stop":
            pending = state.pending.pop(event.get("index", 0), None)
            if pending is None:
                return []
            call = self._finish_tool_use(pending)
            if call is None:
                return []
            state.tool_calls.append(call)
            return [StreamChunk(type="tool_call", tool_call=call)]

        if event_type == "message_delta":
            usage = event.get("usage")
            if not usage:
                return []
            input_tokens = usage.get("input_tokens")
            output_tokens = int(usage.get("output_tokens") or 0)
            if input_tokens is not None:
                state.input_tokens = int(input_tokens)
            state.output_tokens = output_tokens
            return [StreamChunk(type="usage", usage=state.usage())]

        if event_type == "message_stop":
            state.stopped = True
            return self._flush_pending(state)

        if event_type == "error":
            error = event.get("error") or {}
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise self._stream_error(error)

        return []

    def _finish_tool_use(self, pending: _PendingToolUse) -> ToolCall | None:
        arguments = parse_tool_arguments("".join(pending.fragments))
        if arguments is None:
            log.warning(
                "%s stream: dropping tool call %s (%s), input is not a JSON object",
                self.provider,
                pending.id,
                pending.name,
            )
            return None
        return pending.complete(arguments)

    def _flush_pending(self, state: _StreamState) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        for pending in state.pending.values():
            call = self._finish_tool_use(pending)
            if call is not None:
                state.tool_calls.append(call)
                chunks.append(StreamChunk(type="tool_call", tool_call=call))
        state.pending.clear()
        return chunks

    def _stream_error(self, error: dict[str, Any]) -> ProviderError:
        error_type = error.get("type") or "error"
        message = error.get("message") or error_type
        err_cls = RateLimitError if error_type == "rate_limit_error" else ProviderError
        return err_cls(
            f"{self.provider} API error: {error_type} - {message}",
            provider=self.provider,
            retryable=error_type in _RETRYABLE_ERROR_TYPES,
        )

    def _complete(self, state: _StreamState, config: LLMConfig) -> StreamChunk:
        return StreamChunk(
            type="complete",
            final_response=build_response(
                config,
                content="".join(state.content),
                usage=state.usage(),
                reasoning="".join(state.reasoning),
                tool_calls=state.tool_calls,
                model=state.model,
            ),
        )


@dataclass
class _PendingToolUse:
    id: str
    name: str
    fragments: list[str] = field(default_factory=list)

    def complete(self, arguments: dict[str, Any]) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, input=arguments)


@dataclass
class _StreamState:
    model: str
    content: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    pending: dict[int, _PendingToolUse] = field(default_factory=dict)
    input_tokens: int = 0
    output_tokens: int = 0
    stopped: bool = False

    def usage(self) -> Usage:
        return Usage(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            total_tokens=self.input_tokens + self.output_tokens,
        )


def _thinking_budget(config: LLMConfig) -> int:
    if config.thinking_budget is not None:
        return config.thinking_budget
    if config.reasoning_effort in _THINKING_BUDGETS:
        return _THINKING_BUDGETS[config.reasoning_effort]
    return _DEFAULT_THINKING_BUDGET


def _decode_usage(raw: Any) -> Usage:
    if not isinstance(raw, dict):
        return Usage()
    input_tokens = int(raw.get("input_tokens") or 0)
    output_tokens = int(raw.get("output_tokens") or 0)
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


def _encode_message(message: Message) -> dict[str, Any]:
    if message.role == "tool_result":
        return {
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": stringify_content(message.content),
                }
            ],
        }

    role = "user" if message.role == "user" else "assistant"
    if message.tool_calls and role == "assistant":
        blocks = _encode_blocks(message.content)
        blocks.extend(
            {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.input}
            for tc in message.tool_calls
        )
        return {"role": role, "content": blocks}

    if isinstance(message.content, list):
        return {"role": role, "content": _encode_blocks(message.content)}
    return {"role": role, "content": stringify_content(message.content)}


def _encode_blocks(content: Any) -> list[dict[str, Any]]:
    if not isinstance(content, list):
        text = stringify_content(content)
        return [{"type": "text", "text": text}] if text else []
    return [_encode_part(part) for part in content]


def _encode_part(part: ContentPart) -> dict[str, Any]:
    if part.type == "image":
        inline = split_data_url(part)
        if inline is not None:
            media_type, data = inline
            return {
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": data},
            }
        return {"type": "image", "source": {"type": "url", "url": part.content}}
    return {"type": "text", "text": part.content}


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, so consecutive
    turns that share a role (several tool results, or a tool result followed
    by a user prompt) become one message with concatenated content blocks.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}] if prev_content else []
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}] if new_content else []
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)
