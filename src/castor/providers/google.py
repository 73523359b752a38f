"""Google Gemini ``generateContent`` adapter."""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
import itertools
import re
import time
from typing import TYPE_CHECKING, Any

from castor.errors import ProviderError, ToolResultError
from castor.providers._utils import (
    omit_none,
    sanitize_google_schema,
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
    from collections.abc import AsyncIterator, Callable, Sequence

    from castor.config import LLMConfig
    from castor.transport import ByteReader
    from castor.types import ContentPart, LLMResponse, Message

_THINKING_MODEL_RE = re.compile(r"gemini-2\.5")
# Ids minted by this adapter: google_{name}_{ms}[_{counter}]. The millisecond
# timestamp is what separates the name from the suffix.
_SYNTHETIC_ID_RE = re.compile(r"^google_(.+?)_\d{10,}(?:_\d+)?$")


class GoogleAdapter(HTTPAdapter):
    """Gemini REST API with ``x-goog-api-key`` auth."""

    name = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def endpoint(self, config: LLMConfig, *, stream: bool) -> str:
        base = f"{self.base_url(config)}/models/{config.model}"
        if stream:
            return f"{base}:streamGenerateContent?alt=sse"
        return f"{base}:generateContent"

    def auth_headers(self, config: LLMConfig) -> dict[str, str]:
        return {"x-goog-api-key": config.api_key or ""}

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode(self, config: LLMConfig, *, stream: bool) -> dict[str, Any]:
        messages = resolve_tool_result_linking(config.messages)
        for position, message in enumerate(messages):
            validate_tool_result_message(message, self.name, position=position)

        system_parts = [config.system_prompt] if config.system_prompt else []
        contents: list[dict[str, Any]] = []
        for position, message in enumerate(messages):
            if message.role == "system":
                text = stringify_content(message.content)
                if text:
                    system_parts.append(text)
                continue
            if message.role == "tool_result":
                contents.append(self._encode_tool_result(messages, position))
                continue
            contents.append(_encode_message(message))

        body: dict[str, Any] = {"contents": contents}
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n".join(system_parts)}]}

        if config.tools:
            body["tools"] = [
                {
                    "function_declarations": [
                        {
                            "name": tool["name"],
                            "description": tool["description"],
                            "parameters": sanitize_google_schema(tool["parameters"] or {}),
                        }
                        for tool in sanitize_tools(config.tools)
                    ]
                }
            ]

        generation_config = omit_none(
            {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_tokens,
            }
        )
        if _THINKING_MODEL_RE.search(config.model):
            if config.thinking_budget is not None:
                generation_config["thinkingBudget"] = config.thinking_budget
            if config.include_thoughts:
                generation_config["includeThoughts"] = True
        if generation_config:
            body["generationConfig"] = generation_config
        return body

    def _encode_tool_result(
        self, messages: Sequence[Message], position: int
    ) -> dict[str, Any]:
        message = messages[position]
        name = message.name or _resolve_function_name(messages, position)
        if not name:
            raise ToolResultError(
                f"Tool result for {self.provider} must include a name or a "
                f"resolvable tool_call_id (message {position})",
                provider=self.provider,
                position=position,
                hint="Set name to the function name the model called.",
            )
        content = message.content
        response = content if isinstance(content, dict) else {"result": stringify_content(content)}
        return {
            "role": "user",
            "parts": [{"functionResponse": {"name": name, "response": response}}],
        }

    # -------------------------------------------------------------------------
    # Unary decoding
    # -------------------------------------------------------------------------

    def decode(self, payload: dict[str, Any], config: LLMConfig) -> LLMResponse:
        candidates = payload.get("candidates") or []
        if not candidates:
            block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
            detail = f" (blockReason={block_reason})" if block_reason else ""
            raise ProviderError(
                f"{self.provider} API returned no candidates{detail}",
                provider=self.provider,
                retryable=False,
            )

        new_id = _id_factory()
        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for kind, value in _iter_parts(candidates[0], new_id):
            if kind == "content":
                text_parts.append(value)
            elif kind == "reasoning":
                reasoning_parts.append(value)
            else:
                tool_calls.append(value)

        reasoning = "".join(reasoning_parts)
        summaries = _thought_summaries(payload)
        if summaries:
            reasoning = f"{reasoning}\n{summaries}" if reasoning else summaries

        return build_response(
            config,
            content="".join(text_parts),
            usage=_decode_usage(payload.get("usageMetadata")),
            reasoning=reasoning,
            tool_calls=tool_calls,
            model=payload.get("modelVersion"),
        )

    # -------------------------------------------------------------------------
    # Streaming decoding
    # -------------------------------------------------------------------------

    async def decode_stream(
        self, reader: ByteReader, config: LLMConfig
    ) -> AsyncIterator[StreamChunk]:
        state = _StreamState(model=config.model)
        new_id = _id_factory()
        payloads = iter_json_payloads(parse_sse_stream(reader), self.provider)

        async with aclosing(payloads):
            async for payload in payloads:
                try:
                    chunks = self._decode_chunk(payload, state, new_id)
                except MALFORMED_CHUNK_ERRORS as e:
                    log_malformed_chunk(self.provider, payload, e)
                    continue
                for chunk in chunks:
                    yield chunk
                if state.finished:
                    for chunk in self._finish(state, config):
                        yield chunk
                    return

        for chunk in self._finish(state, config):
            yield chunk

    def _decode_chunk(
        self,
        payload: dict[str, Any],
        state: _StreamState,
        new_id: Callable[[str], str],
    ) -> list[StreamChunk]:
        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            raise ProviderError(
                f"{self.provider} API error: {code or ''} - "
                f"{error.get('message', 'stream error')}",
                status_code=code if isinstance(code, int) else None,
                provider=self.provider,
                retryable=False,
            )

        candidates = payload.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        parts = _iter_parts(candidate, new_id)
        summaries = _thought_summaries(payload)
        usage = _decode_usage(payload["usageMetadata"]) if payload.get("usageMetadata") else None
        finished = bool(candidate.get("finishReason"))

        if isinstance(payload.get("modelVersion"), str):
            state.model = payload["modelVersion"]
        if usage is not None:
            state.usage = usage

        chunks: list[StreamChunk] = []
        for kind, value in parts:
            if kind == "content":
                state.content.append(value)
                chunks.append(StreamChunk(type="content", content=value))
            elif kind == "reasoning":
                state.reasoning.append(value)
                chunks.append(StreamChunk(type="reasoning", reasoning=value))
            else:
                state.tool_calls.append(value)
                chunks.append(StreamChunk(type="tool_call", tool_call=value))
        if summaries:
            state.reasoning.append(summaries)
            chunks.append(StreamChunk(type="reasoning", reasoning=summaries))
        state.finished = finished
        return chunks

    def _finish(self, state: _StreamState, config: LLMConfig) -> list[StreamChunk]:
        chunks = []
        if state.usage is not None:
            chunks.append(StreamChunk(type="usage", usage=state.usage))
        chunks.append(
            StreamChunk(
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
        )
        return chunks


@dataclass
class _StreamState:
    model: str
    content: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    finished: bool = False


def _id_factory() -> Callable[[str], str]:
    """Mint ``google_{name}_{ms}_{n}`` ids; Gemini does not assign call ids."""
    counter = itertools.count(1)

    def new_id(name: str) -> str:
        return f"google_{name}_{int(time.time() * 1000)}_{next(counter)}"

    return new_id


def _iter_parts(
    candidate: dict[str, Any], new_id: Callable[[str], str]
) -> list[tuple[str, Any]]:
    """Classify candidate parts as ``content``, ``reasoning`` or ``tool_call``.

    Raises ``TypeError``/``AttributeError`` on a part of the wrong shape.
    """
    out: list[tuple[str, Any]] = []
    for part in (candidate.get("content") or {}).get("parts") or []:
        text = chunk_text(part.get("text"))
        if text:
            out.append(("reasoning" if part.get("thought") is True else "content", text))
        call = part.get("functionCall")
        if call and call.get("name"):
            args = call.get("args") or {}
            if not isinstance(args, dict):
                raise TypeError("functionCall args is not an object")
            name = chunk_text(call["name"])
            out.append(("tool_call", ToolCall(id=new_id(name), name=name, input=args)))
        thinking = chunk_text(part.get("thinking"))
        if thinking:
            out.append(("reasoning", thinking))
    return out


def _thought_summaries(payload: dict[str, Any]) -> str:
    summaries = payload.get("thoughtSummaries") or []
    return "\n".join(
        s["content"] for s in summaries if isinstance(s, dict) and s.get("content")
    )


def _decode_usage(raw: Any) -> Usage:
    if not isinstance(raw, dict):
        return Usage()
    input_tokens = int(raw.get("promptTokenCount") or 0)
    output_tokens = int(raw.get("candidatesTokenCount") or 0)
    thoughts = raw.get("thoughtsTokenCount")
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=int(raw.get("totalTokenCount") or input_tokens + output_tokens),
        reasoning_tokens=int(thoughts) if thoughts is not None else None,
    )


def _resolve_function_name(messages: Sequence[Message], position: int) -> str | None:
    """Find the function a tool result answers, from prior calls or its id."""
    call_id = messages[position].tool_call_id
    if not call_id:
        return None
    for prior in reversed(messages[:position]):
        for tc in prior.tool_calls or []:
            if tc.id == call_id:
                return tc.name
    match = _SYNTHETIC_ID_RE.match(call_id)
    return match.group(1) if match else None


def _encode_message(message: Message) -> dict[str, Any]:
    role = "user" if message.role == "user" else "model"
    parts: list[dict[str, Any]] = []
    content = message.content
    if isinstance(content, list):
        parts.extend(_encode_part(part) for part in content)
    elif isinstance(content, str):
        if content or not message.tool_calls:
            parts.append({"text": content})
    elif content is not None:
        parts.append({"text": stringify_content(content)})

    for tc in message.tool_calls or []:
        parts.append({"functionCall": {"name": tc.name, "args": tc.input}})
    return {"role": role, "parts": parts}


def _encode_part(part: ContentPart) -> dict[str, Any]:
    if part.type == "text":
        return {"text": part.content}
    if part.type in ("image", "audio", "video", "file"):
        inline = split_data_url(part)
        if inline is not None:
            mime_type, data = inline
            return {"inlineData": {"mimeType": mime_type, "data": data}}
        return {"fileData": {"fileUri": part.content}}
    return {"text": str(part.content)}
