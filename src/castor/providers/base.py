"""Adapter protocol and the HTTP plumbing every provider shares.

An adapter owns three translations for one vendor: unified config → request
body, response JSON → ``LLMResponse``, and streamed payloads → ``StreamChunk``
events. Sending, error mapping and response assembly live here.
"""

from __future__ import annotations

from contextlib import aclosing
import json
import logging
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from castor._http import JSON_CONTENT_TYPE
from castor.capabilities import display_name
from castor.errors import ProviderError, StreamParseError
from castor.providers._errors import raise_for_response
from castor.streaming import StreamingResponse
from castor.transport import get_default_transport
from castor.types import Capabilities, LLMResponse, Message, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.config import LLMConfig
    from castor.transport import ByteReader, TransportResponse
    from castor.types import ServiceName, StreamChunk, ToolCall

log = logging.getLogger(__name__)


@runtime_checkable
class ProviderAdapter(Protocol):
    """The seam between the dispatcher and one vendor API."""

    name: ServiceName

    async def call(self, config: LLMConfig) -> LLMResponse:
        """Send *config* and return the decoded response."""
        ...

    async def stream(self, config: LLMConfig) -> StreamingResponse:
        """Send *config* with streaming enabled and return the chunk handle."""
        ...


# =============================================================================
# Response assembly
# =============================================================================


def compute_capabilities(
    content: str | None, reasoning: str | None, tool_calls: list[ToolCall] | None
) -> Capabilities:
    return Capabilities(
        has_text=bool(content and content.strip()),
        has_reasoning=bool(reasoning and reasoning.strip()),
        has_tool_calls=bool(tool_calls),
    )


def build_response(
    config: LLMConfig,
    *,
    content: str | None,
    usage: Usage | None = None,
    reasoning: str | None = None,
    tool_calls: list[ToolCall] | None = None,
    model: str | None = None,
) -> LLMResponse:
    """Assemble the unified response and append the assistant turn.

    Empty reasoning and empty tool-call lists are normalized to ``None`` so
    the fields and the capability flags agree.
    """
    text = content or ""
    reasoning = reasoning or None
    tool_calls = list(tool_calls) if tool_calls else None
    assistant = Message(
        role="assistant", content=text, tool_calls=tool_calls, reasoning=reasoning
    )
    return LLMResponse(
        service=config.service,
        model=model or config.model,
        content=text,
        usage=usage or Usage(),
        messages=[*config.messages, assistant],
        reasoning=reasoning,
        tool_calls=tool_calls,
        capabilities=compute_capabilities(text, reasoning, tool_calls),
    )


# =============================================================================
# Streaming helpers
# =============================================================================


#: Raised by a decoder when a chunk is valid JSON but not the expected shape.
MALFORMED_CHUNK_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


def log_malformed_chunk(provider: str, payload: Any, error: Exception) -> None:
    log.warning(
        "%s stream: skipping malformed chunk: %s: %s (payload=%.200r)",
        provider,
        type(error).__name__,
        error,
        payload,
    )


def chunk_text(value: Any) -> str:
    """Streamed text field as a string; ``""`` when absent."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"expected a text field, got {type(value).__name__}")
    return value


def decode_payload(data: str) -> dict[str, Any]:
    """Parse one streamed payload into a JSON object."""
    try:
        payload = json.loads(data)
    except ValueError as e:
        raise StreamParseError(f"Invalid JSON in stream chunk: {e}", payload=data) from e
    if not isinstance(payload, dict):
        raise StreamParseError("Stream chunk is not a JSON object", payload=data)
    return payload


async def iter_json_payloads(
    lines: AsyncIterator[str], provider: str
) -> AsyncIterator[dict[str, Any]]:
    """Decode each payload string, skipping (and logging) malformed ones."""
    async with aclosing(lines):  # type: ignore[type-var]
        async for data in lines:
            try:
                payload = decode_payload(data)
            except StreamParseError as e:
                log.warning(
                    "%s stream: skipping malformed chunk: %s (payload=%.200r)",
                    provider,
                    e,
                    e.payload,
                )
                continue
            yield payload


# =============================================================================
# HTTP adapter base
# =============================================================================


class HTTPAdapter:
    """Template for adapters that speak JSON over the transport port.

    Subclasses supply the endpoint, auth headers, request encoder and the two
    decoders; this class handles dispatch, error mapping and stream wiring.
    """

    name: ClassVar[ServiceName]
    default_base_url: ClassVar[str]

    @property
    def provider(self) -> str:
        return display_name(self.name)

    def base_url(self, config: LLMConfig) -> str:
        return (config.base_url or self.default_base_url).rstrip("/")

    def endpoint(self, config: LLMConfig, *, stream: bool) -> str:
        raise NotImplementedError

    def auth_headers(self, config: LLMConfig) -> dict[str, str]:
        return {}

    def build_headers(self, config: LLMConfig) -> dict[str, str]:
        """Content type, then auth, then caller headers (which win)."""
        headers = {"Content-Type": JSON_CONTENT_TYPE}
        headers.update(self.auth_headers(config))
        if config.headers:
            headers.update(config.headers)
        return headers

    def encode(self, config: LLMConfig, *, stream: bool) -> dict[str, Any]:
        raise NotImplementedError

    def decode(self, payload: dict[str, Any], config: LLMConfig) -> LLMResponse:
        raise NotImplementedError

    def decode_stream(
        self, reader: ByteReader, config: LLMConfig
    ) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError

    async def _send(self, config: LLMConfig, *, stream: bool) -> TransportResponse:
        url = self.endpoint(config, stream=stream)
        body = self.encode(config, stream=stream)
        transport = config.transport or get_default_transport()
        log.debug(
            "Dispatching %s request model=%s stream=%s url=%s",
            self.provider,
            config.model,
            stream,
            url,
        )
        response = await transport(
            url,
            {
                "method": "POST",
                "headers": self.build_headers(config),
                "body": json.dumps(body),
            },
        )
        await raise_for_response(response, self.name)
        return response

    async def call(self, config: LLMConfig) -> LLMResponse:
        response = await self._send(config, stream=False)
        try:
            payload = await response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.provider} API returned a non-JSON body: {e}",
                status_code=response.status,
                provider=self.provider,
                retryable=False,
            ) from e
        if not isinstance(payload, dict):
            raise ProviderError(
                f"{self.provider} API returned an unexpected payload",
                status_code=response.status,
                provider=self.provider,
                retryable=False,
            )
        return self.decode(payload, config)

    async def stream(self, config: LLMConfig) -> StreamingResponse:
        response = await self._send(config, stream=True)
        reader = response.get_reader()
        return StreamingResponse(
            self.name,
            config.model,
            self.decode_stream(reader, config),
            release=reader.release,
        )
