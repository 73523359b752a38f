"""Streaming primitives shared by every provider decoder.

- ``parse_sse_stream``: byte reader → Server-Sent Event ``data:`` payloads.
- ``iter_ndjson_lines``: byte reader → newline-delimited JSON lines.
- ``ToolCallAccumulator``: reassembles tool calls streamed in fragments.
- ``StreamingResponse``: caller-facing handle over a decoder's chunk iterator.

Readers are released on every exit path, including early close by the
caller and errors raised by the transport.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import CastorError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
    from types import TracebackType

    from castor.transport import ByteReader
    from castor.types import LLMResponse, ServiceName, StreamChunk, ToolCall

log = logging.getLogger(__name__)

_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"


async def _iter_lines(reader: ByteReader) -> AsyncIterator[str]:
    """Yield LF-terminated lines decoded as UTF-8, then any unterminated tail."""
    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""
    while True:
        chunk = await reader.read()
        if not chunk:
            break
        buffer += decoder.decode(chunk)
        buffer = buffer.replace("\r\n", "\n")
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line
    buffer += decoder.decode(b"", final=True)
    buffer = buffer.replace("\r\n", "\n")
    for line in buffer.split("\n"):
        if line:
            yield line


async def parse_sse_stream(reader: ByteReader) -> AsyncIterator[str]:
    """Yield the payload of each ``data:`` line until ``[DONE]`` or EOF.

    Event names, ids and comments are ignored; empty payloads are skipped.
    """
    try:
        async for raw_line in _iter_lines(reader):
            line = raw_line.rstrip()
            if not line.startswith(_SSE_DATA_PREFIX):
                continue
            data = line[len(_SSE_DATA_PREFIX) :]
            if data.startswith(" "):
                data = data[1:]
            if data == _SSE_DONE:
                return
            if data:
                yield data
    finally:
        await reader.release()


async def iter_ndjson_lines(reader: ByteReader) -> AsyncIterator[str]:
    """Yield each non-blank line of a newline-delimited JSON body."""
    try:
        async for raw_line in _iter_lines(reader):
            line = raw_line.strip()
            if line:
                yield line
    finally:
        await reader.release()


# =============================================================================
# Tool-call accumulation
# =============================================================================


@dataclass
class _PendingToolCall:
    id: str | None
    name: str | None = None
    arguments: str = ""


class ToolCallAccumulator:
    """Reassemble OpenAI-style ``delta.tool_calls`` fragments.

    Fragments are keyed by ``id`` when present, otherwise by ``index``. An id
    that shows up after index-only fragments takes over that index's entry,
    keeping the arguments gathered so far.
    """

    def __init__(self, provider: str = "provider") -> None:
        self._provider = provider
        self._entries: dict[str, _PendingToolCall] = {}
        self._index_keys: dict[int, str] = {}
        self._finalized = False

    def __bool__(self) -> bool:
        return bool(self._entries)

    def feed(self, fragment: Mapping[str, Any]) -> None:
        """Merge one ``tool_calls[i]`` delta into the matching entry.

        Raises ``TypeError`` for a fragment that is not an object, before any
        entry is touched.
        """
        if not isinstance(fragment, dict):
            raise TypeError(f"tool call fragment is not an object: {fragment!r}")
        index = fragment.get("index")
        if not isinstance(index, int):
            index = 0
        incoming_id = fragment.get("id")
        if not isinstance(incoming_id, str) or not incoming_id:
            incoming_id = None
        function = fragment.get("function")
        if not isinstance(function, dict):
            function = {}

        key = self._key_for(index, incoming_id)
        entry = self._entries.setdefault(key, _PendingToolCall(id=incoming_id))

        name = function.get("name")
        if isinstance(name, str) and name and not entry.name:
            entry.name = name
        arguments = function.get("arguments")
        if isinstance(arguments, str):
            entry.arguments += arguments
        elif isinstance(arguments, dict):
            entry.arguments = json.dumps(arguments)

    def _key_for(self, index: int, incoming_id: str | None) -> str:
        known = self._index_keys.get(index)
        if incoming_id is None:
            if known is None:
                known = f"index:{index}"
                self._index_keys[index] = known
            return known

        if known is not None and known != incoming_id and known.startswith("index:"):
            entry = self._entries.get(known)
            if entry is not None:
                entry.id = incoming_id
                # Rebuild so the migrated entry keeps its first-seen position.
                self._entries = {
                    (incoming_id if key == known else key): value
                    for key, value in self._entries.items()
                }
        self._index_keys[index] = incoming_id
        return incoming_id

    def finalize(self) -> list[ToolCall]:
        """Parse accumulated arguments and return complete calls.

        Returns an empty list on every call after the first. Entries without a
        name or with arguments that are not a JSON object are dropped.
        """
        from castor.types import ToolCall

        if self._finalized:
            return []
        self._finalized = True

        calls: list[ToolCall] = []
        for key, entry in self._entries.items():
            if not entry.name:
                log.warning(
                    "%s stream: dropping tool call %s without a function name",
                    self._provider,
                    key,
                )
                continue
            try:
                parsed = json.loads(entry.arguments or "{}")
            except json.JSONDecodeError as e:
                log.warning(
                    "%s stream: dropping tool call %s (%s), arguments are not valid JSON: %s",
                    self._provider,
                    key,
                    entry.name,
                    e,
                )
                continue
            if not isinstance(parsed, dict):
                log.warning(
                    "%s stream: dropping tool call %s (%s), arguments are not a JSON object",
                    self._provider,
                    key,
                    entry.name,
                )
                continue
            calls.append(ToolCall(id=entry.id or key, name=entry.name, input=parsed))
        return calls


# =============================================================================
# Caller-facing stream handle
# =============================================================================


class StreamingResponse:
    """Handle to an in-flight streamed completion.

    Iterate ``chunks`` (or the handle itself) to receive events as they
    arrive, or await ``collect()`` for the final ``LLMResponse``. The chunk
    iterator can be consumed only once; ``collect()`` drains whatever is left
    and caches the result, so it is safe to call repeatedly.

    Example:
        async with await castor.stream(config) as response:
            async for chunk in response:
                if chunk.type == "content":
                    print(chunk.content, end="")
    """

    def __init__(
        self,
        service: ServiceName,
        model: str,
        chunks: AsyncIterator[StreamChunk],
        *,
        release: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.service = service
        self.model = model
        self._source = chunks
        self._release = release
        self._final: LLMResponse | None = None
        self.chunks: AsyncIterator[StreamChunk] = self._track(chunks)

    async def _track(self, source: AsyncIterator[StreamChunk]) -> AsyncIterator[StreamChunk]:
        async for chunk in source:
            if chunk.type == "complete" and chunk.final_response is not None:
                self._final = chunk.final_response
            yield chunk

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self.chunks

    async def collect(self) -> LLMResponse:
        """Drain the stream and return the final response."""
        if self._final is None:
            async for _ in self.chunks:
                pass
        if self._final is None:
            raise CastorError(
                f"{self.service} stream ended without a final response",
            )
        return self._final

    async def aclose(self) -> None:
        """Stop the stream early and release the connection."""
        await self.chunks.aclose()  # type: ignore[attr-defined]
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
        # A decoder closed before its first chunk never reaches its finally.
        if self._release is not None:
            await self._release()

    async def __aenter__(self) -> StreamingResponse:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
