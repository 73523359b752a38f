"""Streaming primitives: SSE/NDJSON readers, tool-call accumulation, stream handle."""

from __future__ import annotations

import asyncio
import json
import logging

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor.errors import CastorError
from castor.streaming import (
    StreamingResponse,
    ToolCallAccumulator,
    iter_ndjson_lines,
    parse_sse_stream,
)
from castor.types import LLMResponse, StreamChunk, ToolCall, Usage
from tests.helpers import MockReader

pytestmark = pytest.mark.unit


async def _payloads(reader: MockReader) -> list[str]:
    return [p async for p in parse_sse_stream(reader)]


def _split(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


# =============================================================================
# SSE reader
# =============================================================================


@pytest.mark.asyncio
async def test_sse_yields_data_payloads_and_stops_at_done() -> None:
    body = b'event: ping\ndata: {"a":1}\n\n: comment\ndata: {"b":2}\n\ndata: [DONE]\n\ndata: {"late":1}\n\n'
    reader = MockReader([body])

    assert await _payloads(reader) == ['{"a":1}', '{"b":2}']
    assert reader.released


@pytest.mark.asyncio
async def test_sse_normalizes_crlf_and_strips_one_space() -> None:
    body = b"data:  two-spaces\r\ndata:nospace\r\n\r\n"
    assert await _payloads(MockReader([body])) == [" two-spaces", "nospace"]


@pytest.mark.asyncio
async def test_sse_crlf_split_across_chunks() -> None:
    reader = MockReader([b"data: one\r", b"\ndata: two\r\n"])
    assert await _payloads(reader) == ["one", "two"]


@pytest.mark.asyncio
async def test_sse_skips_empty_payloads() -> None:
    body = b"data:\n\ndata: \n\ndata: x\n\n"
    assert await _payloads(MockReader([body])) == ["x"]


@pytest.mark.asyncio
async def test_sse_processes_unterminated_final_line() -> None:
    reader = MockReader([b"data: first\n\ndata: last"])
    assert await _payloads(reader) == ["first", "last"]
    assert reader.released


@pytest.mark.asyncio
async def test_sse_buffers_partial_multibyte_sequences() -> None:
    body = "data: héllo 🌍\n\n".encode()
    reader = MockReader([bytes([b]) for b in body])
    assert await _payloads(reader) == ["héllo 🌍"]


@pytest.mark.asyncio
async def test_sse_releases_reader_on_early_close() -> None:
    reader = MockReader([b"data: a\n\ndata: b\n\n"])
    gen = parse_sse_stream(reader)

    assert await gen.__anext__() == "a"
    await gen.aclose()

    assert reader.released


@pytest.mark.asyncio
async def test_sse_releases_reader_when_read_fails() -> None:
    class _Failing(MockReader):
        async def read(self) -> bytes:
            raise OSError("connection reset")

    reader = _Failing([])
    with pytest.raises(OSError):
        await _payloads(reader)
    assert reader.released


@pytest.mark.asyncio
async def test_sse_releases_reader_when_consumer_is_cancelled() -> None:
    class _Hanging(MockReader):
        waiting: asyncio.Event

        async def read(self) -> bytes:
            if self.chunks:
                return self.chunks.pop(0)
            self.waiting.set()
            await asyncio.Event().wait()
            return b""

    reader = _Hanging([b"data: first\n\n"])
    reader.waiting = asyncio.Event()
    task = asyncio.create_task(_payloads(reader))
    await reader.waiting.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert reader.released


_payload_text = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc", "Zs", "Zl", "Zp")),
    min_size=1,
    max_size=20,
).filter(lambda s: s != "[DONE]")


@given(
    payloads=st.lists(_payload_text, min_size=1, max_size=6),
    size=st.integers(min_value=1, max_value=9),
    crlf=st.booleans(),
)
@settings(max_examples=50, deadline=None, derandomize=True)
def test_sse_output_is_independent_of_chunking(
    payloads: list[str], size: int, crlf: bool
) -> None:
    """Property: any split of the byte stream yields the same payloads."""
    eol = "\r\n" if crlf else "\n"
    body = "".join(f"data: {p}{eol}{eol}" for p in payloads).encode()

    result = asyncio.run(_payloads(MockReader(_split(body, size))))

    assert result == payloads


# =============================================================================
# NDJSON reader
# =============================================================================


@pytest.mark.asyncio
async def test_ndjson_yields_non_blank_lines_including_tail() -> None:
    reader = MockReader([b'{"a":1}\n\n  \n{"b"', b':2}\r\n{"c":3}'])
    lines = [line async for line in iter_ndjson_lines(reader)]

    assert [json.loads(line) for line in lines] == [{"a": 1}, {"b": 2}, {"c": 3}]
    assert reader.released


# =============================================================================
# Tool-call accumulator
# =============================================================================


def test_accumulator_concatenates_fragments_by_index() -> None:
    acc = ToolCallAccumulator()
    acc.feed({"index": 0, "id": "call_1", "function": {"name": "get_weather", "arguments": '{"loc'}})
    acc.feed({"index": 0, "function": {"arguments": 'ation": "SF"}'}})

    assert acc.finalize() == [ToolCall(id="call_1", name="get_weather", input={"location": "SF"})]


def test_accumulator_migrates_index_entry_when_id_arrives_late() -> None:
    acc = ToolCallAccumulator()
    acc.feed({"index": 0, "function": {"name": "lookup", "arguments": '{"q": '}})
    acc.feed({"index": 0, "id": "call_late", "function": {"arguments": '"x"}'}})

    assert acc.finalize() == [ToolCall(id="call_late", name="lookup", input={"q": "x"})]


def test_accumulator_preserves_first_seen_order_and_finalizes_once() -> None:
    acc = ToolCallAccumulator()
    acc.feed({"index": 1, "id": "b", "function": {"name": "second", "arguments": "{}"}})
    acc.feed({"index": 0, "id": "a", "function": {"name": "first", "arguments": ""}})

    calls = acc.finalize()
    assert [c.id for c in calls] == ["b", "a"]
    assert calls[1].input == {}
    assert acc.finalize() == []


def test_accumulator_accepts_object_arguments() -> None:
    acc = ToolCallAccumulator()
    acc.feed({"index": 0, "id": "c", "function": {"name": "f", "arguments": {"n": 1}}})
    assert acc.finalize()[0].input == {"n": 1}


def test_accumulator_rejects_non_object_fragment_without_touching_entries() -> None:
    acc = ToolCallAccumulator()
    acc.feed({"index": 0, "id": "c", "function": {"name": "f", "arguments": "{}"}})

    with pytest.raises(TypeError):
        acc.feed("oops")  # type: ignore[arg-type]
    acc.feed({"index": 0, "id": "c", "function": "oops"})

    assert acc.finalize() == [ToolCall(id="c", name="f", input={})]


def test_accumulator_drops_unparsable_and_nameless_entries(
    caplog: pytest.LogCaptureFixture,
) -> None:
    acc = ToolCallAccumulator("Groq")
    acc.feed({"index": 0, "id": "bad", "function": {"name": "f", "arguments": '{"x": '}})
    acc.feed({"index": 1, "id": "list", "function": {"name": "g", "arguments": "[1]"}})
    acc.feed({"index": 2, "id": "anon", "function": {"arguments": "{}"}})
    acc.feed({"index": 3, "id": "ok", "function": {"name": "h", "arguments": "{}"}})

    with caplog.at_level(logging.WARNING, logger="castor.streaming"):
        calls = acc.finalize()

    assert [c.id for c in calls] == ["ok"]
    assert len(caplog.records) == 3
    assert all("Groq" in r.getMessage() for r in caplog.records)


@given(
    arguments=st.dictionaries(
        st.text(min_size=1, max_size=5), st.integers() | st.text(max_size=5), max_size=4
    ),
    size=st.integers(min_value=1, max_value=6),
)
@settings(max_examples=50, deadline=None, derandomize=True)
def test_accumulator_reassembles_any_fragmentation(
    arguments: dict[str, object], size: int
) -> None:
    """Property: splitting the argument string never changes the parsed input."""
    raw = json.dumps(arguments)
    acc = ToolCallAccumulator()
    acc.feed({"index": 0, "id": "call", "function": {"name": "fn", "arguments": ""}})
    for i in range(0, len(raw), size):
        acc.feed({"index": 0, "function": {"arguments": raw[i : i + size]}})

    assert acc.finalize() == [ToolCall(id="call", name="fn", input=arguments)]


# =============================================================================
# StreamingResponse
# =============================================================================


def _final(content: str = "hi") -> LLMResponse:
    return LLMResponse(
        service="openai", model="m", content=content, usage=Usage(), messages=[]
    )


async def _chunks(*items: StreamChunk):
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_collect_returns_final_response_and_is_memoized() -> None:
    final = _final()
    response = StreamingResponse(
        "openai",
        "m",
        _chunks(
            StreamChunk(type="content", content="hi"),
            StreamChunk(type="complete", final_response=final),
        ),
    )

    assert await response.collect() is final
    assert await response.collect() is final


@pytest.mark.asyncio
async def test_collect_after_iteration_reuses_cached_final() -> None:
    final = _final()
    response = StreamingResponse(
        "openai", "m", _chunks(StreamChunk(type="complete", final_response=final))
    )

    seen = [chunk.type async for chunk in response]

    assert seen == ["complete"]
    assert await response.collect() is final


@pytest.mark.asyncio
async def test_collect_raises_when_stream_never_completes() -> None:
    response = StreamingResponse(
        "anthropic", "m", _chunks(StreamChunk(type="content", content="x"))
    )

    with pytest.raises(CastorError, match="without a final response"):
        await response.collect()


@pytest.mark.asyncio
async def test_context_manager_releases_unstarted_stream() -> None:
    reader = MockReader([b"data: x\n\n"])

    async with StreamingResponse(
        "openai", "m", _chunks(), release=reader.release
    ) as response:
        assert response.service == "openai"

    assert reader.released
