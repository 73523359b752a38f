"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: a scripted transport, a byte reader
and body builders cover every adapter without touching the network.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any

from castor.config import LLMConfig
from castor.types import Message


@dataclass
class MockReader:
    """ByteReader over pre-split chunks; records releases."""

    chunks: list[bytes]
    release_calls: int = 0
    reads: int = 0

    async def read(self) -> bytes:
        self.reads += 1
        if not self.chunks:
            return b""
        return self.chunks.pop(0)

    async def release(self) -> None:
        self.release_calls += 1

    @property
    def released(self) -> bool:
        return self.release_calls > 0


@dataclass
class MockResponse:
    """TransportResponse double with a fixed status and body."""

    status: int = 200
    body: bytes | list[bytes] = b""
    headers: dict[str, str] = field(default_factory=dict)
    status_text: str = "OK"
    reader: MockReader | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def text(self) -> str:
        body = self.body if isinstance(self.body, bytes) else b"".join(self.body)
        return body.decode("utf-8")

    async def json(self) -> Any:
        return json.loads(await self.text())

    def get_reader(self) -> MockReader:
        if self.reader is None:
            chunks = [self.body] if isinstance(self.body, bytes) else list(self.body)
            self.reader = MockReader(chunks)
        return self.reader


@dataclass
class RecordingTransport:
    """Transport that records requests and replays scripted responses."""

    script: list[MockResponse | BaseException] = field(default_factory=list)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def __call__(self, url: str, request: dict[str, Any]) -> MockResponse:
        self.calls.append((url, request))
        if not self.script:
            return MockResponse(body=b"{}")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def last_url(self) -> str:
        return self.calls[-1][0]

    @property
    def last_headers(self) -> dict[str, str]:
        return self.calls[-1][1]["headers"]

    @property
    def last_body(self) -> dict[str, Any]:
        return json.loads(self.calls[-1][1]["body"])


def json_response(payload: Any, *, status: int = 200, **kwargs: Any) -> MockResponse:
    return MockResponse(status=status, body=json.dumps(payload).encode(), **kwargs)


def sse_body(*events: Any, done: bool = True) -> bytes:
    """Encode events as ``data:`` lines; dicts are JSON-encoded."""
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def ndjson_body(*events: dict[str, Any]) -> bytes:
    return "".join(json.dumps(event) + "\n" for event in events).encode()


def stream_response(body: bytes, *, split: int | None = None) -> MockResponse:
    """Streaming response, optionally cut into ``split``-byte chunks."""
    if split is None:
        return MockResponse(body=[body])
    return MockResponse(body=[body[i : i + split] for i in range(0, len(body), split)])


def make_config(service: str = "openai", **overrides: Any) -> LLMConfig:
    """A valid config for *service* with a single user message."""
    defaults: dict[str, Any] = {
        "service": service,
        "model": "test-model",
        "api_key": None if service == "ollama" else "test-key",
        "messages": [Message(role="user", content="Hello")],
    }
    defaults.update(overrides)
    return LLMConfig(**defaults)


async def drain(response: Any) -> list[Any]:
    """Collect every chunk from a StreamingResponse."""
    return [chunk async for chunk in response]
