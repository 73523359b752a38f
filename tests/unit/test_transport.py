"""Transport port: the httpx-backed default and the resolution order."""

from __future__ import annotations

import json

import httpx
import pytest

from castor.errors import TransportError
from castor.transport import (
    HttpxTransport,
    get_default_transport,
    resolve_transport,
    set_default_transport,
)
from tests.helpers import RecordingTransport

pytestmark = pytest.mark.unit


def _transport(handler) -> HttpxTransport:
    return HttpxTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_httpx_transport_sends_method_headers_and_body() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    response = await _transport(handler)(
        "https://api.example.com/v1/chat",
        {
            "method": "POST",
            "headers": {"Authorization": "Bearer k"},
            "body": json.dumps({"model": "m"}),
        },
    )

    assert response.ok
    assert response.status == 200
    assert response.status_text == "OK"
    assert await response.json() == {"ok": True}
    assert seen == {
        "method": "POST",
        "url": "https://api.example.com/v1/chat",
        "auth": "Bearer k",
        "body": {"model": "m"},
    }


@pytest.mark.asyncio
async def test_httpx_response_exposes_error_status_and_headers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "3"}, text="slow down")

    response = await _transport(handler)("https://x", {"method": "POST"})

    assert not response.ok
    assert response.status == 429
    assert response.headers["retry-after"] == "3"
    assert await response.text() == "slow down"


@pytest.mark.asyncio
async def test_reader_returns_body_then_empty_bytes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"data: a\n\ndata: b\n\n")

    response = await _transport(handler)("https://x", {"method": "POST"})
    reader = response.get_reader()

    received = b""
    while chunk := await reader.read():
        received += chunk

    assert received == b"data: a\n\ndata: b\n\n"
    assert await reader.read() == b""
    await reader.release()
    await reader.release()


@pytest.mark.asyncio
async def test_network_failure_becomes_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc:
        await _transport(handler)("https://api.example.com", {"method": "POST"})

    assert "api.example.com" in str(exc.value)
    assert exc.value.hint is not None


# =============================================================================
# Resolution order
# =============================================================================


def test_ambient_default_is_a_shared_httpx_transport() -> None:
    first = get_default_transport()
    assert isinstance(first, HttpxTransport)
    assert get_default_transport() is first


def test_set_default_transport_and_reset() -> None:
    custom = RecordingTransport()
    set_default_transport(custom)
    assert get_default_transport() is custom

    set_default_transport(None)
    assert isinstance(get_default_transport(), HttpxTransport)


def test_resolve_transport_precedence() -> None:
    call, config, process = RecordingTransport(), RecordingTransport(), RecordingTransport()
    set_default_transport(process)

    assert resolve_transport(call, config) is call
    assert resolve_transport(None, config) is config
    assert resolve_transport(None, None) is process
