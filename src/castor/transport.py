"""Transport port: the single seam through which Castor performs I/O.

A transport is an async callable ``(url, request) -> response`` modelled on
the browser fetch contract. Adapters use it for unary and streaming calls
alike; the response body is read either whole (``json()``/``text()``) or
incrementally through ``get_reader()``.

Resolution order per call: call-level override, config-level override,
process-wide default (``set_default_transport``), then the ambient
``HttpxTransport``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, TypedDict, runtime_checkable

import httpx

from castor.errors import TransportError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

log = logging.getLogger(__name__)


class TransportRequest(TypedDict, total=False):
    """Request options handed to a transport."""

    method: str
    headers: dict[str, str]
    body: str


@runtime_checkable
class ByteReader(Protocol):
    """Incremental reader over a response body."""

    async def read(self) -> bytes:
        """Return the next chunk of bytes, or ``b""`` once the body is exhausted."""
        ...

    async def release(self) -> None:
        """Release the underlying connection. Safe to call more than once."""
        ...


@runtime_checkable
class TransportResponse(Protocol):
    """Minimal response surface adapters rely on."""

    @property
    def status(self) -> int: ...

    @property
    def status_text(self) -> str: ...

    @property
    def ok(self) -> bool: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    async def json(self) -> Any: ...

    async def text(self) -> str: ...

    def get_reader(self) -> ByteReader: ...


class Transport(Protocol):
    """Async callable performing one HTTP exchange."""

    async def __call__(
        self, url: str, request: TransportRequest
    ) -> TransportResponse: ...


# =============================================================================
# httpx-backed default
# =============================================================================


class _HttpxByteReader:
    def __init__(self, owner: HttpxResponse) -> None:
        self._owner = owner
        self._chunks: AsyncIterator[bytes] = owner.raw.aiter_bytes()

    async def read(self) -> bytes:
        try:
            return await anext(self._chunks, b"")
        except httpx.StreamError as e:
            raise TransportError(f"Reading response body failed: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Reading response body failed: {e}") from e

    async def release(self) -> None:
        await self._owner.aclose()


class HttpxResponse:
    """``TransportResponse`` over a streamed ``httpx.Response``."""

    def __init__(
        self, response: httpx.Response, client: httpx.AsyncClient | None = None
    ) -> None:
        self.raw = response
        # Set when the transport created a client just for this exchange.
        self._client = client
        self._closed = False

    @property
    def status(self) -> int:
        return self.raw.status_code

    @property
    def status_text(self) -> str:
        return self.raw.reason_phrase

    @property
    def ok(self) -> bool:
        return 200 <= self.raw.status_code < 300

    @property
    def headers(self) -> Mapping[str, str]:
        return self.raw.headers

    async def text(self) -> str:
        try:
            await self.raw.aread()
        except httpx.RequestError as e:
            raise TransportError(f"Reading response body failed: {e}") from e
        finally:
            await self.aclose()
        return self.raw.text

    async def json(self) -> Any:
        return json.loads(await self.text())

    def get_reader(self) -> ByteReader:
        return _HttpxByteReader(self)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.raw.aclose()
        finally:
            if self._client is not None:
                await self._client.aclose()


class HttpxTransport:
    """Default transport built on ``httpx.AsyncClient``.

    Pass a client to share connection pools across calls; otherwise a client
    is created per request and closed together with its response.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float | None = 60.0,
    ) -> None:
        self._client = client
        self._timeout = timeout

    async def __call__(self, url: str, request: TransportRequest) -> HttpxResponse:
        owned = self._client is None
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            req = client.build_request(
                request.get("method", "POST"),
                url,
                headers=request.get("headers"),
                content=request.get("body"),
            )
            response = await client.send(req, stream=True)
        except asyncio.CancelledError:
            if owned:
                await client.aclose()
            raise
        except httpx.RequestError as e:
            if owned:
                await client.aclose()
            raise TransportError(
                f"HTTP request to {url} failed: {e}",
                hint="Check network connectivity and the configured base_url.",
            ) from e
        return HttpxResponse(response, client if owned else None)


# =============================================================================
# Process-wide default
# =============================================================================

_default_transport: Transport | None = None
_ambient_transport: HttpxTransport | None = None


def set_default_transport(transport: Transport | None) -> None:
    """Install the transport used when neither call nor config override it.

    Passing ``None`` restores the ambient ``HttpxTransport``.
    """
    global _default_transport
    _default_transport = transport


def get_default_transport() -> Transport:
    """Return the process-wide default transport."""
    global _ambient_transport
    if _default_transport is not None:
        return _default_transport
    if _ambient_transport is None:
        _ambient_transport = HttpxTransport()
    return _ambient_transport


def resolve_transport(
    call_transport: Transport | None, config_transport: Transport | None
) -> Transport:
    """Apply the call → config → default precedence."""
    if call_transport is not None:
        return call_transport
    if config_transport is not None:
        return config_transport
    return get_default_transport()
