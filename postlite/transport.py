"""Transport - The boundary between the engine and the network stack.

The engine only needs three things from a transport: open an exchange for a
WireRequest, report status and headers, and hand over the body either chunk by
chunk or all at once. HttpxTransport provides that on top of httpx.AsyncClient.

Aborting is cooperative: the executor cancels the task awaiting the transport,
and the response is closed on the way out.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from postlite.models import WireRequest

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class TransportError(Exception):
    """Raised when an exchange fails (DNS, connect, TLS, timeout, read error)."""


class TransportResponse(Protocol):
    """A response whose headers have arrived and whose body is still pending."""

    status: int
    status_text: str
    headers: dict[str, str]
    opaque: bool

    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    async def aread(self) -> bytes: ...

    async def aclose(self) -> None: ...


class Transport(Protocol):
    async def open(self, request: WireRequest) -> TransportResponse: ...


class HttpxResponse:
    """TransportResponse over a streamed httpx.Response."""

    opaque = False

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self.status = response.status_code
        self.status_text = response.reason_phrase
        # httpx yields lowercase keys; repeated headers are comma-joined
        self.headers = dict(response.headers.items())

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"error reading response body: {e}") from e

    async def aread(self) -> bytes:
        try:
            return await self._response.aread()
        except httpx.HTTPError as e:
            raise TransportError(f"error reading response body: {e}") from e

    async def aclose(self) -> None:
        await self._response.aclose()


def _multipart_files(request: WireRequest) -> list[tuple[str, tuple[str | None, bytes, str | None]]]:
    """Convert multipart fields to httpx `files`, preserving order.

    Text fields go through `files` too (with no filename) because httpx
    renders `data` fields before `files`, which would reorder them.
    """
    files: list[tuple[str, tuple[str | None, bytes, str | None]]] = []
    for field in request.multipart or []:
        if field.file is not None:
            files.append((field.name, (field.file.name, field.file.content, field.file.content_type)))
        else:
            files.append((field.name, (None, (field.value or "").encode("utf-8"), None)))
    return files


class HttpxTransport:
    """Transport backed by httpx.AsyncClient.

    Usage:
        async with HttpxTransport(timeout=10.0) as transport:
            response = await transport.open(wire_request)
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _build(self, request: WireRequest) -> httpx.Request:
        files = _multipart_files(request) if request.multipart is not None else None
        http_request = self._client.build_request(
            method=request.method,
            url=request.url,
            headers=request.headers,
            content=request.content,
            files=files or None,
        )
        if request.content_type and "content-type" not in http_request.headers:
            http_request.headers["Content-Type"] = request.content_type
        explicit_cookie = any(k.lower() == "cookie" for k in request.headers)
        if request.credentials == "omit" and not explicit_cookie:
            http_request.headers.pop("cookie", None)
        return http_request

    async def open(self, request: WireRequest) -> HttpxResponse:
        """Send the request and return once response headers have arrived.

        Raises:
            TransportError: If the request cannot be built or sent.
        """
        try:
            http_request = self._build(request)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise TransportError(f"invalid request URL '{request.url}': {e}") from e
        except UnicodeEncodeError as e:
            raise TransportError(f"encoding error: non-ASCII characters in request headers: {e}") from e

        if request.half_duplex:
            logger.debug("Half-duplex body for %s %s", request.method, request.url)

        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            raise TransportError(f"request timeout: {e}") from e
        except httpx.ConnectError as e:
            raise TransportError(f"connection error: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"request error: {e}") from e
        except UnicodeEncodeError as e:
            raise TransportError(
                f"encoding error: non-ASCII characters in request. "
                f"Character: {e.object[e.start:e.end]!r} at position {e.start}."
            ) from e

        return HttpxResponse(response)
