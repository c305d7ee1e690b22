"""Pytest configuration and shared helpers for postlite tests.

This file provides:
- make_request_spec / kv: Compact RequestSpec construction
- ScriptedResponse: A transport response fed chunk by chunk from the test
- ScriptedTransport: A transport that hands out scripted responses in order
- mock_client: An httpx.AsyncClient over httpx.MockTransport
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable

import httpx
import pytest

from postlite.models import KeyValueEntry, RequestSpec, WireRequest


def kv(*pairs: tuple[str, str], disabled: tuple[str, ...] = ()) -> list[KeyValueEntry]:
    """Build a key-value list; keys listed in `disabled` are added disabled."""
    return [KeyValueEntry(key=k, value=v, enabled=k not in disabled) for k, v in pairs]


def make_request_spec(
    method: str = "GET",
    url: str = "https://x.test/r",
    **fields: Any,
) -> RequestSpec:
    """Create a RequestSpec for testing.

    Prefer this over constructing RequestSpec directly - it provides a
    default URL and documents which fields tests usually vary.
    """
    return RequestSpec(method=method, url=url, **fields)


class ScriptedResponse:
    """TransportResponse whose body is delivered when the test says so.

    Pass `chunks` to pre-script a complete body, or call feed()/finish()/fail()
    while an execution is in flight to control exactly when each chunk arrives.
    """

    def __init__(
        self,
        status: int = 200,
        headers: dict[str, str] | None = None,
        chunks: list[bytes] | None = None,
        status_text: str = "OK",
        opaque: bool = False,
    ) -> None:
        self.status = status
        self.status_text = status_text
        self.headers = dict(headers or {})
        self.opaque = opaque
        self.closed = False
        self._queue: asyncio.Queue[bytes | Exception | None] = asyncio.Queue()
        if chunks is not None:
            for chunk in chunks:
                self.feed(chunk)
            self.finish()

    def feed(self, chunk: bytes) -> None:
        self._queue.put_nowait(chunk)

    def finish(self) -> None:
        self._queue.put_nowait(None)

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def aread(self) -> bytes:
        return b"".join([chunk async for chunk in self.aiter_bytes()])

    async def aclose(self) -> None:
        self.closed = True


class ScriptedTransport:
    """Transport returning (or raising) scripted items in order.

    If `gate` is set, open() records the request and then waits for the gate
    before returning, which lets a test cancel before the first byte.
    """

    def __init__(self, *items: ScriptedResponse | Exception) -> None:
        self._items = list(items)
        self.requests: list[WireRequest] = []
        self.gate: asyncio.Event | None = None

    async def open(self, request: WireRequest) -> ScriptedResponse:
        self.requests.append(request)
        item = self._items.pop(0)
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(item, Exception):
            raise item
        return item


def mock_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> httpx.AsyncClient:
    """An AsyncClient whose requests are answered by handler."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def captured() -> list[httpx.Request]:
    """Requests seen by a mock handler."""
    return []
